"""Attachment lookup and retrieval for macros that embed attachment content."""

import logging
import os
from typing import Iterable, Optional, Tuple

import requests

from models import ConfluenceAttachment, ConfluencePage

logger = logging.getLogger('confluence_md.converters.attachment_resolver')

TEXT_EXTENSIONS = {'.mmd', '.mermaid', '.txt', '.md', '.json'}
IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.gif', '.svg'}


class AttachmentError(Exception):
    """Base class for attachment resolution failures."""


class AttachmentNotFoundError(AttachmentError):
    """No attachment on the page matches the requested filename and revision."""


class AttachmentDownloadError(AttachmentError):
    """A matching attachment was found but its content could not be fetched."""


def matches_attachment_filename(title: str, filename: str) -> bool:
    """
    Check whether an attachment title answers to a requested filename.

    Matching is case-insensitive. A filename without an extension also matches
    a title whose extension-stripped form equals it.
    """
    if title.lower() == filename.lower():
        return True
    if '.' not in filename:
        stem, _ = os.path.splitext(title)
        return stem.lower() == filename.lower()
    return False


def attachment_preference_score(attachment: ConfluenceAttachment) -> int:
    """Score an attachment by how likely it is to hold text content."""
    score = 0
    media_type = attachment.media_type.lower()
    if media_type.startswith('text/') or 'json' in media_type:
        score += 100
    elif media_type.startswith('image/'):
        score -= 100

    _, extension = os.path.splitext(attachment.title.lower())
    if extension in TEXT_EXTENSIONS:
        score += 80
    elif extension in IMAGE_EXTENSIONS:
        score -= 50

    return score


def select_attachment(
    attachments: Iterable[ConfluenceAttachment],
    filename: str,
    revision: int = 0
) -> Optional[ConfluenceAttachment]:
    """
    Pick the best attachment for a filename.

    Args:
        attachments: Candidate attachments of a page
        filename: Requested filename, with or without extension
        revision: Required attachment version, 0 for any

    Returns:
        The highest scoring match (ties go to the higher version), or None
    """
    best = None
    best_score = 0

    for attachment in attachments:
        if not matches_attachment_filename(attachment.title, filename):
            continue
        if revision > 0 and attachment.version > 0 and attachment.version != revision:
            continue

        score = attachment_preference_score(attachment)
        if (
            best is None
            or score > best_score
            or (score == best_score and attachment.version > best.version)
        ):
            best = attachment
            best_score = score

    return best


class AttachmentResolver:
    """Resolves macro attachment references against a page and downloads their content."""

    def __init__(self, downloader=None, logger: logging.Logger = None):
        """
        Initialize resolver.

        Args:
            downloader: Object exposing download_attachment(attachment) -> bytes,
                usually a ConfluenceClient
            logger: Optional logger instance
        """
        self.downloader = downloader
        self.logger = logger or logging.getLogger('confluence_md.converters.attachment_resolver')

    def download(
        self,
        page: Optional[ConfluencePage],
        filename: str,
        revision: int = 0
    ) -> Tuple[ConfluenceAttachment, bytes]:
        """
        Find and download an attachment.

        Args:
            page: Page whose attachments are searched
            filename: Requested filename
            revision: Required attachment version, 0 for any

        Returns:
            Tuple of (matched attachment, content bytes)

        Raises:
            AttachmentNotFoundError: If no attachment matches
            AttachmentDownloadError: If there is no downloader or the transfer fails
        """
        if self.downloader is None:
            raise AttachmentDownloadError("attachment downloader is not configured")
        if page is None:
            raise AttachmentDownloadError("page context not provided")

        attachment = select_attachment(page.attachments, filename, revision)
        if attachment is None:
            raise AttachmentNotFoundError(f"attachment {filename} not found")

        self.logger.debug(
            f"Resolved '{filename}' (revision {revision}) to attachment "
            f"{attachment.id} '{attachment.title}' v{attachment.version}"
        )

        try:
            data = self.downloader.download_attachment(attachment)
        except (requests.exceptions.RequestException, OSError, ValueError) as e:
            raise AttachmentDownloadError(f"failed to download {attachment.title}: {e}") from e

        return attachment, data

    def resolve(self, page: Optional[ConfluencePage], filename: str, revision: int = 0) -> str:
        """Download an attachment and decode it as UTF-8 text."""
        _, data = self.download(page, filename, revision)
        return data.decode('utf-8', errors='replace')


__all__ = [
    'AttachmentDownloadError',
    'AttachmentError',
    'AttachmentNotFoundError',
    'AttachmentResolver',
    'attachment_preference_score',
    'matches_attachment_filename',
    'select_attachment'
]
