"""Data models for Confluence pages and the Markdown documents converted from them."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlparse

import yaml

logger = logging.getLogger('confluence_md.models')


class PageValidationError(ValueError):
    """Raised when a page or one of its attachments is missing required data."""


@dataclass
class ConfluenceUser:
    """Identity of a page author or editor."""

    account_id: str = ''
    display_name: str = ''
    email: str = ''


@dataclass
class ConfluenceAttachment:
    """Represents a file attached to a Confluence page."""

    id: str
    title: str
    media_type: str
    file_size: int
    download_url: str
    page_id: str = ''
    version: int = 0
    local_path: Optional[str] = None

    def validate(self) -> None:
        """
        Check that the attachment carries everything needed to download it.

        Raises:
            PageValidationError: Naming the first missing or malformed field
        """
        if not self.id:
            raise PageValidationError("attachment ID cannot be empty")
        if not self.title:
            raise PageValidationError("attachment title cannot be empty")
        if not self.media_type:
            raise PageValidationError("attachment media type cannot be empty")
        if self.file_size <= 0:
            raise PageValidationError("attachment file size must be greater than 0")
        if not self.download_url:
            raise PageValidationError("attachment download link cannot be empty")
        if not _is_valid_link(self.download_url):
            raise PageValidationError(f"invalid download link: {self.download_url}")


@dataclass
class ConfluencePage:
    """Represents a Confluence page with its storage-format body and metadata."""

    id: str
    title: str
    content: str  # storage-format HTML
    space_key: str
    version: int = 1
    parent_id: Optional[str] = None
    attachments: List[ConfluenceAttachment] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)
    created_by: ConfluenceUser = field(default_factory=ConfluenceUser)
    updated_by: ConfluenceUser = field(default_factory=ConfluenceUser)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    url: Optional[str] = None

    def validate(self) -> None:
        """
        Check the invariants a page must satisfy before it can be converted.

        Raises:
            PageValidationError: Naming the first missing field or bad attachment
        """
        if not self.id:
            raise PageValidationError("page ID cannot be empty")
        if not self.title:
            raise PageValidationError("page title cannot be empty")
        if not self.content:
            raise PageValidationError("page content cannot be empty")
        if not self.space_key:
            raise PageValidationError("space key cannot be empty")

        for index, attachment in enumerate(self.attachments):
            try:
                attachment.validate()
            except PageValidationError as e:
                raise PageValidationError(f"invalid attachment {index}: {e}") from e

    def get_url(self, base_url: str) -> str:
        """
        Build the browser URL of this page.

        Args:
            base_url: Site root such as "https://example.atlassian.net"

        Returns:
            The page URL with the title percent-encoded as the last segment

        Raises:
            ValueError: If base_url has no scheme or host
        """
        parsed = urlparse(base_url or '')
        if not parsed.scheme or not parsed.netloc:
            raise ValueError(f"invalid base URL: {base_url!r}")

        return (
            f"{base_url.rstrip('/')}/wiki/spaces/{self.space_key}"
            f"/pages/{self.id}/{quote(self.title, safe='')}"
        )

    def get_label_names(self) -> List[str]:
        """Get label names in their original order."""
        return list(self.labels)

    def get_attachment_by_title(self, title: str) -> Optional[ConfluenceAttachment]:
        """Find an attachment by exact title."""
        for attachment in self.attachments:
            if attachment.title == title:
                return attachment
        return None

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> 'ConfluencePage':
        """
        Build a page from a REST API content payload.

        Args:
            data: JSON object returned by /wiki/rest/api/content/{id}

        Returns:
            ConfluencePage populated from the expanded fields present
        """
        version = data.get('version') or {}
        history = data.get('history') or {}
        page_id = str(data.get('id', ''))

        attachments = []
        attachment_results = ((data.get('children') or {}).get('attachment') or {}).get('results', [])
        for item in attachment_results:
            extensions = item.get('extensions') or {}
            attachments.append(ConfluenceAttachment(
                id=str(item.get('id', '')),
                title=item.get('title', ''),
                media_type=extensions.get('mediaType', ''),
                file_size=int(extensions.get('fileSize') or 0),
                download_url=(item.get('_links') or {}).get('download', ''),
                page_id=page_id,
                version=int((item.get('version') or {}).get('number') or 0)
            ))

        label_results = ((data.get('metadata') or {}).get('labels') or {}).get('results', [])
        ancestors = data.get('ancestors') or []

        return cls(
            id=page_id,
            title=data.get('title', ''),
            content=((data.get('body') or {}).get('storage') or {}).get('value', ''),
            space_key=(data.get('space') or {}).get('key', ''),
            version=int(version.get('number') or 1),
            parent_id=str(ancestors[-1]['id']) if ancestors else None,
            attachments=attachments,
            labels=[label.get('name', '') for label in label_results if label.get('name')],
            created_by=_user_from_api(history.get('createdBy')),
            updated_by=_user_from_api(version.get('by')),
            created_at=parse_timestamp(history.get('createdDate')),
            updated_at=parse_timestamp(version.get('when'))
        )


@dataclass
class PageURLInfo:
    """Components of a Confluence page URL."""

    base_url: str
    page_id: str
    space_key: str = ''
    title: str = ''


@dataclass
class ImageRef:
    """
    An image the converted document refers to.

    content_type and size stay None until a downloader fetches the image and
    fills them in on the instance held by the document.
    """

    origin_url: str
    local_path: str
    file_name: str
    content_type: Optional[str] = None
    size: Optional[int] = None


@dataclass(frozen=True)
class ConfluenceRef:
    """Back-reference from a converted document to its source page."""

    page_id: str
    space_key: str
    version: int
    url: str


@dataclass(frozen=True)
class Frontmatter:
    """Metadata emitted as the YAML header of a converted document."""

    title: str
    author: str
    date: Optional[datetime]
    labels: List[str]
    confluence: ConfluenceRef
    custom: Dict[str, Any] = field(default_factory=dict)


@dataclass
class MarkdownDocument:
    """
    Result of converting one page.

    The converter fills in content and images once. After that the document is
    treated as a snapshot, except for the images list: downloaders update the
    ImageRef entries in place with the content type and size they fetched.
    """

    frontmatter: Frontmatter
    content: str = ''
    images: List[ImageRef] = field(default_factory=list)

    @classmethod
    def from_page(cls, page: ConfluencePage, base_url: str) -> 'MarkdownDocument':
        """
        Create an empty document shell for a page.

        Raises:
            ValueError: If base_url cannot be used to build the page URL
        """
        frontmatter = Frontmatter(
            title=page.title,
            author=page.created_by.display_name,
            date=page.updated_at,
            labels=page.get_label_names(),
            confluence=ConfluenceRef(
                page_id=page.id,
                space_key=page.space_key,
                version=page.version,
                url=page.get_url(base_url)
            )
        )
        return cls(frontmatter=frontmatter)

    def serialize(self, include_frontmatter: bool = True) -> str:
        """Render the document as Markdown text, optionally with YAML frontmatter."""
        if not include_frontmatter:
            return self.content
        return f"---\n{self._frontmatter_yaml()}---\n\n{self.content}"

    def _frontmatter_yaml(self) -> str:
        meta = self.frontmatter
        data: Dict[str, Any] = {
            'title': _QuotedString(meta.title),
            'author': _QuotedString(meta.author),
            'date': _QuotedString(format_rfc3339(meta.date)),
        }
        if meta.labels:
            data['labels'] = [_QuotedString(label) for label in meta.labels]
        data['confluence'] = {
            'pageId': _QuotedString(meta.confluence.page_id),
            'spaceKey': _QuotedString(meta.confluence.space_key),
            'version': _QuotedString(str(meta.confluence.version)),
            'url': _QuotedString(meta.confluence.url),
        }
        for key, value in meta.custom.items():
            if key in data:
                logger.warning(f"Custom frontmatter field '{key}' ignored: reserved key")
                continue
            data[key] = value

        return yaml.dump(
            data,
            Dumper=_FrontmatterDumper,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
            width=4096
        )


class _QuotedString(str):
    """String that always serializes as a double-quoted YAML scalar."""


class _FrontmatterDumper(yaml.SafeDumper):
    pass


def _represent_quoted(dumper: yaml.SafeDumper, data: _QuotedString) -> yaml.ScalarNode:
    return dumper.represent_scalar('tag:yaml.org,2002:str', str(data), style='"')


_FrontmatterDumper.add_representer(_QuotedString, _represent_quoted)


def format_rfc3339(value: Optional[datetime]) -> str:
    """Format a timestamp as RFC 3339, using 'Z' for UTC and '' for None."""
    if value is None:
        return ''
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if value.utcoffset().total_seconds() == 0:
        return value.strftime('%Y-%m-%dT%H:%M:%SZ')
    return value.isoformat(timespec='seconds')


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from the REST API; None when absent or malformed."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.debug(f"Unparseable timestamp: {value}")
        return None


def _user_from_api(data: Optional[Dict[str, Any]]) -> ConfluenceUser:
    data = data or {}
    return ConfluenceUser(
        account_id=data.get('accountId', ''),
        display_name=data.get('displayName', ''),
        email=data.get('email', '')
    )


def _is_valid_link(link: str) -> bool:
    if link.startswith('://') or any(ord(ch) < 0x20 for ch in link):
        return False
    try:
        parsed = urlparse(link)
    except ValueError:
        return False
    if parsed.scheme in ('http', 'https') and not parsed.netloc:
        return False
    return True


__all__ = [
    'ConfluenceAttachment',
    'ConfluencePage',
    'ConfluenceRef',
    'ConfluenceUser',
    'Frontmatter',
    'ImageRef',
    'MarkdownDocument',
    'PageURLInfo',
    'PageValidationError',
    'format_rfc3339',
    'parse_timestamp'
]
