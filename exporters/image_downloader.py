"""Image downloader that fulfils the image manifest of a converted document."""

import logging
from pathlib import Path
from typing import Dict, Optional

import requests
from tqdm import tqdm

from models import ConfluencePage, MarkdownDocument

DEFAULT_MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10MB


class ImageDownloader:
    """
    Downloads the images a MarkdownDocument refers to.

    The downloader:
    1. Fetches each ImageRef from its origin URL with the client credentials
    2. Skips images over the size limit
    3. Saves the bytes under output_dir at the ImageRef local path
    4. Fills in content_type and size on the ImageRef in place
    """

    def __init__(
        self,
        client,
        max_size: int = DEFAULT_MAX_IMAGE_SIZE,
        show_progress: bool = False,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the image downloader.

        Args:
            client: Object with download_url(url) -> (bytes, content_type),
                usually a ConfluenceClient
            max_size: Largest image size in bytes to save (0 means unlimited)
            show_progress: Show a tqdm progress bar per page
            logger: Logger instance
        """
        self.client = client
        self.max_size = max_size
        self.show_progress = show_progress
        self.logger = logger or logging.getLogger('confluence_md.exporters.image_downloader')

        self.stats = {
            'total_images': 0,
            'downloaded': 0,
            'skipped': 0,
            'failed': 0,
            'total_size_bytes': 0
        }

    def download_images(self, document: MarkdownDocument, page: ConfluencePage, output_dir) -> int:
        """
        Download every image in the document manifest.

        Args:
            document: Converted document whose images list is updated in place
            page: Source page; matching attachments get their local path recorded
            output_dir: Directory the Markdown file is written to

        Returns:
            Number of images written to disk
        """
        if not document.images:
            return 0

        output_path = Path(output_dir)
        written = 0

        images = tqdm(
            document.images,
            desc=f"Images: {page.title[:30]}",
            leave=False,
            disable=not self.show_progress
        )
        for image in images:
            self.stats['total_images'] += 1
            try:
                content, content_type = self.client.download_url(image.origin_url)
            except requests.exceptions.RequestException as e:
                self.logger.warning(f"Failed to download image '{image.file_name}' from {image.origin_url}: {e}")
                self.stats['failed'] += 1
                continue

            if self._exceeds_limit(len(content)):
                self.logger.warning(
                    f"Skipping image '{image.file_name}': size ({len(content)} bytes) "
                    f"exceeds limit ({self.max_size} bytes)"
                )
                self.stats['skipped'] += 1
                continue

            target = output_path / image.local_path
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(content)
            except OSError as e:
                self.logger.warning(f"Failed to save image '{image.file_name}' to {target}: {e}")
                self.stats['failed'] += 1
                continue

            image.content_type = content_type
            image.size = len(content)
            attachment = page.get_attachment_by_title(image.file_name)
            if attachment is not None:
                attachment.local_path = image.local_path

            written += 1
            self.stats['downloaded'] += 1
            self.stats['total_size_bytes'] += len(content)
            self.logger.debug(f"Saved image '{image.file_name}' -> {target}")

        return written

    def _exceeds_limit(self, size: int) -> bool:
        return self.max_size > 0 and size > self.max_size

    def get_stats(self) -> Dict[str, int]:
        """Get download statistics."""
        return self.stats.copy()


__all__ = ['DEFAULT_MAX_IMAGE_SIZE', 'ImageDownloader']
