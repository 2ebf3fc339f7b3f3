"""Export package for writing converted Confluence pages to local Markdown files.

Package Structure:
- image_downloader: Fetches the images a converted document refers to
- markdown_writer: Output file naming and document persistence

Models Referenced:
- MarkdownDocument: serialized to text; images list updated in place by downloads
- ConfluencePage: source of titles, ids and attachments

Configuration Referenced:
- conversion.image_folder: Folder images are saved into, relative to the Markdown file
- conversion.include_frontmatter: Emit YAML frontmatter
- export.filename_template: Optional str.format template for file names
"""

from .image_downloader import ImageDownloader
from .markdown_writer import generate_file_name, save_markdown_document, slugify_title

__all__ = [
    'ImageDownloader',
    'generate_file_name',
    'save_markdown_document',
    'slugify_title'
]
