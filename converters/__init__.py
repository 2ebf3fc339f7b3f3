"""Converters package for Confluence storage-format HTML to Markdown conversion."""

import logging

from .attachment_resolver import (
    AttachmentDownloadError,
    AttachmentError,
    AttachmentNotFoundError,
    AttachmentResolver,
)
from .macro_handler import MacroHandler, RenderResult, RenderStatus
from .markdown_converter import MarkdownConverter, postprocess_markdown, preprocess_cdata
from .table_converter import TableConverter

logger = logging.getLogger('confluence_md.converters')


def convert_page(page, base_url, config=None, attachment_resolver=None, logger=None):
    """
    Convenience function to convert a ConfluencePage to a MarkdownDocument.

    This runs the full conversion pipeline:
    1. Page validation
    2. CDATA protection
    3. Markdown generation using markdownify with Confluence element handlers
    4. Post-processing (blank lines, nested lists, internal links)
    5. Image reference extraction

    Args:
        page: ConfluencePage with storage-format HTML in page.content
        base_url: Confluence site root, e.g. "https://example.atlassian.net"
        config: Optional configuration dictionary for converter behavior
        attachment_resolver: Optional AttachmentResolver for mermaid diagrams
        logger: Optional logger instance (uses module logger if not provided)

    Returns:
        MarkdownDocument: The converted document

    Example:
        >>> from converters import convert_page
        >>> from models import ConfluencePage
        >>> page = ConfluencePage(id='123', title='Test', content='<p>Hi</p>', space_key='DEMO')
        >>> document = convert_page(page, 'https://example.atlassian.net')
        >>> print(document.content)
        Hi
    """
    if logger is None:
        logger = logging.getLogger('confluence_md.converters')

    converter = MarkdownConverter(attachment_resolver=attachment_resolver, logger=logger, config=config)
    return converter.convert_page(page, base_url)


def convert_html(html_content, config=None, logger=None):
    """Convenience function to convert a storage-format HTML fragment to Markdown text."""
    converter = MarkdownConverter(logger=logger, config=config)
    return converter.convert_html(html_content)


__all__ = [
    'convert_html',
    'convert_page',
    'AttachmentDownloadError',
    'AttachmentError',
    'AttachmentNotFoundError',
    'AttachmentResolver',
    'MacroHandler',
    'MarkdownConverter',
    'RenderResult',
    'RenderStatus',
    'TableConverter',
    'postprocess_markdown',
    'preprocess_cdata'
]
