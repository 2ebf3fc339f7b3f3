"""Markdown converter for Confluence storage-format pages."""

import html
import logging
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

from bs4 import BeautifulSoup
from bs4.element import Comment, Doctype
from markdownify import MarkdownConverter as MarkdownifyConverter

from config_loader import get_nested
from models import ConfluencePage, ImageRef, MarkdownDocument

from .content_extractors import filename_from_image_markup
from .macro_handler import (
    DEFAULT_IMAGE_FOLDER,
    ConfluenceElement,
    MacroHandler,
    RenderStatus,
    image_local_path,
)

logger = logging.getLogger('confluence_md.converters.markdown_converter')

CDATA_SECTION = re.compile(r'<!\[CDATA\[([\s\S]*?)\]\]>')
EXCESS_NEWLINES = re.compile(r'\n{3,}')
LIST_MARKER = r'(?:[-*+]|\d+\.)[ \t]'
NESTED_LIST_GAP = re.compile(
    r'(?m)^([ \t]*' + LIST_MARKER + r'[^\n]*)\n(?:[ \t]*\n)+([ \t]{2,}' + LIST_MARKER + r')'
)
CONFLUENCE_PAGE_LINK = re.compile(r'\[([^\]]+)\]\(/wiki/spaces/([^/]+)/pages/(\d+)/[^)]+\)')
NEWLINE_EDGES = re.compile(r'^(\n*)((?:.*[^\n])?)(\n*)$', flags=re.DOTALL)

# Containers whose protected CDATA is inline text rather than a code block
INLINE_CDATA_PARENTS = {'ac:plain-text-link-body'}


def preprocess_cdata(html_content: str) -> str:
    """
    Rewrite CDATA sections as escaped <pre data-cdata='true'> blocks.

    HTML parsers drop or mangle CDATA; escaping &, < and > keeps the exact
    text through parsing.
    """
    def protect(match):
        return "<pre data-cdata='true'>" + html.escape(match.group(1), quote=False) + '</pre>'

    return CDATA_SECTION.sub(protect, html_content)


def fix_nested_list_spacing(markdown: str) -> str:
    """Remove blank lines between a list item and a deeper-indented nested item."""
    while True:
        fixed = NESTED_LIST_GAP.sub(r'\1\n\2', markdown)
        if fixed == markdown:
            return fixed
        markdown = fixed


def fix_markdown_links(markdown: str) -> str:
    """Rewrite /wiki/spaces/<space>/pages/<id>/... links to confluence://pageId/<id>."""
    return CONFLUENCE_PAGE_LINK.sub(r'[\1](confluence://pageId/\3)', markdown)


def postprocess_markdown(markdown: str) -> str:
    """Normalize rendered Markdown; applying it twice gives the same result."""
    markdown = EXCESS_NEWLINES.sub('\n\n', markdown)
    markdown = fix_nested_list_spacing(markdown)
    markdown = fix_markdown_links(markdown)
    return markdown.strip()


def join_markdown_blocks(pieces: Iterable[str]) -> str:
    """Concatenate rendered fragments, keeping at most one blank line between them."""
    joined = ['']
    for piece in pieces:
        leading, content, trailing = NEWLINE_EDGES.match(piece).groups()
        if joined[-1] and leading:
            previous = joined.pop()
            leading = '\n' * min(2, max(len(previous), len(leading)))
        joined.extend([leading, content, trailing])
    return ''.join(joined)


class MarkdownConverter(MarkdownifyConverter):
    """
    Converts Confluence storage-format HTML to Markdown.

    This class extends markdownify.MarkdownConverter:
    - Confluence elements (ac:* tags, time, tables) go through MacroHandler
      before markdownify renders their children
    - CDATA bodies are protected before parsing
    - The rendered Markdown is normalized and internal links are rewritten
    """

    def __init__(
        self,
        attachment_resolver=None,
        image_folder: Optional[str] = None,
        image_downloader=None,
        logger: logging.Logger = None,
        config: Dict[str, Any] = None,
        **kwargs
    ):
        """
        Initialize markdown converter.

        Args:
            attachment_resolver: Optional AttachmentResolver for mermaid diagrams
            image_folder: Folder image links point into (default from config, then "assets")
            image_downloader: Optional ImageDownloader run by convert_page
            logger: Optional logger instance
            config: Optional configuration dictionary
            **kwargs: Extra markdownify options
        """
        markdownify_options = {
            'heading_style': 'ATX',  # Use # for headings
            'bullets': '-',  # Use - for unordered lists
            'escape_asterisks': False,
            'escape_underscores': False,
            'wrap': False,
            # html.parser closes self-closing ac:* tags at "/>"
            'bs4_options': 'html.parser'
        }
        markdownify_options.update(kwargs)
        super().__init__(**markdownify_options)

        self.logger = logger or logging.getLogger('confluence_md.converters.markdown_converter')
        self.config = config or {}
        self.image_folder = image_folder or get_nested(
            self.config, 'conversion.image_folder', DEFAULT_IMAGE_FOLDER
        )
        self.image_downloader = image_downloader

        self.macro_handler = MacroHandler(
            image_folder=self.image_folder,
            attachment_resolver=attachment_resolver,
            logger=self.logger
        )
        self.macro_handler.bind(self)

    def convert_page(
        self,
        page: ConfluencePage,
        base_url: str,
        output_dir: Optional[str] = None
    ) -> MarkdownDocument:
        """
        Convert a page into a MarkdownDocument.

        Args:
            page: Page to convert
            base_url: Site root used for the page URL and image download URLs
            output_dir: Directory the document will be written to; images are
                downloaded there when an image downloader is configured

        Returns:
            The document with body and image manifest filled in

        Raises:
            PageValidationError: If the page is missing required data
            ValueError: If base_url is not a valid URL
        """
        page.validate()
        self.logger.info(f"Converting page {page.id} ('{page.title}') to markdown")

        self.macro_handler.set_current_page(page)
        document = MarkdownDocument.from_page(page, base_url)
        document.content = self.convert_html(page.content)
        document.images = self.extract_image_references(page.content, base_url, page.id)

        if output_dir and self.image_downloader is not None:
            self.image_downloader.download_images(document, page, output_dir)

        self.logger.debug(
            f"Page {page.id}: {len(document.content)} characters, {len(document.images)} images"
        )
        return document

    def convert_html(self, html_content: str) -> str:
        """Convert a storage-format HTML fragment to normalized Markdown."""
        protected = preprocess_cdata(html_content)
        try:
            markdown = self.convert(protected)
        except Exception as e:
            self.logger.error(f"Markdown rendering failed: {str(e)}")
            markdown = ''
        return postprocess_markdown(markdown)

    def extract_image_references(self, html_content: str, base_url: str, page_id: str) -> List[ImageRef]:
        """
        List the attachment images a page body embeds.

        Args:
            html_content: Storage-format HTML
            base_url: Site root for download URLs
            page_id: Page the attachments belong to

        Returns:
            One ImageRef per distinct filename, in document order
        """
        soup = BeautifulSoup(preprocess_cdata(html_content), **self.options['bs4_options'])
        base = base_url.rstrip('/')

        images = []
        seen = set()
        for element in soup.find_all(ConfluenceElement.IMAGE.value):
            filename = element.get('ri:filename') or filename_from_image_markup(str(element))
            if not filename or filename in seen:
                continue
            seen.add(filename)
            images.append(ImageRef(
                origin_url=f"{base}/wiki/download/attachments/{page_id}/{quote(filename, safe='')}",
                local_path=image_local_path(self.image_folder, filename),
                file_name=filename
            ))
        return images

    def process_tag(self, node, parent_tags=None):
        """Render Confluence elements through MacroHandler, everything else through markdownify."""
        if ConfluenceElement.from_tag_name(node.name) is None:
            return super().process_tag(node, parent_tags=parent_tags)

        # Errors in a Confluence element, including its default rendering, only cost that element
        try:
            result = self.macro_handler.dispatch(node, parent_tags or ())
            if result.is_final:
                return result.text
            text = super().process_tag(node, parent_tags=parent_tags)
        except Exception as e:
            self.logger.error(f"Failed to render <{node.name}>: {str(e)}")
            return f"<!-- Error rendering {node.name}: {e} -->"

        if result.status is RenderStatus.CONTINUE:
            return result.text + text
        return text

    def render_nodes(self, nodes, parent_tags=None) -> str:
        """Render sibling nodes one by one and join them as markdownify joins children."""
        tags = set(parent_tags or ())
        pieces = []
        for node in nodes:
            if isinstance(node, (Comment, Doctype)):
                continue
            text = self.process_element(node, parent_tags=tags)
            if text:
                pieces.append(text)
        return join_markdown_blocks(pieces)

    def convert_pre(self, el, text, parent_tags=None):
        """Handle pre elements, keeping protected CDATA inside link bodies inline."""
        if el.get('data-cdata') == 'true' and el.parent is not None and el.parent.name in INLINE_CDATA_PARENTS:
            return text.strip()
        return super().convert_pre(el, text, parent_tags)


__all__ = [
    'MarkdownConverter',
    'fix_markdown_links',
    'fix_nested_list_spacing',
    'postprocess_markdown',
    'preprocess_cdata'
]
