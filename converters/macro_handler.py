"""Rendering of Confluence-specific storage-format elements to Markdown."""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional
from urllib.parse import quote

from bs4 import Tag
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction

from models import ConfluencePage

from .attachment_resolver import AttachmentError
from .content_extractors import (
    code_body_from_macro_markup,
    filename_from_image_markup,
    language_from_macro_markup,
)
from .table_converter import TableConverter

logger = logging.getLogger('confluence_md.converters.macro_handler')

DEFAULT_IMAGE_FOLDER = 'assets'
BACKTICK_RUN = re.compile(r'`{3,}')
IGNORED_STRING_TYPES = (Comment, Declaration, Doctype, ProcessingInstruction)


class ConfluenceElement(Enum):
    """Storage-format elements with dedicated rendering."""

    IMAGE = 'ac:image'
    EMOTICON = 'ac:emoticon'
    LINK = 'ac:link'
    INLINE_COMMENT = 'ac:inline-comment-marker'
    PLACEHOLDER = 'ac:placeholder'
    TIME = 'time'
    STRUCTURED_MACRO = 'ac:structured-macro'
    TABLE = 'table'

    @classmethod
    def from_tag_name(cls, name: Optional[str]) -> Optional['ConfluenceElement']:
        """Map a tag name to its element kind, or None for ordinary HTML."""
        try:
            return cls(name)
        except ValueError:
            return None


class MacroKind(Enum):
    """Structured macro names with dedicated rendering."""

    INFO = 'info'
    WARNING = 'warning'
    NOTE = 'note'
    TIP = 'tip'
    CODE = 'code'
    MERMAID = 'mermaid-cloud'
    EXPAND = 'expand'
    DETAILS = 'details'
    TOC = 'toc'
    STATUS = 'status'
    CHILDREN = 'children'
    UNSUPPORTED = ''

    @classmethod
    def from_name(cls, name: str) -> 'MacroKind':
        """Map an ac:name value to a macro kind; unknown names are UNSUPPORTED."""
        if not name:
            return cls.UNSUPPORTED
        try:
            return cls(name)
        except ValueError:
            return cls.UNSUPPORTED


class RenderStatus(Enum):
    """How the Markdown converter should continue after a handler ran."""

    HANDLED = 'handled'      # text replaces the element
    CONTINUE = 'continue'    # text is emitted, then the children render as usual
    UNHANDLED = 'unhandled'  # the element renders as usual


@dataclass(frozen=True)
class RenderResult:
    """Outcome of rendering one Confluence element."""

    status: RenderStatus
    text: str = ''

    @property
    def is_final(self) -> bool:
        return self.status is RenderStatus.HANDLED

    @classmethod
    def handled(cls, text: str) -> 'RenderResult':
        return cls(RenderStatus.HANDLED, text)

    @classmethod
    def continue_with(cls, text: str) -> 'RenderResult':
        return cls(RenderStatus.CONTINUE, text)

    @classmethod
    def unhandled(cls) -> 'RenderResult':
        return cls(RenderStatus.UNHANDLED)


ADMONITIONS = {
    MacroKind.INFO: ('ℹ️', 'Info'),
    MacroKind.WARNING: ('⚠️', 'Warning'),
    MacroKind.NOTE: ('📝', 'Note'),
    MacroKind.TIP: ('💡', 'Tip'),
}

STATUS_COLOURS = {
    'red': '🔴',
    'yellow': '🟡',
    'green': '🟢',
    'blue': '🔵',
    'grey': '⚪',
    'gray': '⚪',
}

# Macros whose output belongs inside the surrounding paragraph
INLINE_MACROS = {MacroKind.STATUS}


def image_local_path(image_folder: str, filename: str) -> str:
    """Path an image is stored under, relative to the Markdown file."""
    if not image_folder:
        return filename
    return f"{image_folder.rstrip('/')}/{filename}"


def code_fence_for(code: str) -> str:
    """Backtick fence longer than any backtick run inside the code."""
    longest = max((len(run) for run in BACKTICK_RUN.findall(code)), default=0)
    return '`' * max(3, longest + 1)


class MacroHandler:
    """
    Routes Confluence elements to their Markdown renderers.

    The handler remembers the page being converted so attachment-backed macros
    can resolve their content. One instance must not convert two pages at once.
    """

    def __init__(
        self,
        image_folder: str = DEFAULT_IMAGE_FOLDER,
        attachment_resolver=None,
        logger: logging.Logger = None
    ):
        """
        Initialize macro handler.

        Args:
            image_folder: Folder image links point into
            attachment_resolver: Optional AttachmentResolver for mermaid diagrams
            logger: Optional logger instance
        """
        self.logger = logger or logging.getLogger('confluence_md.converters.macro_handler')
        self.image_folder = image_folder
        self.attachment_resolver = attachment_resolver
        self.current_page: Optional[ConfluencePage] = None
        self.renderer = None
        self.table_converter = TableConverter(self)

        self.element_converters: Dict[ConfluenceElement, Callable[[Tag, frozenset], RenderResult]] = {
            ConfluenceElement.IMAGE: self._convert_image,
            ConfluenceElement.EMOTICON: self._convert_emoticon,
            ConfluenceElement.LINK: self._convert_link,
            ConfluenceElement.INLINE_COMMENT: self._convert_inline_comment,
            ConfluenceElement.PLACEHOLDER: self._convert_placeholder,
            ConfluenceElement.TIME: self._convert_time,
            ConfluenceElement.STRUCTURED_MACRO: self._convert_structured_macro,
            ConfluenceElement.TABLE: self._convert_table,
        }

        self.macro_converters: Dict[MacroKind, Callable[[Tag, str, frozenset], str]] = {
            MacroKind.INFO: self._convert_admonition_macro,
            MacroKind.WARNING: self._convert_admonition_macro,
            MacroKind.NOTE: self._convert_admonition_macro,
            MacroKind.TIP: self._convert_admonition_macro,
            MacroKind.CODE: self._convert_code_macro,
            MacroKind.MERMAID: self._convert_mermaid_macro,
            MacroKind.EXPAND: self._convert_expand_macro,
            MacroKind.DETAILS: self._convert_expand_macro,
            MacroKind.STATUS: self._convert_status_macro,
            MacroKind.CHILDREN: self._convert_children_macro,
            MacroKind.UNSUPPORTED: self._convert_unsupported_macro,
        }

    def bind(self, renderer) -> None:
        """Attach the Markdown converter used for nested content and simple table cells."""
        self.renderer = renderer

    def set_current_page(self, page: Optional[ConfluencePage]) -> None:
        """Set the page whose attachments macros resolve against."""
        self.current_page = page

    def handles_inline(self, tag_name: Optional[str]) -> bool:
        """Check whether a tag inside a flattened table cell goes through dispatch."""
        kind = ConfluenceElement.from_tag_name(tag_name)
        return kind is not None and kind is not ConfluenceElement.TABLE

    def dispatch(self, element: Tag, parent_tags: Iterable[str] = frozenset()) -> RenderResult:
        """
        Render a Confluence element.

        Args:
            element: Element to render
            parent_tags: Names of enclosing tags, as tracked by the Markdown converter

        Returns:
            RenderResult telling the caller whether default rendering still applies
        """
        kind = ConfluenceElement.from_tag_name(element.name)
        if kind is None:
            return RenderResult.unhandled()
        return self.element_converters[kind](element, frozenset(parent_tags))

    def render_rich_text_body(self, element: Tag, parent_tags: Iterable[str] = frozenset()) -> str:
        """
        Render the ac:rich-text-body of a macro as one Markdown string.

        Whitespace-only text and empty paragraphs are skipped; the macro's own
        parameters are never rendered.
        """
        body = element.find('ac:rich-text-body', recursive=False) or element.find('ac:rich-text-body')
        if body is None:
            return ''

        nodes = []
        for child in body.children:
            if isinstance(child, NavigableString):
                if isinstance(child, IGNORED_STRING_TYPES) or not child.strip():
                    continue
            elif child.name == 'p' and not child.contents:
                continue
            nodes.append(child)

        child_tags = set(parent_tags) | {element.name, 'ac:rich-text-body'}
        return self._render_nodes(nodes, child_tags).strip()

    def _render_nodes(self, nodes, parent_tags) -> str:
        if self.renderer is None:
            return '\n\n'.join(node.get_text().strip() for node in nodes)
        return self.renderer.render_nodes(nodes, parent_tags)

    @staticmethod
    def _block(text: str, parent_tags: frozenset) -> str:
        if not text or '_inline' in parent_tags:
            return text
        return '\n\n' + text.strip('\n') + '\n\n'

    @staticmethod
    def _macro_parameter(element: Tag, name: str) -> str:
        """Get the text of a direct ac:parameter child."""
        param = element.find('ac:parameter', attrs={'ac:name': name}, recursive=False)
        return param.get_text().strip() if param is not None else ''

    # Element converters

    def _convert_image(self, element: Tag, parent_tags: frozenset) -> RenderResult:
        filename = element.get('ri:filename') or filename_from_image_markup(str(element))
        if not filename:
            self.logger.warning("Image element without attachment filename")
            return RenderResult.handled('<!-- Image attachment not found -->')

        local_path = image_local_path(self.image_folder, filename)
        return RenderResult.handled(f"![{filename}]({quote(local_path, safe='')})")

    def _convert_emoticon(self, element: Tag, parent_tags: frozenset) -> RenderResult:
        if element.get('ac:emoji-fallback'):
            text = element['ac:emoji-fallback'] + ' '
        elif element.get('ac:emoji-shortname'):
            text = element['ac:emoji-shortname'] + ' '
        elif element.get('ac:name'):
            text = f":{element['ac:name']}:"
        else:
            text = ':emoji: '
        return RenderResult.continue_with(text)

    def _convert_link(self, element: Tag, parent_tags: frozenset) -> RenderResult:
        for user in element.find_all('ri:user', recursive=False):
            account_id = user.get('ri:account-id') or user.get('ri:userkey')
            if account_id:
                return RenderResult.handled(f"@user({account_id})")
        return RenderResult.unhandled()

    def _convert_inline_comment(self, element: Tag, parent_tags: frozenset) -> RenderResult:
        text = self._render_nodes(list(element.children), set(parent_tags) | {element.name})
        ref = element.get('ac:ref')
        if ref:
            text += f"<!-- comment-ref: {ref} -->"
        return RenderResult.handled(text)

    def _convert_placeholder(self, element: Tag, parent_tags: frozenset) -> RenderResult:
        text = element.get_text().strip()
        return RenderResult.handled(f"<!-- {text} -->" if text else '')

    def _convert_time(self, element: Tag, parent_tags: frozenset) -> RenderResult:
        value = element.get('datetime')
        if not value:
            return RenderResult.unhandled()
        return RenderResult.handled(value)

    def _convert_table(self, element: Tag, parent_tags: frozenset) -> RenderResult:
        markdown = self.table_converter.convert(element, parent_tags)
        if markdown is None:
            return RenderResult.unhandled()
        return RenderResult.handled(self._block(markdown, parent_tags))

    def _convert_structured_macro(self, element: Tag, parent_tags: frozenset) -> RenderResult:
        name = element.get('ac:name') or 'unknown'
        kind = MacroKind.from_name(name)
        self.logger.debug(f"Converting macro: {name}")

        if kind is MacroKind.TOC:
            text = self._block('<!-- Table of Contents -->', parent_tags)
            if element.find('ac:parameter', recursive=False) is None:
                return RenderResult.continue_with(text)
            return RenderResult.handled(text)

        text = self.macro_converters[kind](element, name, parent_tags)
        if kind in INLINE_MACROS:
            return RenderResult.handled(text)
        return RenderResult.handled(self._block(text, parent_tags))

    # Structured macro converters

    def _convert_admonition_macro(self, element: Tag, name: str, parent_tags: frozenset) -> str:
        emoji, label = ADMONITIONS[MacroKind(name)]
        prefix = f"{emoji} **{label}:**"
        content = self.render_rich_text_body(element, parent_tags)

        if not content:
            return f"> {prefix}"
        if '\n' not in content:
            return f"> {prefix} {content}"

        lines = [f"> {prefix}"]
        for line in content.split('\n'):
            lines.append(f"> {line}" if line.strip() else '>')
        return '\n'.join(lines).rstrip('\n')

    def _convert_code_macro(self, element: Tag, name: str, parent_tags: frozenset) -> str:
        markup = str(element)
        language = language_from_macro_markup(markup)
        code = self._plain_text_body(element) or code_body_from_macro_markup(markup)

        fence = code_fence_for(code)
        return f"{fence}{language}\n{code}\n{fence}\n"

    def _plain_text_body(self, element: Tag) -> str:
        body = element.find('ac:plain-text-body')
        if body is None:
            return ''
        protected = body.find('pre', attrs={'data-cdata': 'true'})
        if protected is not None:
            return protected.get_text().strip()
        return code_body_from_macro_markup(str(element))

    def _convert_mermaid_macro(self, element: Tag, name: str, parent_tags: frozenset) -> str:
        filename = self._macro_parameter(element, 'filename')
        if not filename:
            return '<!-- Mermaid macro missing filename -->'

        revision_text = self._macro_parameter(element, 'revision')
        try:
            revision = int(revision_text) if revision_text else 0
        except ValueError:
            self.logger.debug(f"Ignoring non-numeric mermaid revision '{revision_text}'")
            revision = 0

        if self.attachment_resolver is None:
            return f"<!-- Mermaid attachment {filename} unavailable: no attachment resolver configured -->"
        if self.current_page is None:
            return f"<!-- Mermaid attachment {filename} unavailable: no page context -->"

        try:
            content = self.attachment_resolver.resolve(self.current_page, filename, revision)
        except AttachmentError as e:
            self.logger.warning(f"Failed to load mermaid attachment {filename}: {e}")
            return f"<!-- Failed to load mermaid {filename}: {e} -->"

        diagram = content.strip()
        if not diagram:
            return '<!-- Empty mermaid macro -->'
        return f"```mermaid\n{diagram}\n```\n"

    def _convert_expand_macro(self, element: Tag, name: str, parent_tags: frozenset) -> str:
        content = self.render_rich_text_body(element, parent_tags)
        return f"{content}\n\n" if content else ''

    def _convert_status_macro(self, element: Tag, name: str, parent_tags: frozenset) -> str:
        title = self._macro_parameter(element, 'title')
        if not title:
            return ''
        colour = (self._macro_parameter(element, 'colour') or self._macro_parameter(element, 'color')).lower()
        emoji = STATUS_COLOURS.get(colour)
        if emoji:
            return f"{emoji} **{title}**"
        return f"**[{title}]**"

    def _convert_children_macro(self, element: Tag, name: str, parent_tags: frozenset) -> str:
        return '<!-- Child Pages -->'

    def _convert_unsupported_macro(self, element: Tag, name: str, parent_tags: frozenset) -> str:
        self.logger.info(f"Unsupported macro type: {name}")
        return f"<!-- Unsupported macro: {name} -->"


__all__ = [
    'ConfluenceElement',
    'MacroHandler',
    'MacroKind',
    'RenderResult',
    'RenderStatus',
    'code_fence_for',
    'image_local_path'
]
