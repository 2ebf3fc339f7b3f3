"""Table conversion for Confluence storage-format tables.

Cells holding only inline content are rendered through the regular Markdown
converter. Cells holding block structure (lists, several paragraphs, line
breaks, nested tables) are flattened into a single-line HTML fragment so the
table stays a valid pipe table.
"""

import logging
import re
from typing import List, Optional

from bs4 import Tag
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction

logger = logging.getLogger('confluence_md.converters.table_converter')

HEADING_TAGS = {'h1', 'h2', 'h3', 'h4', 'h5', 'h6'}
TEXT_BLOCK_TAGS = HEADING_TAGS | {'p'}
BLOCK_CONTAINER_TAGS = {'ul', 'ol', 'div', 'blockquote', 'pre', 'table'}
INLINE_MARKUP_TAGS = {'strong', 'b', 'em', 'i', 'code', 'a'}
TABLE_SECTION_TAGS = ['thead', 'tbody', 'tfoot']
IGNORED_STRING_TYPES = (Comment, Declaration, Doctype, ProcessingInstruction)

EMPTY_CELL = ' '
UNESCAPED_PIPE = re.compile(r'(?<!\\)\|')


def cell_has_complex_content(cell: Tag) -> bool:
    """
    Decide whether a table cell needs flattening.

    A cell is complex when one of its direct children is a list, div,
    blockquote, pre or table, when it has more than one paragraph or heading,
    when a paragraph or heading contains a line break, or when a line break
    sits directly in the cell.
    """
    text_blocks = 0
    for child in cell.children:
        if not isinstance(child, Tag):
            continue
        if child.name in BLOCK_CONTAINER_TAGS:
            return True
        if child.name in TEXT_BLOCK_TAGS:
            text_blocks += 1
            if text_blocks > 1 or child.find('br') is not None:
                return True
        elif child.name == 'br':
            return True
    return False


def is_header_row(cells: List[Tag]) -> bool:
    """A row is a header row only when every cell is a th."""
    return bool(cells) and all(cell.name == 'th' for cell in cells)


class TableConverter:
    """Converts tables with a body section into Markdown pipe tables."""

    def __init__(self, macro_handler, logger: logging.Logger = None):
        """
        Initialize table converter.

        Args:
            macro_handler: MacroHandler used to render Confluence elements inside cells
            logger: Optional logger instance
        """
        self.macro_handler = macro_handler
        self.logger = logger or logging.getLogger('confluence_md.converters.table_converter')

    def convert(self, table: Tag, parent_tags=frozenset()) -> Optional[str]:
        """
        Convert a table element.

        Args:
            table: The table element
            parent_tags: Enclosing tag names from the Markdown converter

        Returns:
            The pipe table (one line per row, separator after the first row,
            trailing newline), or None when the table has no tbody or no rows
        """
        sections = table.find_all(TABLE_SECTION_TAGS, recursive=False)
        if not any(section.name == 'tbody' for section in sections):
            self.logger.debug("Table without tbody left to default rendering")
            return None

        rows = [row for section in sections for row in section.find_all('tr', recursive=False)]
        if not rows:
            return None

        cell_tags = set(parent_tags) | {'table', 'tr', 'td', '_inline'}
        grid = []
        header_flags = []
        for row in rows:
            cells = row.find_all(['td', 'th'], recursive=False)
            header_flags.append(is_header_row(cells))
            grid.append([self.convert_cell(cell, cell_tags) for cell in cells])

        max_cols = max(len(cells) for cells in grid)
        if max_cols == 0:
            return None

        if not header_flags[0]:
            if any(header_flags):
                self.logger.debug("Header row is not the first row; separator placed after first row")
            else:
                self.logger.debug("Table has no header row; treating first row as header")

        lines = []
        for index, cells in enumerate(grid):
            cells = cells + [EMPTY_CELL] * (max_cols - len(cells))
            lines.append('| ' + ' | '.join(cells) + ' |')
            if index == 0:
                lines.append('|' + '---|' * max_cols)

        return '\n'.join(lines) + '\n'

    def convert_cell(self, cell: Tag, parent_tags=frozenset()) -> str:
        """Convert one cell to single-line content suitable for a pipe table."""
        if cell_has_complex_content(cell):
            content = self.flatten_cell(cell, parent_tags)
        else:
            content = self._render_simple_cell(cell, parent_tags)

        if content in ('', '&nbsp;', '\xa0'):
            return EMPTY_CELL
        return UNESCAPED_PIPE.sub(r'\\|', content)

    def flatten_cell(self, cell: Tag, parent_tags=frozenset()) -> str:
        """Flatten complex cell content into one line of inline HTML."""
        out: List[str] = []
        for child in cell.children:
            self._flatten_node(child, out, parent_tags)

        content = ''.join(out).replace('\r', '').replace('\n', ' ')
        return ' '.join(content.split())

    def _flatten_node(self, node, out: List[str], parent_tags) -> None:
        if isinstance(node, NavigableString):
            if not isinstance(node, IGNORED_STRING_TYPES):
                out.append(str(node))
            return
        if not isinstance(node, Tag):
            return

        name = node.name
        if name in HEADING_TAGS:
            out.append('<strong>')
            self._flatten_children(node, out, parent_tags)
            out.append('</strong>')
        elif name == 'br':
            out.append('<br>')
        elif name == 'p':
            if not node.contents:
                return
            self._flatten_children(node, out, parent_tags)
            if node.next_sibling is not None:
                out.append(' ')
        elif name == 'li':
            self._flatten_children(node, out, parent_tags)
            if node.find_next_sibling('li') is not None:
                out.append('<br>')
        elif name in INLINE_MARKUP_TAGS:
            out.append(str(node))
        elif self.macro_handler.handles_inline(name):
            result = self.macro_handler.dispatch(node, parent_tags)
            out.append(result.text)
            if not result.is_final:
                self._flatten_children(node, out, parent_tags)
        else:
            self._flatten_children(node, out, parent_tags)

    def _flatten_children(self, node: Tag, out: List[str], parent_tags) -> None:
        for child in node.children:
            self._flatten_node(child, out, parent_tags)

    def _render_simple_cell(self, cell: Tag, parent_tags) -> str:
        renderer = self.macro_handler.renderer
        if renderer is None:
            return ' '.join(cell.get_text().split())
        return renderer.render_nodes(cell.children, parent_tags).replace('\n', ' ').strip()


__all__ = ['TableConverter', 'cell_has_complex_content', 'is_header_row']
