"""Tests for Markdown pipe table conversion and cell flattening."""

import unittest

from bs4 import BeautifulSoup

from converters.markdown_converter import MarkdownConverter
from converters.table_converter import cell_has_complex_content, is_header_row


def parse(html):
    return BeautifulSoup(html, 'html.parser')


class TestComplexCellDetection(unittest.TestCase):

    def cell(self, inner):
        return parse(f'<table><tbody><tr><td>{inner}</td></tr></tbody></table>').find('td')

    def test_single_paragraph_is_simple(self):
        """Test one paragraph without breaks is simple."""
        self.assertFalse(cell_has_complex_content(self.cell('<p>one</p>')))

    def test_two_paragraphs_are_complex(self):
        """Test two paragraphs make a cell complex."""
        self.assertTrue(cell_has_complex_content(self.cell('<p>one</p><p>two</p>')))

    def test_list_is_complex(self):
        """Test a list makes a cell complex."""
        self.assertTrue(cell_has_complex_content(self.cell('<ul><li>a</li></ul>')))

    def test_bare_break_is_complex(self):
        """Test a line break directly in the cell makes it complex."""
        self.assertTrue(cell_has_complex_content(self.cell('a<br/>b')))

    def test_break_inside_paragraph_is_complex(self):
        """Test a line break inside a paragraph makes the cell complex."""
        self.assertTrue(cell_has_complex_content(self.cell('<p>a<br/>b</p>')))

    def test_header_row(self):
        """Test a row is a header row only when all cells are th."""
        row = parse('<tr><th>a</th><th>b</th></tr>').find_all(['td', 'th'])
        mixed = parse('<tr><th>a</th><td>b</td></tr>').find_all(['td', 'th'])
        self.assertTrue(is_header_row(row))
        self.assertFalse(is_header_row(mixed))
        self.assertFalse(is_header_row([]))


class TestTableConverter(unittest.TestCase):

    def setUp(self):
        self.converter = MarkdownConverter()
        self.tables = self.converter.macro_handler.table_converter

    def convert(self, html):
        return self.tables.convert(parse(html).find('table'))

    def test_simple_table(self):
        """Test a 2x2 table gives header, separator and data lines."""
        markdown = self.convert(
            '<table><tbody>'
            '<tr><th>Name</th><th>Value</th></tr>'
            '<tr><td>alpha</td><td>1</td></tr>'
            '</tbody></table>'
        )
        lines = markdown.rstrip('\n').split('\n')
        self.assertEqual(lines, ['| Name | Value |', '|---|---|', '| alpha | 1 |'])
        for line in lines:
            self.assertEqual(line.count('|'), 3)

    def test_headerless_table_gets_separator(self):
        """Test the separator follows the first row even without th cells."""
        markdown = self.convert('<table><tbody><tr><td>a</td></tr><tr><td>b</td></tr></tbody></table>')
        self.assertEqual(markdown, '| a |\n|---|\n| b |\n')

    def test_short_rows_are_padded(self):
        """Test rows with fewer cells are padded to the widest row."""
        markdown = self.convert(
            '<table><tbody><tr><th>a</th><th>b</th></tr><tr><td>1</td></tr></tbody></table>'
        )
        self.assertIn('| 1 |   |', markdown)

    def test_thead_and_tbody_rows(self):
        """Test rows are collected from thead and tbody in order."""
        markdown = self.convert(
            '<table><thead><tr><th>H</th></tr></thead><tbody><tr><td>D</td></tr></tbody></table>'
        )
        self.assertEqual(markdown, '| H |\n|---|\n| D |\n')

    def test_table_without_tbody(self):
        """Test a table without tbody is left to default rendering."""
        self.assertIsNone(self.convert('<table><tr><td>a</td></tr></table>'))

    def test_empty_cell(self):
        """Test empty and non-breaking-space cells become a single space."""
        markdown = self.convert('<table><tbody><tr><td></td><td>\xa0</td></tr></tbody></table>')
        self.assertTrue(markdown.startswith('|   |   |'))

    def test_pipe_is_escaped(self):
        """Test literal pipes inside cells are escaped."""
        markdown = self.convert('<table><tbody><tr><td>a|b</td></tr></tbody></table>')
        self.assertIn('a\\|b', markdown)

    def test_inline_formatting_in_simple_cell(self):
        """Test simple cells keep Markdown inline formatting."""
        markdown = self.convert('<table><tbody><tr><td><p><strong>bold</strong> text</p></td></tr></tbody></table>')
        self.assertIn('**bold** text', markdown)

    def test_flatten_paragraphs(self):
        """Test multiple paragraphs are joined on one line."""
        markdown = self.convert('<table><tbody><tr><td><p>first</p><p>second</p></td></tr></tbody></table>')
        self.assertIn('| first second |', markdown)

    def test_flatten_keeps_breaks_and_markup(self):
        """Test flattening keeps br tags and inline HTML."""
        markdown = self.convert(
            '<table><tbody><tr><td>line1<br/><strong>line2</strong></td></tr></tbody></table>'
        )
        self.assertIn('line1<br><strong>line2</strong>', markdown)

    def test_flatten_heading(self):
        """Test headings inside complex cells become strong text."""
        markdown = self.convert(
            '<table><tbody><tr><td><h3>Title</h3><p>body</p></td></tr></tbody></table>'
        )
        self.assertIn('<strong>Title</strong>body', markdown)

    def test_flatten_status_macro(self):
        """Test Confluence macros inside flattened cells are rendered."""
        markdown = self.convert(
            '<table><tbody><tr><td><p>a</p><p><ac:structured-macro ac:name="status">'
            '<ac:parameter ac:name="colour">Red</ac:parameter>'
            '<ac:parameter ac:name="title">Blocked</ac:parameter>'
            '</ac:structured-macro></p></td></tr></tbody></table>'
        )
        self.assertIn('🔴 **Blocked**', markdown)
        self.assertNotIn('Red', markdown)

    def test_flatten_list_items(self):
        """Test flattened list items stay separated by line breaks."""
        markdown = self.convert('<table><tbody><tr><td><ul><li>one</li><li>two</li></ul></td></tr></tbody></table>')
        self.assertIn('| one<br>two |', markdown)

    def test_each_row_is_one_line(self):
        """Test complex cells never break the row across lines."""
        markdown = self.convert(
            '<table><tbody><tr><th>K</th></tr>'
            '<tr><td><ul><li>one</li><li>two</li></ul></td></tr></tbody></table>'
        )
        self.assertEqual(len(markdown.rstrip('\n').split('\n')), 3)


if __name__ == '__main__':
    unittest.main()
