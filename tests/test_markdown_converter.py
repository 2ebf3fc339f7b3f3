"""Tests for the end-to-end page conversion pipeline."""

import unittest
from unittest.mock import MagicMock

from converters import convert_html, convert_page
from converters.macro_handler import ConfluenceElement, RenderResult
from converters.markdown_converter import (
    MarkdownConverter,
    fix_markdown_links,
    fix_nested_list_spacing,
    postprocess_markdown,
    preprocess_cdata,
)
from models import ConfluencePage, PageValidationError

BASE_URL = 'https://x.atlassian.net'


def make_page(content, **kwargs):
    fields = dict(id='123', title='Test Page', content=content, space_key='DOC')
    fields.update(kwargs)
    return ConfluencePage(**fields)


class TestPreprocessing(unittest.TestCase):

    def test_cdata_is_protected(self):
        """Test CDATA sections become escaped pre blocks."""
        html = '<ac:plain-text-body><![CDATA[a < b & c > d]]></ac:plain-text-body>'
        self.assertEqual(
            preprocess_cdata(html),
            "<ac:plain-text-body><pre data-cdata='true'>a &lt; b &amp; c &gt; d</pre></ac:plain-text-body>"
        )

    def test_multiple_cdata_sections(self):
        """Test every CDATA section is rewritten separately."""
        html = '<![CDATA[one]]><p>x</p><![CDATA[two]]>'
        protected = preprocess_cdata(html)
        self.assertEqual(protected.count("<pre data-cdata='true'>"), 2)
        self.assertNotIn('CDATA', protected)


class TestPostprocessing(unittest.TestCase):

    def test_collapse_blank_lines(self):
        """Test runs of blank lines collapse to one."""
        self.assertEqual(postprocess_markdown('a\n\n\n\nb\n\n'), 'a\n\nb')

    def test_nested_list_spacing(self):
        """Test blank lines before deeper list items are removed at every depth."""
        markdown = '- a\n\n  - b\n\n    - c\n\n      1. d'
        self.assertEqual(fix_nested_list_spacing(markdown), '- a\n  - b\n    - c\n      1. d')

    def test_sibling_items_keep_spacing(self):
        """Test top-level siblings and paragraphs are untouched."""
        markdown = '- a\n\n- b\n\nparagraph\n\n  indented text'
        self.assertEqual(fix_nested_list_spacing(markdown), markdown)

    def test_internal_link_rewrite(self):
        """Test page links are rewritten to confluence:// references."""
        self.assertEqual(
            fix_markdown_links('[Page](/wiki/spaces/SPACE/pages/12345/Some-Page)'),
            '[Page](confluence://pageId/12345)'
        )

    def test_other_links_untouched(self):
        """Test links outside the space/page pattern are kept."""
        markdown = '[Site](https://example.com/a) [Blog](/wiki/spaces/SPACE/blog/1/x)'
        self.assertEqual(fix_markdown_links(markdown), markdown)

    def test_postprocess_idempotent(self):
        """Test postprocessing twice gives the same result."""
        samples = [
            '\n\n- a\n\n\n  - b\n\n    - c\n',
            '# Title\n\n\n\ntext [P](/wiki/spaces/S/pages/1/T)\n\n',
            '1. one\n\n   - two\n\n\n\n```\ncode\n```',
            '',
            '   ',
        ]
        for sample in samples:
            with self.subTest(sample=sample):
                once = postprocess_markdown(sample)
                self.assertEqual(postprocess_markdown(once), once)


class TestConvertHtml(unittest.TestCase):

    def setUp(self):
        self.converter = MarkdownConverter()

    def test_headings_and_emphasis(self):
        """Test standard HTML renders with ATX headings and unescaped markers."""
        markdown = self.converter.convert_html('<h2>Setup</h2><p>Use <em>snake_case</em> and <strong>a*b</strong></p>')
        self.assertEqual(markdown, '## Setup\n\nUse *snake_case* and **a*b**')

    def test_lists(self):
        """Test nested lists render without blank lines between levels."""
        markdown = self.converter.convert_html('<ul><li>one<ul><li>two</li></ul></li><li>three</li></ul>')
        self.assertEqual(markdown, '- one\n  - two\n- three')

    def test_internal_anchor_rewrite(self):
        """Test anchors pointing at Confluence pages are rewritten."""
        markdown = self.converter.convert_html('<p><a href="/wiki/spaces/DOC/pages/42/Guide">Guide</a></p>')
        self.assertEqual(markdown, '[Guide](confluence://pageId/42)')

    def test_no_cdata_in_output(self):
        """Test CDATA markers never reach the output."""
        markdown = self.converter.convert_html('<p>a</p><![CDATA[loose text]]>')
        self.assertNotIn('CDATA', markdown)
        self.assertIn('loose text', markdown)

    def test_handler_error_becomes_comment(self):
        """Test a failing element handler is replaced by an error comment."""
        def explode(element, parent_tags):
            raise RuntimeError('boom')

        self.converter.macro_handler.element_converters[ConfluenceElement.PLACEHOLDER] = explode
        with self.assertLogs('confluence_md.converters.markdown_converter', level='ERROR'):
            markdown = self.converter.convert_html('<p>before</p><ac:placeholder>x</ac:placeholder><p>after</p>')
        self.assertEqual(markdown, 'before\n\n<!-- Error rendering ac:placeholder: boom -->\n\nafter')

    def test_default_rendering_error_becomes_comment(self):
        """Test a failure while rendering an unhandled element's children keeps the rest of the page."""
        def explode(el, text, parent_tags):
            raise RuntimeError('boom')

        self.converter.macro_handler.element_converters[ConfluenceElement.PLACEHOLDER] = (
            lambda element, parent_tags: RenderResult.unhandled()
        )
        self.converter.convert_ac_placeholder = explode
        with self.assertLogs('confluence_md.converters.markdown_converter', level='ERROR'):
            markdown = self.converter.convert_html('<p>before</p><ac:placeholder>x</ac:placeholder><p>after</p>')
        self.assertEqual(markdown, 'before\n\n<!-- Error rendering ac:placeholder: boom -->\n\nafter')

    def test_convert_html_helper(self):
        """Test the package-level helper converts fragments."""
        self.assertEqual(convert_html('<p>Hi</p>'), 'Hi')


class TestConvertPage(unittest.TestCase):

    def setUp(self):
        self.converter = MarkdownConverter()

    def test_end_to_end(self):
        """Test a page with text and an image converts with its image manifest."""
        page = make_page('<p>Hello World</p><ac:image ri:filename="diagram.png"/>')
        document = self.converter.convert_page(page, BASE_URL)

        self.assertIn('Hello World', document.content)
        self.assertEqual(len(document.images), 1)
        image = document.images[0]
        self.assertEqual(image.origin_url, 'https://x.atlassian.net/wiki/download/attachments/123/diagram.png')
        self.assertEqual(image.local_path, 'assets/diagram.png')
        self.assertEqual(image.file_name, 'diagram.png')
        self.assertIsNone(image.content_type)
        self.assertIsNone(image.size)

    def test_frontmatter_from_page(self):
        """Test the document frontmatter comes from the page metadata."""
        page = make_page('<p>x</p>', version=7, labels=['api', 'guide'])
        document = self.converter.convert_page(page, BASE_URL + '/')

        self.assertEqual(document.frontmatter.title, 'Test Page')
        self.assertEqual(document.frontmatter.labels, ['api', 'guide'])
        self.assertEqual(document.frontmatter.confluence.page_id, '123')
        self.assertEqual(document.frontmatter.confluence.version, 7)
        self.assertEqual(
            document.frontmatter.confluence.url,
            'https://x.atlassian.net/wiki/spaces/DOC/pages/123/Test%20Page'
        )

    def test_image_references_deduplicated(self):
        """Test repeated images appear once in the manifest, in document order."""
        page = make_page(
            '<ac:image ri:filename="b.png"/>'
            '<ac:image><ri:attachment ri:filename="a b.png"/></ac:image>'
            '<ac:image ri:filename="b.png"/>'
        )
        document = self.converter.convert_page(page, BASE_URL)
        self.assertEqual([image.file_name for image in document.images], ['b.png', 'a b.png'])
        self.assertEqual(
            document.images[1].origin_url,
            'https://x.atlassian.net/wiki/download/attachments/123/a%20b.png'
        )
        self.assertEqual(document.images[1].local_path, 'assets/a b.png')

    def test_images_in_code_are_ignored(self):
        """Test image markup inside code bodies is not extracted."""
        page = make_page(
            '<ac:structured-macro ac:name="code"><ac:plain-text-body>'
            '<![CDATA[<ac:image ri:filename="x.png"/>]]>'
            '</ac:plain-text-body></ac:structured-macro>'
        )
        document = self.converter.convert_page(page, BASE_URL)
        self.assertEqual(document.images, [])

    def test_image_without_filename_skipped(self):
        """Test images without resolvable filename are not in the manifest."""
        page = make_page('<ac:image><ri:url ri:value="https://e.com/x.png"/></ac:image>')
        document = self.converter.convert_page(page, BASE_URL)
        self.assertEqual(document.images, [])

    def test_invalid_page(self):
        """Test invalid pages fail before conversion."""
        with self.assertRaises(PageValidationError) as ctx:
            self.converter.convert_page(make_page(''), BASE_URL)
        self.assertEqual(str(ctx.exception), 'page content cannot be empty')

    def test_invalid_base_url(self):
        """Test an unusable base URL is rejected."""
        with self.assertRaises(ValueError):
            self.converter.convert_page(make_page('<p>x</p>'), 'not a url')

    def test_image_downloader_runs_with_output_dir(self):
        """Test the configured image downloader runs when an output directory is given."""
        downloader = MagicMock()
        converter = MarkdownConverter(image_downloader=downloader)
        page = make_page('<ac:image ri:filename="a.png"/>')

        document = converter.convert_page(page, BASE_URL)
        downloader.download_images.assert_not_called()

        document = converter.convert_page(page, BASE_URL, output_dir='out')
        downloader.download_images.assert_called_once_with(document, page, 'out')

    def test_image_folder_from_config(self):
        """Test the image folder can come from configuration."""
        converter = MarkdownConverter(config={'conversion': {'image_folder': 'img'}})
        document = converter.convert_page(make_page('<ac:image ri:filename="a.png"/>'), BASE_URL)
        self.assertEqual(document.images[0].local_path, 'img/a.png')
        self.assertEqual(document.content, '![a.png](img%2Fa.png)')

    def test_convert_page_helper(self):
        """Test the package-level helper converts pages."""
        document = convert_page(make_page('<p>Hi</p>'), BASE_URL)
        self.assertEqual(document.content, 'Hi')


if __name__ == '__main__':
    unittest.main()
