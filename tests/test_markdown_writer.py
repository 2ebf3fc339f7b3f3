"""Tests for output naming, document writing and image downloads."""

import tempfile
import unittest
from pathlib import Path

from confluence_client import ConfluenceAPIError
from exporters import ImageDownloader, generate_file_name, save_markdown_document, slugify_title
from models import ConfluenceAttachment, ConfluencePage, ConfluenceRef, Frontmatter, ImageRef, MarkdownDocument


def make_page(title='Getting Started', attachments=None):
    return ConfluencePage(
        id='12345',
        title=title,
        content='<p>x</p>',
        space_key='DOC',
        version=3,
        attachments=attachments or []
    )


def make_document(images=None):
    frontmatter = Frontmatter(
        title='Getting Started',
        author='',
        date=None,
        labels=[],
        confluence=ConfluenceRef(page_id='12345', space_key='DOC', version=3, url='https://x/wiki')
    )
    return MarkdownDocument(frontmatter=frontmatter, content='Body', images=images or [])


class TestFileNaming(unittest.TestCase):

    def test_slugify(self):
        """Test titles are lowercased and punctuation collapses to dashes."""
        self.assertEqual(slugify_title('Getting Started: API & SDK!'), 'getting-started-api-sdk')
        self.assertEqual(slugify_title('Café Ünïcode'), 'cafe-unicode')
        self.assertEqual(slugify_title('日本語'), '')

    def test_slug_length(self):
        """Test long titles are truncated."""
        self.assertLessEqual(len(slugify_title('word ' * 100)), 100)

    def test_default_name(self):
        """Test the default name is the slug with a .md extension."""
        self.assertEqual(generate_file_name(make_page()), 'getting-started.md')

    def test_untitled_fallback(self):
        """Test titles without usable characters fall back to untitled."""
        self.assertEqual(generate_file_name(make_page(title='???')), 'untitled.md')

    def test_template(self):
        """Test templates can use page fields."""
        self.assertEqual(generate_file_name(make_page(), '{space}-{id}-v{version}'), 'DOC-12345-v3.md')
        self.assertEqual(generate_file_name(make_page(), '{slug}.markdown'), 'getting-started.markdown')

    def test_template_cannot_escape_directory(self):
        """Test path components in templates are dropped."""
        self.assertEqual(generate_file_name(make_page(), '../../{slug}.md'), 'getting-started.md')

    def test_template_unknown_field(self):
        """Test unknown template fields raise ValueError."""
        with self.assertRaises(ValueError):
            generate_file_name(make_page(), '{author}.md')

    def test_template_invalid_result(self):
        """Test templates rendering to dot names are rejected."""
        with self.assertRaises(ValueError):
            generate_file_name(make_page(), '..')


class TestSaveDocument(unittest.TestCase):

    def test_save_with_frontmatter(self):
        """Test documents are written with parent directories created."""
        with tempfile.TemporaryDirectory() as temp_dir:
            target = Path(temp_dir) / 'nested' / 'page.md'
            written = save_markdown_document(make_document(), target)
            text = written.read_text(encoding='utf-8')
        self.assertTrue(text.startswith('---\ntitle: "Getting Started"\n'))
        self.assertTrue(text.endswith('---\n\nBody'))

    def test_save_without_frontmatter(self):
        """Test frontmatter can be left out."""
        with tempfile.TemporaryDirectory() as temp_dir:
            written = save_markdown_document(make_document(), Path(temp_dir) / 'page.md', include_frontmatter=False)
            self.assertEqual(written.read_text(encoding='utf-8'), 'Body')


class FakeClient:
    def __init__(self, contents, content_type='image/png'):
        self.contents = contents
        self.content_type = content_type
        self.requested = []

    def download_url(self, url):
        self.requested.append(url)
        if url not in self.contents:
            raise ConfluenceAPIError(f"failed to download file: HTTP 404 - {url}", status_code=404)
        return self.contents[url], self.content_type


def make_attachment(title, media_type='image/png'):
    return ConfluenceAttachment(
        id=f'att-{title}',
        title=title,
        media_type=media_type,
        file_size=10,
        download_url=f'/download/attachments/12345/{title}'
    )


def make_image(name):
    return ImageRef(
        origin_url=f'https://x.atlassian.net/wiki/download/attachments/12345/{name}',
        local_path=f'assets/{name}',
        file_name=name
    )


class TestImageDownloader(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)

    def test_downloads_images(self):
        """Test images are saved at their local path and the manifest is updated."""
        page = make_page(attachments=[make_attachment('a.png')])
        image = make_image('a.png')
        client = FakeClient({image.origin_url: b'png-data'})
        document = make_document([image])

        written = ImageDownloader(client).download_images(document, page, self.temp_dir.name)

        self.assertEqual(written, 1)
        self.assertEqual(client.requested, [image.origin_url])
        target = Path(self.temp_dir.name) / 'assets' / 'a.png'
        self.assertEqual(target.read_bytes(), b'png-data')
        self.assertEqual(document.images[0].content_type, 'image/png')
        self.assertEqual(document.images[0].size, 8)
        self.assertEqual(page.attachments[0].local_path, 'assets/a.png')

    def test_image_not_in_attachment_list(self):
        """Test images are fetched by origin URL even when the page lists no attachment for them."""
        page = make_page(attachments=[])
        image = make_image('d.png')
        client = FakeClient({image.origin_url: b'jpeg'}, content_type='image/jpeg')
        document = make_document([image])

        written = ImageDownloader(client).download_images(document, page, self.temp_dir.name)

        self.assertEqual(written, 1)
        self.assertEqual(client.requested, ['https://x.atlassian.net/wiki/download/attachments/12345/d.png'])
        self.assertEqual((Path(self.temp_dir.name) / 'assets' / 'd.png').read_bytes(), b'jpeg')
        self.assertEqual(document.images[0].content_type, 'image/jpeg')
        self.assertEqual(document.images[0].size, 4)

    def test_failed_download_is_skipped(self):
        """Test failed downloads are logged and skipped."""
        good = make_image('a.png')
        client = FakeClient({good.origin_url: b'png-data'})
        document = make_document([make_image('missing.png'), good])
        downloader = ImageDownloader(client)

        with self.assertLogs('confluence_md.exporters.image_downloader', level='WARNING'):
            written = downloader.download_images(document, make_page(), self.temp_dir.name)

        self.assertEqual(written, 1)
        self.assertIsNone(document.images[0].size)
        self.assertIsNone(document.images[0].content_type)
        self.assertEqual(downloader.get_stats()['failed'], 1)
        self.assertEqual(downloader.get_stats()['downloaded'], 1)

    def test_size_limit(self):
        """Test images over the size limit are not written."""
        image = make_image('big.png')
        client = FakeClient({image.origin_url: b'x' * 20})
        document = make_document([image])
        downloader = ImageDownloader(client, max_size=10)

        with self.assertLogs('confluence_md.exporters.image_downloader', level='WARNING'):
            written = downloader.download_images(document, make_page(), self.temp_dir.name)

        self.assertEqual(written, 0)
        self.assertFalse((Path(self.temp_dir.name) / 'assets' / 'big.png').exists())
        self.assertEqual(downloader.get_stats()['skipped'], 1)

    def test_no_images(self):
        """Test documents without images do nothing."""
        client = FakeClient({})
        downloader = ImageDownloader(client)
        self.assertEqual(downloader.download_images(make_document(), make_page(), self.temp_dir.name), 0)
        self.assertEqual(client.requested, [])


if __name__ == '__main__':
    unittest.main()
