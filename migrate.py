#!/usr/bin/env python3
"""
Confluence to Markdown Conversion Tool - Main CLI Entry Point

This script provides the command-line interface for converting Confluence
Cloud pages (storage format) into Markdown files with YAML frontmatter and
locally downloaded images.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import requests
from tqdm import tqdm

from config_loader import ConfigLoader, get_nested
from confluence_client import ConfluenceAPIError, ConfluenceClient, parse_page_url
from converters import AttachmentResolver, MarkdownConverter
from exporters import ImageDownloader, generate_file_name, save_markdown_document, slugify_title
from logger import ProgressTracker, log_config, setup_logging
from models import ConfluencePage, MarkdownDocument, PageValidationError

# Version
__version__ = "1.0.0"

logger = logging.getLogger('confluence_md.cli')

CREDENTIAL_COMMANDS = {'page', 'tree'}


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog='confluence-md',
        description="Convert Confluence pages to Markdown files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Convert a single page
  confluence-md page https://example.atlassian.net/wiki/spaces/DOC/pages/12345/Title \\
      --email me@example.com --api-token $TOKEN -o docs

  # Convert a page and all of its descendants
  confluence-md tree https://example.atlassian.net/wiki/spaces/DOC/pages/12345/Title -o docs

  # Convert storage-format HTML from a file or stdin
  confluence-md html page.html -o page.md
  cat page.html | confluence-md html

  # Verbose logging
  confluence-md -vv page <url>
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to configuration YAML file'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (-v for INFO, -vv for DEBUG)'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        help='Write logs to this file as well as the console'
    )

    subparsers = parser.add_subparsers(dest='command', metavar='COMMAND')

    page_parser = subparsers.add_parser('page', help='Convert a single Confluence page')
    _add_remote_arguments(page_parser)
    page_parser.set_defaults(handler=run_page_command)

    tree_parser = subparsers.add_parser('tree', help='Convert a page and all of its descendants')
    _add_remote_arguments(tree_parser)
    tree_parser.set_defaults(handler=run_tree_command)

    html_parser = subparsers.add_parser('html', help='Convert storage-format HTML from a file or stdin')
    html_parser.add_argument(
        'file',
        nargs='?',
        help='HTML file to convert (default: stdin)'
    )
    html_parser.add_argument(
        '-o', '--output',
        dest='output_file',
        type=str,
        help='Markdown file to write (default: stdout)'
    )
    html_parser.add_argument(
        '--image-folder',
        type=str,
        help='Folder image links point into (default: assets)'
    )
    html_parser.set_defaults(handler=run_html_command)

    return parser


def _add_remote_arguments(parser: argparse.ArgumentParser) -> None:
    """Options shared by the commands that talk to Confluence."""
    parser.add_argument('url', help='Confluence page URL')
    parser.add_argument(
        '--email',
        default=os.getenv('CONFLUENCE_EMAIL'),
        help='Confluence account email (default: $CONFLUENCE_EMAIL)'
    )
    parser.add_argument(
        '--api-token',
        default=os.getenv('CONFLUENCE_API_TOKEN'),
        help='Confluence API token (default: $CONFLUENCE_API_TOKEN)'
    )
    parser.add_argument(
        '-o', '--output',
        type=str,
        help='Output directory (default: ./output)'
    )
    parser.add_argument(
        '--image-folder',
        type=str,
        help='Folder for downloaded images, relative to the Markdown file (default: assets)'
    )
    parser.add_argument(
        '--no-download-images',
        action='store_true',
        help='Do not download images'
    )
    parser.add_argument(
        '--no-frontmatter',
        action='store_true',
        help='Do not write YAML frontmatter'
    )
    parser.add_argument(
        '--filename-template',
        type=str,
        help='File name template, e.g. "{id}-{slug}" (fields: slug, title, id, space, version)'
    )


def load_configuration(args: argparse.Namespace) -> dict:
    """Load the config file if given, apply defaults and CLI overrides, then validate."""
    config = ConfigLoader.load(args.config) if args.config else {}
    config = ConfigLoader.with_defaults(config)
    config = ConfigLoader.merge_with_args(config, args)
    ConfigLoader.validate(config, require_credentials=args.command in CREDENTIAL_COMMANDS)
    return config


def build_converter(
    config: dict,
    client: Optional[ConfluenceClient] = None,
    show_progress: bool = False
) -> MarkdownConverter:
    """Create a converter wired to the client for mermaid attachments and image downloads."""
    resolver = AttachmentResolver(downloader=client) if client is not None else None

    image_downloader = None
    if client is not None and get_nested(config, 'conversion.download_images', True):
        image_downloader = ImageDownloader(client, show_progress=show_progress)

    return MarkdownConverter(
        attachment_resolver=resolver,
        image_downloader=image_downloader,
        config=config
    )


def convert_and_save(
    converter: MarkdownConverter,
    page: ConfluencePage,
    base_url: str,
    output_dir: Path,
    config: dict
) -> Tuple[Path, MarkdownDocument]:
    """Convert one page and write it into output_dir."""
    document = converter.convert_page(page, base_url, output_dir=str(output_dir))
    filename = generate_file_name(page, get_nested(config, 'export.filename_template') or None)
    path = save_markdown_document(
        document,
        output_dir / filename,
        include_frontmatter=get_nested(config, 'conversion.include_frontmatter', True)
    )
    return path, document


def print_page_result(page: ConfluencePage, path: Path, document: MarkdownDocument) -> None:
    """Print the conversion summary for one page."""
    downloaded = sum(1 for image in document.images if image.size is not None)
    print(f"✅ Successfully converted page: {path}")
    print(f"   Page ID: {page.id}")
    print(f"   Title: {page.title}")
    if document.images:
        print(f"   📥 Images downloaded: {downloaded}/{len(document.images)}")


def print_image_stats(image_downloader: Optional[ImageDownloader]) -> None:
    """Print image download statistics when any image was attempted."""
    if image_downloader is None:
        return
    stats = image_downloader.get_stats()
    if not stats['total_images']:
        return
    print(
        f"   🖼️  Images: {stats['downloaded']} downloaded, {stats['skipped']} skipped, "
        f"{stats['failed']} failed ({stats['total_size_bytes'] / 1024:.1f} KB)"
    )


def run_page_command(args: argparse.Namespace, config: dict) -> int:
    """Fetch, convert and write a single page."""
    base_url = get_nested(config, 'confluence.base_url')
    output_dir = Path(get_nested(config, 'export.output_directory', './output'))

    client = ConfluenceClient.from_config(config)
    page = None
    try:
        page = client.get_page(args.page_id)
        converter = build_converter(config, client, show_progress=args.verbose == 0)
        path, document = convert_and_save(converter, page, base_url, output_dir, config)
    except (ConfluenceAPIError, requests.exceptions.RequestException, PageValidationError, OSError) as e:
        logger.error(f"Page conversion failed: {str(e)}")
        print(f"❌ Failed to convert page: {page.title if page else args.page_id}", file=sys.stderr)
        print(f"   Error: {e}", file=sys.stderr)
        return 1

    print_page_result(page, path, document)
    print_image_stats(converter.image_downloader)
    return 0


def collect_page_tree(
    client: ConfluenceClient,
    root: ConfluencePage,
    output_dir: Path,
    fetch_attachments: bool = True
) -> List[Tuple[ConfluencePage, Path]]:
    """
    Walk a page tree depth-first.

    Children are written into a directory named after their parent's slug.

    Returns:
        (page, directory) pairs in depth-first order, root first
    """
    pages = [(root, output_dir)]
    child_dir = output_dir / (slugify_title(root.title) or root.id)

    for child in client.get_child_pages(root.id):
        # Child listings do not expand attachments
        if fetch_attachments and not child.attachments:
            child = client.get_page(child.id)
        pages.extend(collect_page_tree(client, child, child_dir, fetch_attachments))
    return pages


def run_tree_command(args: argparse.Namespace, config: dict) -> int:
    """Fetch, convert and write a page and all of its descendants."""
    base_url = get_nested(config, 'confluence.base_url')
    output_dir = Path(get_nested(config, 'export.output_directory', './output'))
    download_images = get_nested(config, 'conversion.download_images', True)

    client = ConfluenceClient.from_config(config)
    try:
        root = client.get_page(args.page_id)
        pages = collect_page_tree(client, root, output_dir, fetch_attachments=download_images)
    except (ConfluenceAPIError, requests.exceptions.RequestException) as e:
        logger.error(f"Failed to fetch page tree: {str(e)}")
        print(f"❌ Failed to fetch page tree for page {args.page_id}: {e}", file=sys.stderr)
        return 1

    logger.info(f"Found {len(pages)} pages under '{root.title}'")
    failures = []
    # One converter for the whole tree so image statistics accumulate
    converter = build_converter(config, client)

    with ProgressTracker(len(pages), "pages") as tracker:
        for page, directory in tqdm(pages, desc="Converting pages", unit="page", disable=args.verbose > 0):
            try:
                path, document = convert_and_save(converter, page, base_url, directory, config)
            except (ConfluenceAPIError, requests.exceptions.RequestException, PageValidationError, OSError) as e:
                logger.error(f"Failed to convert page {page.id} ('{page.title}'): {str(e)}")
                failures.append((page, e))
                tracker.increment(success=False)
                continue

            logger.info(f"Converted page {page.id} -> {path}")
            tracker.increment(success=True)

    converted = len(pages) - len(failures)
    print(f"✅ Converted {converted}/{len(pages)} pages into {output_dir}")
    print_image_stats(converter.image_downloader)
    for page, error in failures:
        print(f"❌ Failed to convert page: {page.title}", file=sys.stderr)
        print(f"   Error: {error}", file=sys.stderr)

    return 1 if failures else 0


def run_html_command(args: argparse.Namespace, config: dict) -> int:
    """Convert storage-format HTML from a file or stdin."""
    if args.file:
        with open(args.file, 'r', encoding='utf-8') as f:
            html_content = f.read()
    else:
        html_content = sys.stdin.read()

    if not html_content.strip():
        print("ERROR: no input provided", file=sys.stderr)
        return 2

    converter = MarkdownConverter(config=config)
    markdown = converter.convert_html(html_content)

    if args.output_file:
        output_path = Path(args.output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(markdown + '\n', encoding='utf-8')
        logger.info(f"Wrote {output_path}")
    else:
        sys.stdout.write(markdown + '\n')

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help(sys.stderr)
        return 2

    try:
        # Minimal logging until the config file has been read
        setup_logging(verbosity=args.verbose, log_file=args.log_file)

        if args.command in CREDENTIAL_COMMANDS:
            url_info = parse_page_url(args.url)
            args.base_url = url_info.base_url
            args.page_id = url_info.page_id

        config = load_configuration(args)

        setup_logging(
            log_file=get_nested(config, 'logging.file'),
            level=get_nested(config, 'logging.level', 'WARNING')
        )
        logger.info(f"confluence-md {__version__}")
        log_config(config)

        return args.handler(args, config)

    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        print("\nConversion interrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        logger.debug("Unexpected error", exc_info=True)
        print(f"ERROR: Unexpected error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
