"""Output file naming and persistence for converted documents."""

import logging
import os
import re
import unicodedata
from pathlib import Path
from typing import Optional

from models import ConfluencePage, MarkdownDocument

logger = logging.getLogger('confluence_md.exporters.markdown_writer')

MAX_SLUG_LENGTH = 100


def slugify_title(title: str) -> str:
    """
    Convert a page title to a filesystem-safe slug.

    Args:
        title: Page title

    Returns:
        Lowercase ASCII slug, or '' when nothing usable remains
    """
    if not title:
        return ''

    # Transliterate accented characters to their ASCII base
    normalized = unicodedata.normalize('NFKD', title.strip())
    ascii_title = normalized.encode('ascii', 'ignore').decode('ascii').lower()

    slug = re.sub(r'[^a-z0-9]+', '-', ascii_title).strip('-')
    if len(slug) > MAX_SLUG_LENGTH:
        slug = slug[:MAX_SLUG_LENGTH].rstrip('-')
    return slug


def generate_file_name(page: ConfluencePage, template: Optional[str] = None) -> str:
    """
    Resolve the Markdown filename for a page.

    Args:
        page: Page being written
        template: Optional str.format template using {slug}, {title}, {id},
            {space} and {version}

    Returns:
        A bare filename, always with an extension

    Raises:
        ValueError: If the template uses an unknown field or renders an
            unusable name
    """
    if page is None:
        raise ValueError("page cannot be None")

    slug = slugify_title(page.title)
    if template and template.strip():
        try:
            name = template.format(
                slug=slug,
                title=page.title,
                id=page.id,
                space=page.space_key,
                version=page.version
            )
        except (KeyError, IndexError) as e:
            raise ValueError(f"failed to render filename template {template!r}: unknown field {e}") from e
    else:
        name = f"{slug or 'untitled'}.md"

    name = name.strip()
    if not name:
        raise ValueError("generated filename is empty")

    # Reduce to a base name so templates cannot escape the output directory
    name = os.path.basename(name)
    name = name.replace('/', '-').replace('\\', '-')
    if name in ('', '.', '..'):
        raise ValueError(f"generated filename {name!r} is invalid")

    if not os.path.splitext(name)[1]:
        name += '.md'
    return name


def save_markdown_document(document: MarkdownDocument, path, include_frontmatter: bool = True) -> Path:
    """
    Write a document to disk, creating parent directories.

    Args:
        document: Converted document
        path: Target file path
        include_frontmatter: Emit the YAML frontmatter block

    Returns:
        The path written
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(document.serialize(include_frontmatter), encoding='utf-8')
    logger.debug(f"Wrote {target}")
    return target


__all__ = ['generate_file_name', 'save_markdown_document', 'slugify_title']
