"""Text extraction helpers for raw Confluence macro markup."""

import html
import re

IMAGE_FILENAME_PATTERN = re.compile(r'ri:filename="([^"]+)"')
PLAIN_TEXT_BODY_PATTERN = re.compile(r'<ac:plain-text-body>([\s\S]*?)</ac:plain-text-body>')

# CDATA wrappers as written, and as rewritten into a comment by lenient HTML parsers
CDATA_WRAPPERS = (
    ('<![CDATA[', ']]>'),
    ('<!--[CDATA[', ']]-->'),
)


def filename_from_image_markup(markup: str) -> str:
    """Get the ri:filename attribute value from image markup, or '' when there is none."""
    match = IMAGE_FILENAME_PATTERN.search(markup)
    return match.group(1) if match else ''


def parameter_from_macro_markup(markup: str, name: str) -> str:
    """Get the text of the named ac:parameter from macro markup, or ''."""
    pattern = re.compile(
        r'<ac:parameter[^>]*ac:name="' + re.escape(name) + r'"[^>]*>([^<]+)</ac:parameter>'
    )
    match = pattern.search(markup)
    return match.group(1).strip() if match else ''


def language_from_macro_markup(markup: str) -> str:
    """Get the code macro language parameter from macro markup."""
    return parameter_from_macro_markup(markup, 'language')


def code_body_from_macro_markup(markup: str) -> str:
    """
    Get the plain-text body of a macro from its raw markup.

    Entities are unescaped and CDATA wrappers are stripped in both their raw
    and comment-rewritten forms.

    Args:
        markup: Serialized ac:structured-macro element

    Returns:
        The body text, stripped of surrounding whitespace, or '' if absent
    """
    match = PLAIN_TEXT_BODY_PATTERN.search(markup)
    if not match:
        return ''

    content = html.unescape(match.group(1)).strip()
    for prefix, suffix in CDATA_WRAPPERS:
        if content.startswith(prefix) and content.endswith(suffix):
            content = content[len(prefix):-len(suffix)]
            break
    return content.strip()


__all__ = [
    'code_body_from_macro_markup',
    'filename_from_image_markup',
    'language_from_macro_markup',
    'parameter_from_macro_markup'
]
