"""
Naming helpers: slugs, storage filenames and image content types.
"""

import re
from typing import Optional
from urllib.parse import unquote, urlparse

from cms_migrator.constants import CONTENT_TYPES, DEFAULT_EXTENSION

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_REPEATED_HYPHENS = re.compile(r"-+")
_NON_FILENAME_CHARS = re.compile(r"[^a-z0-9-]+")
_EXTENSION = re.compile(r"\.([a-z0-9]{2,5})$")


def slugify(text: Optional[str]) -> str:
    """
    Build a URL slug the way the legacy CMS did.

    Lowercases, removes everything except letters, digits, whitespace and
    hyphens, turns whitespace runs into single hyphens and collapses
    repeated hyphens. Leading and trailing hyphens are stripped.
    """
    if not text:
        return ""
    slug = _NON_SLUG_CHARS.sub("", text.lower().strip())
    slug = _WHITESPACE.sub("-", slug)
    slug = _REPEATED_HYPHENS.sub("-", slug)
    return slug.strip("-")


def sanitize_filename(name: str) -> str:
    """Reduce a field name to a lowercase, hyphen-separated filename stem."""
    stem = _NON_FILENAME_CHARS.sub("-", name.lower())
    stem = _REPEATED_HYPHENS.sub("-", stem).strip("-")
    return stem or "image"


def extension_from_url(url: str) -> Optional[str]:
    """
    Return the lowercase extension of the URL's last path segment.

    Query strings and fragments are ignored. Returns None when the path has
    no recognizable extension.
    """
    try:
        path = unquote(urlparse(url).path)
    except ValueError:
        return None
    match = _EXTENSION.search(path.lower())
    if not match:
        return None
    return match.group(1)


def content_type_for_extension(extension: Optional[str]) -> str:
    """Map a file extension to its image MIME type, defaulting to JPEG."""
    if not extension:
        return CONTENT_TYPES[DEFAULT_EXTENSION]
    return CONTENT_TYPES.get(extension.lower().lstrip("."), CONTENT_TYPES[DEFAULT_EXTENSION])


def extension_for_content_type(content_type: Optional[str]) -> Optional[str]:
    """Map an image MIME type (parameters allowed) back to an extension."""
    if not content_type:
        return None
    mime = content_type.split(";", 1)[0].strip().lower()
    if mime == "image/jpeg":
        return "jpg"
    if mime == "image/tiff":
        return "tiff"
    for extension, known in CONTENT_TYPES.items():
        if known == mime:
            return extension
    return None


def resolve_extension(url: str, content_type: Optional[str] = None) -> str:
    """
    Decide the source format of an image.

    The URL extension wins when it is a known image type, then the response
    Content-Type, and finally ``jpg``.
    """
    extension = extension_from_url(url)
    if extension in CONTENT_TYPES:
        return extension
    return extension_for_content_type(content_type) or DEFAULT_EXTENSION
