"""Candidate extraction: find the images a source item references.

Image-shaped field values come in several forms (a bare URL string, an
object with ``url``/``alt``, empty placeholders, junk). They are normalized
once into an :data:`ImageValue` so nothing downstream has to guess.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from cms_migrator.constants import PLACEHOLDER_VALUES
from cms_migrator.core.field_mappings import CollectionConfig
from cms_migrator.types import (
    FieldKind,
    ImageReference,
    ImageUrl,
    ImageUrlWithAlt,
    ImageValue,
    MissingImage,
    SourceItem,
)
from cms_migrator.utils.logging import log_with_context


def is_url_shaped(value: Any) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not isinstance(value, str):
        return False
    candidate = value.strip()
    if candidate.lower() in PLACEHOLDER_VALUES:
        return False
    try:
        parsed = urlparse(candidate)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def normalize_image_value(value: Any) -> ImageValue:
    """Turn a raw image field value into a tagged :data:`ImageValue`."""
    if value is None:
        return MissingImage("missing")
    if isinstance(value, str):
        if value.strip().lower() in PLACEHOLDER_VALUES:
            return MissingImage("placeholder")
        if is_url_shaped(value):
            return ImageUrl(value.strip())
        return MissingImage("malformed")
    if isinstance(value, dict):
        url = value.get("url")
        if url is None or (isinstance(url, str) and url.strip().lower() in PLACEHOLDER_VALUES):
            return MissingImage("placeholder" if url is not None else "missing")
        if not is_url_shaped(url):
            return MissingImage("malformed")
        alt = value.get("alt")
        file_id = value.get("fileId")
        return ImageUrlWithAlt(
            url=url.strip(),
            alt=alt if isinstance(alt, str) else "",
            file_id=file_id if isinstance(file_id, str) else None,
        )
    return MissingImage("malformed")


def find_inline_images(html: Any) -> list[str]:
    """Return ``<img src>`` URLs in markup, in document order, de-duplicated."""
    if not isinstance(html, str) or "<img" not in html.lower():
        return []
    urls: list[str] = []
    soup = BeautifulSoup(html, "html.parser")
    for img in soup.find_all("img"):
        src = img.get("src")
        if not isinstance(src, str):
            continue
        url = src.strip()
        if is_url_shaped(url) and url not in urls:
            urls.append(url)
    return urls


@dataclass
class Extraction:
    """Images found in one item, in field-table order."""

    references: list[ImageReference] = field(default_factory=list)
    missing: int = 0


class CandidateExtractor:
    """Walks a source item's fields against a collection's mapping table."""

    def __init__(self, collection: CollectionConfig, scan_rich_text: bool = False):
        self.collection = collection
        self.scan_rich_text = scan_rich_text

    def extract(self, item: SourceItem) -> Extraction:
        """
        Produce one ImageReference per usable image in the item.

        Single image fields yield at most one reference. Gallery fields
        yield one per usable entry with ``index`` set to the entry's
        position. Unusable values are counted as missing, never raised.
        """
        result = Extraction()
        for mapping in self.collection.image_mappings:
            raw = item.fields.get(mapping.source_key)
            if mapping.kind is FieldKind.IMAGE:
                value = normalize_image_value(raw)
                if isinstance(value, MissingImage):
                    result.missing += 1
                    continue
                result.references.append(
                    ImageReference(
                        field_name=mapping.source_key,
                        original_url=value.url,
                        alt_text=getattr(value, "alt", ""),
                    )
                )
            elif mapping.kind is FieldKind.IMAGE_ARRAY:
                if raw is None:
                    continue
                if not isinstance(raw, list):
                    result.missing += 1
                    continue
                for index, entry in enumerate(raw):
                    value = normalize_image_value(entry)
                    if isinstance(value, MissingImage):
                        result.missing += 1
                        continue
                    result.references.append(
                        ImageReference(
                            field_name=mapping.source_key,
                            original_url=value.url,
                            index=index,
                            alt_text=getattr(value, "alt", ""),
                        )
                    )

        if self.scan_rich_text:
            self._extract_inline(item, result)

        if result.missing:
            log_with_context(
                logging.DEBUG,
                f"{result.missing} image fields missing or unusable",
                slug=item.slug,
                source_id=item.id,
            )
        return result

    def _extract_inline(self, item: SourceItem, result: Extraction) -> None:
        known = {ref.original_url for ref in result.references}
        scanned: set[str] = set()
        for mapping in self.collection.rich_text_mappings:
            if mapping.source_key in scanned:
                continue
            scanned.add(mapping.source_key)
            position = 0
            for url in find_inline_images(item.fields.get(mapping.source_key)):
                if url in known:
                    continue
                known.add(url)
                result.references.append(
                    ImageReference(
                        field_name=mapping.source_key,
                        original_url=url,
                        index=position,
                        inline=True,
                    )
                )
                position += 1
