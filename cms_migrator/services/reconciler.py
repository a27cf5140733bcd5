"""Mapping reconciler: project a source item onto destination fields.

Image fields are rewritten through an ``original -> new`` URL map built
from successful transfers only, so a failed or skipped image keeps its
original URL. Rich-text fields get a literal URL replacement pass so that
inline ``<img>`` references move with their images.
"""

from __future__ import annotations

import re
from typing import Any, Iterable

from cms_migrator.core.field_mappings import CollectionConfig
from cms_migrator.services.extractor import normalize_image_value
from cms_migrator.types import (
    FieldKind,
    FieldMapping,
    MissingImage,
    SourceItem,
    TransferResult,
)


def build_url_map(results: Iterable[TransferResult]) -> dict[str, str]:
    """Map original URLs to new URLs for successful transfers."""
    return {r.original_url: r.new_url for r in results if r.success}


def replace_urls_in_text(text: str, url_map: dict[str, str]) -> str:
    """
    Replace every literal occurrence of each original URL in ``text``.

    URLs are escaped, never treated as patterns. Longer URLs are tried
    first so one URL that prefixes another cannot clobber it, and the
    replacement is a single pass so a new URL is never rewritten again.
    """
    if not text or not url_map:
        return text
    present = [url for url in url_map if url in text]
    if not present:
        return text
    present.sort(key=len, reverse=True)
    pattern = re.compile("|".join(re.escape(url) for url in present))
    return pattern.sub(lambda match: url_map[match.group(0)], text)


class MappingReconciler:
    """Builds a destination ``data`` object for one item."""

    def __init__(self, collection: CollectionConfig) -> None:
        self.collection = collection

    def reconcile(
        self, item: SourceItem, results: Iterable[TransferResult]
    ) -> dict[str, Any]:
        url_map = build_url_map(results)
        data: dict[str, Any] = {}
        for mapping in self.collection.fields:
            if mapping.kind is FieldKind.SCALAR:
                if mapping.source_key in item.fields:
                    data[mapping.destination_key] = self._scalar(
                        mapping, item.fields[mapping.source_key], url_map
                    )
            elif mapping.kind is FieldKind.IMAGE:
                data[mapping.destination_key] = self._image(
                    item.fields.get(mapping.source_key),
                    url_map,
                    caption=item.fields.get(mapping.caption_key)
                    if mapping.caption_key
                    else None,
                )
            else:
                data[mapping.destination_key] = self._gallery(
                    item.fields.get(mapping.source_key), url_map
                )
        return data

    @staticmethod
    def _scalar(mapping: FieldMapping, value: Any, url_map: dict[str, str]) -> Any:
        if mapping.rich_text and isinstance(value, str):
            return replace_urls_in_text(value, url_map)
        return value

    @staticmethod
    def _image(
        raw: Any, url_map: dict[str, str], caption: Any = None
    ) -> dict[str, Any] | None:
        value = normalize_image_value(raw)
        if isinstance(value, MissingImage):
            return None
        image: dict[str, Any] = {
            "url": url_map.get(value.url, value.url),
            "alt": getattr(value, "alt", ""),
        }
        if caption:
            image["caption"] = caption
        return image

    def _gallery(self, raw: Any, url_map: dict[str, str]) -> list[dict[str, Any]]:
        if not isinstance(raw, list):
            return []
        entries = (self._image(entry, url_map) for entry in raw)
        return [entry for entry in entries if entry is not None]
