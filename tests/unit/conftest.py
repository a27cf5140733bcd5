"""Unit test configuration and shared fixtures."""

from __future__ import annotations

import itertools
import threading
from pathlib import Path
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest

from cms_migrator.core.config import BatchConfig, MigrationConfig, RetryConfig
from cms_migrator.core.context import MigrationContext
from cms_migrator.core.field_mappings import default_collections
from cms_migrator.exceptions import DuplicateRecordError
from cms_migrator.types import MigrationRecord, SourceItem, TransferResult

# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------


def make_raw_item(
    item_id: str = "wf-001",
    name: str = "Opening Night",
    slug: Optional[str] = "opening-night",
    is_draft: bool = False,
    **fields: Any,
) -> dict[str, Any]:
    """Build a dict resembling a collection-API item.

    Keyword arguments become ``fieldData`` entries; use underscores for
    hyphens (``hero_image`` -> ``hero-image``).
    """
    field_data: dict[str, Any] = {"name": name}
    if slug is not None:
        field_data["slug"] = slug
    for key, value in fields.items():
        field_data[key.replace("_", "-")] = value
    return {
        "id": item_id,
        "cmsLocaleId": "loc-en",
        "lastPublished": "2024-01-02T00:00:00Z",
        "lastUpdated": "2024-01-02T00:00:00Z",
        "createdOn": "2023-12-01T00:00:00Z",
        "isArchived": False,
        "isDraft": is_draft,
        "fieldData": field_data,
    }


def make_item(**kwargs: Any) -> SourceItem:
    """Build a SourceItem through the same path the source client uses."""
    return SourceItem.from_api(make_raw_item(**kwargs))


def make_config(**overrides: Any) -> MigrationConfig:
    """A valid MigrationConfig with every delay set to zero."""
    config = MigrationConfig()
    config.source.base_url = "https://source.example/v2"
    config.source.token = "source-token"
    config.source.page_delay = 0
    config.destination.base_url = "https://dest.example"
    config.destination.api_key = "dest-key"
    config.storage.bucket = "bucket"
    config.storage.cdn_base_url = "https://cdn.example.com"
    config.storage.base_delay = 0
    config.items_batch = BatchConfig(concurrency=2, delay=0)
    config.images_batch = BatchConfig(concurrency=3, delay=0)
    config.retry = RetryConfig(max_attempts=3, base_delay=0, max_delay=0)
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def make_context(
    collection: str = "news",
    config: Optional[MigrationConfig] = None,
    **flags: Any,
) -> MigrationContext:
    config = config or make_config()
    return MigrationContext(
        config=config,
        collection=config.collections.get(collection) or default_collections()[collection],
        output_dir=Path("/tmp/cms-migrator-test"),
        **flags,
    )


def success_result(original: str, new: str) -> TransferResult:
    return TransferResult(original_url=original, new_url=new, success=True, byte_size=10)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeResponse:
    """Streaming response stand-in for download tests."""

    def __init__(
        self,
        status_code: int = 200,
        body: bytes = b"",
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        self.headers = {"Content-Type": "image/png"}
        if headers is not None:
            self.headers = headers
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start : start + chunk_size]

    def close(self) -> None:
        self.closed = True


class InMemoryDestination:
    """Destination stand-in that keeps records in a list.

    Behaves like the real record API: create rejects a slug that already
    exists, find matches by slug.
    """

    def __init__(self, records: Optional[list[dict[str, Any]]] = None) -> None:
        self.records: list[dict[str, Any]] = list(records or [])
        self.created: list[MigrationRecord] = []
        self.updated: list[tuple[str, MigrationRecord]] = []
        self.find_calls = 0
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def list_records(self, record_type: str, slug: Optional[str] = None):
        with self._lock:
            return [
                r
                for r in self.records
                if r.get("type") == record_type and (slug is None or r.get("slug") == slug)
            ]

    def find(self, record_type: str, slug: str, source_id: Optional[str] = None):
        with self._lock:
            self.find_calls += 1
        matches = self.list_records(record_type, slug)
        return matches[0] if matches else None

    def create(self, record: MigrationRecord) -> str:
        with self._lock:
            if any(
                r.get("slug") == record.slug and r.get("type") == record.type
                for r in self.records
            ):
                raise DuplicateRecordError(f"slug '{record.slug}' already exists")
            record_id = f"rec-{next(self._ids)}"
            self.records.append({"id": record_id, **record.to_payload()})
            self.created.append(record)
            return record_id

    def update(self, record_id: str, record: MigrationRecord) -> str:
        with self._lock:
            self.updated.append((record_id, record))
        return record_id


@pytest.fixture()
def destination():
    return InMemoryDestination()


@pytest.fixture()
def mock_source():
    """A SourceClient mock returning no items unless configured."""
    source = MagicMock()
    source.enumerate_items.return_value = []
    source.get_items.return_value = []
    return source
