"""Destination record API client and the existence guard.

The destination is reached only through its collection-items endpoint:
list/query, create and update. The guard sits in front of creates so that
re-running a migration never writes the same record twice.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Iterator

import requests

from cms_migrator.constants import HTTP_CONFLICT
from cms_migrator.core.config import DestinationConfig, RetryConfig
from cms_migrator.exceptions import (
    DestinationError,
    DuplicateRecordError,
    ExistenceCheckError,
)
from cms_migrator.types import MigrationRecord
from cms_migrator.utils.api import ApiClient, status_of_error
from cms_migrator.utils.logging import log_with_context

ITEMS_PATH = "api/collection-items"


def is_duplicate_error(error: BaseException) -> bool:
    """True when the destination rejected a create because the slug exists."""
    if status_of_error(error) == HTTP_CONFLICT:
        return True
    message = str(error).lower()
    return "slug" in message and "exist" in message


def record_source_id(record: dict[str, Any]) -> str | None:
    """Source id stored in a destination record's metadata, if any."""
    data = record.get("data") or {}
    if not isinstance(data, dict):
        return None
    for meta_key, id_key in (("sourceMeta", "sourceId"), ("webflowMeta", "webflowId")):
        meta = data.get(meta_key)
        if isinstance(meta, dict) and meta.get(id_key):
            return str(meta[id_key])
    return None


def _extract_records(body: Any) -> list[dict[str, Any]]:
    if isinstance(body, list):
        return [r for r in body if isinstance(r, dict)]
    if not isinstance(body, dict):
        return []
    for key in ("collectionItems", "items", "data"):
        records = body.get(key)
        if isinstance(records, list):
            return [r for r in records if isinstance(r, dict)]
    return []


def _extract_id(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    for key in ("collectionItem", "item", "data"):
        nested = body.get(key)
        if isinstance(nested, dict) and (nested.get("id") or nested.get("_id")):
            return str(nested.get("id") or nested.get("_id"))
    record_id = body.get("id") or body.get("_id")
    return str(record_id) if record_id else None


class DestinationClient:
    """Client for ``/api/collection-items``."""

    def __init__(
        self,
        config: DestinationConfig,
        retry_config: RetryConfig,
        api: ApiClient | None = None,
    ) -> None:
        self.config = config
        self.api = api or ApiClient(
            config.base_url,
            retry_config,
            token=config.api_key or None,
            timeout=config.timeout,
        )

    def list_records(self, record_type: str, slug: str | None = None) -> list[dict[str, Any]]:
        params = {"type": record_type}
        if slug is not None:
            params["slug"] = slug
        return _extract_records(self.api.get(ITEMS_PATH, params=params))

    def find(
        self, record_type: str, slug: str, source_id: str | None = None
    ) -> dict[str, Any] | None:
        """Return the record matching ``slug`` (or carrying ``source_id``)."""
        for record in self.list_records(record_type, slug=slug):
            if record.get("type") not in (None, record_type):
                continue
            if record.get("slug") == slug:
                return record
            if source_id and record_source_id(record) == source_id:
                return record
        return None

    def exists(self, record_type: str, slug: str, source_id: str | None = None) -> bool:
        return self.find(record_type, slug, source_id) is not None

    def list_slugs(self, record_type: str) -> set[str]:
        return {str(r["slug"]) for r in self.list_records(record_type) if r.get("slug")}

    def create(self, record: MigrationRecord) -> str | None:
        """
        Create a record and return its destination id.

        Raises:
            DuplicateRecordError: If the destination already has the slug
            DestinationError: For any other failure
        """
        try:
            body = self.api.post(ITEMS_PATH, record.to_payload())
        except (requests.RequestException, ValueError) as e:
            if is_duplicate_error(e):
                raise DuplicateRecordError(
                    f"Record with slug '{record.slug}' already exists"
                ) from e
            raise DestinationError(f"Failed to create '{record.slug}': {e}") from e

        if isinstance(body, dict) and body.get("success") is False:
            error = str(body.get("error") or body.get("message") or "unknown error")
            if "slug" in error.lower() and "exist" in error.lower():
                raise DuplicateRecordError(error)
            raise DestinationError(f"Failed to create '{record.slug}': {error}")
        return _extract_id(body)

    def update(self, record_id: str, record: MigrationRecord) -> str | None:
        """Replace an existing record's content."""
        try:
            body = self.api.put(f"{ITEMS_PATH}/{record_id}", record.to_payload())
        except (requests.RequestException, ValueError) as e:
            raise DestinationError(f"Failed to update '{record.slug}': {e}") from e
        if isinstance(body, dict) and body.get("success") is False:
            raise DestinationError(
                f"Failed to update '{record.slug}': {body.get('error', 'unknown error')}"
            )
        return _extract_id(body) or record_id


class ExistenceGuard:
    """
    Decides whether a slug is already taken in the destination.

    Slugs seen during this run (created or preloaded) are answered from
    memory; anything else is looked up. Callers hold :meth:`reserve` for a
    slug across the check and the create, so two workers can never both
    decide the same slug is free.
    """

    def __init__(
        self,
        client: DestinationClient,
        record_type: str,
        assume_missing_on_error: bool = False,
    ) -> None:
        self.client = client
        self.record_type = record_type
        self.assume_missing_on_error = assume_missing_on_error
        self._lock = threading.Lock()
        self._slug_locks: dict[str, threading.Lock] = {}
        self._known: dict[str, dict[str, Any]] = {}
        self._known_source_ids: dict[str, dict[str, Any]] = {}

    @contextmanager
    def reserve(self, slug: str) -> Iterator[None]:
        with self._lock:
            slug_lock = self._slug_locks.setdefault(slug, threading.Lock())
        with slug_lock:
            yield

    def _remember(self, record: dict[str, Any]) -> None:
        with self._lock:
            if record.get("slug"):
                self._known[str(record["slug"])] = record
            source_id = record_source_id(record)
            if source_id:
                self._known_source_ids[source_id] = record

    def preload(self) -> int:
        """Seed the known set from one listing of the record type."""
        records = self.client.list_records(self.record_type)
        for record in records:
            self._remember(record)
        log_with_context(
            logging.INFO,
            f"Preloaded {len(records)} existing '{self.record_type}' records",
        )
        return len(records)

    def lookup(self, slug: str, source_id: str | None = None) -> dict[str, Any] | None:
        """
        Return the existing record for ``slug``/``source_id``, or None.

        Raises:
            ExistenceCheckError: If the destination cannot be queried and
                ``assume_missing_on_error`` is off
        """
        with self._lock:
            known = self._known.get(slug)
            if known is None and source_id:
                known = self._known_source_ids.get(source_id)
        if known is not None:
            return known

        try:
            record = self.client.find(self.record_type, slug, source_id)
        except (requests.RequestException, ValueError) as e:
            if self.assume_missing_on_error:
                log_with_context(
                    logging.WARNING,
                    f"Existence check failed, assuming '{slug}' is new: {e}",
                    slug=slug,
                )
                return None
            raise ExistenceCheckError(
                f"Could not check whether '{slug}' exists: {e}"
            ) from e

        if record is not None:
            self._remember(record)
        return record

    def exists(self, slug: str, source_id: str | None = None) -> bool:
        return self.lookup(slug, source_id) is not None

    def mark_created(
        self, slug: str, source_id: str | None = None, record_id: str | None = None
    ) -> None:
        record: dict[str, Any] = {"slug": slug, "id": record_id}
        if source_id:
            record["data"] = {"sourceMeta": {"sourceId": source_id}}
        self._remember(record)
