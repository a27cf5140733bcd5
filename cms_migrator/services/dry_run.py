"""Dry-run stand-ins for the transfer worker and destination writes.

Injected in place of the real services when ``--dry-run`` is set so the
pipeline itself has no ``if dry_run`` branches. Source reads and
existence checks still run against the real APIs; image downloads,
storage uploads and destination writes never happen.
"""

from __future__ import annotations

import itertools
import logging
import threading

from cms_migrator.services.destination import DestinationClient
from cms_migrator.services.storage_uploader import StorageUploader
from cms_migrator.services.transfer import build_filename, target_extension
from cms_migrator.types import ImageReference, MigrationRecord, TransferResult
from cms_migrator.utils.formatting import content_type_for_extension, resolve_extension
from cms_migrator.utils.logging import log_with_context


class DryRunTransferWorker:
    """Predicts where each image would be stored without touching the network."""

    def __init__(self, uploader: StorageUploader, compress_to_webp: bool) -> None:
        self.uploader = uploader
        self.compress_to_webp = compress_to_webp

    def transfer(
        self, reference: ImageReference, collection: str, slug: str
    ) -> TransferResult:
        extension = target_extension(
            resolve_extension(reference.original_url), self.compress_to_webp
        )
        path = self.uploader.object_path(
            collection, slug, build_filename(reference, extension)
        )
        new_url = self.uploader.public_url(path)
        log_with_context(
            logging.DEBUG,
            f"[DRY RUN] Would upload {reference.original_url} to {path}",
            slug=slug,
            field=reference.field_name,
        )
        return TransferResult(
            original_url=reference.original_url,
            new_url=new_url,
            success=True,
            byte_size=0,
            content_type=content_type_for_extension(extension),
            storage_path=path,
        )


class DryRunDestinationClient(DestinationClient):
    """Destination client that reads for real and logs instead of writing."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._counter = itertools.count(1)
        self._counter_lock = threading.Lock()

    def _next_id(self) -> str:
        with self._counter_lock:
            return f"dry-run-record-{next(self._counter)}"

    def create(self, record: MigrationRecord) -> str | None:
        log_with_context(
            logging.INFO,
            f"[DRY RUN] Would create '{record.type}' record '{record.slug}'",
            slug=record.slug,
        )
        return self._next_id()

    def update(self, record_id: str, record: MigrationRecord) -> str | None:
        log_with_context(
            logging.INFO,
            f"[DRY RUN] Would update '{record.type}' record '{record.slug}' ({record_id})",
            slug=record.slug,
        )
        return record_id
