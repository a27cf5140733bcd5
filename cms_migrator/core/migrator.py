"""
Collection migrator: runs one collection through the whole pipeline.

For each source item: existence check, image extraction, bounded
concurrent transfers, URL reconciliation, destination write, ledger entry.
Per-image and per-item errors are folded into the ledger here; only
enumeration and configuration failures escape to the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import requests
from tqdm import tqdm

from cms_migrator.core.context import MigrationContext
from cms_migrator.core.ledger import MigrationLedger
from cms_migrator.core.scheduler import BatchScheduler, CancellationToken
from cms_migrator.exceptions import (
    DestinationError,
    DuplicateRecordError,
    ExistenceCheckError,
)
from cms_migrator.services.destination import DestinationClient, ExistenceGuard
from cms_migrator.services.dry_run import DryRunDestinationClient, DryRunTransferWorker
from cms_migrator.services.extractor import CandidateExtractor
from cms_migrator.services.reconciler import MappingReconciler
from cms_migrator.services.source import SourceClient
from cms_migrator.services.storage_uploader import StorageUploader
from cms_migrator.services.transfer import TransferWorker, failure_reason_for
from cms_migrator.types import (
    ImageCounts,
    ImageReference,
    ItemResult,
    ItemStatus,
    MigrationRecord,
    SourceItem,
    TransferResult,
)
from cms_migrator.utils.logging import log_with_context


class Transferrer(Protocol):
    def transfer(
        self, reference: ImageReference, collection: str, slug: str
    ) -> TransferResult: ...


def build_transfer_worker(context: MigrationContext) -> Transferrer:
    """Real transfer worker, or the predicting stand-in for dry runs."""
    config = context.config
    uploader = StorageUploader(config.storage)
    if context.dry_run:
        return DryRunTransferWorker(uploader, config.images.compress_to_webp)
    return TransferWorker(config.images, config.retry, uploader)


def build_destination(context: MigrationContext) -> DestinationClient:
    config = context.config
    client_class = DryRunDestinationClient if context.dry_run else DestinationClient
    return client_class(config.destination, config.retry)


class CollectionMigrator:
    """Migrates the items of one collection and records every outcome."""

    def __init__(
        self,
        context: MigrationContext,
        source: Optional[SourceClient] = None,
        transfer_worker: Optional[Transferrer] = None,
        destination: Optional[DestinationClient] = None,
        ledger: Optional[MigrationLedger] = None,
        cancel_token: Optional[CancellationToken] = None,
        show_progress: bool = True,
    ) -> None:
        self.context = context
        config = context.config
        collection = context.collection

        self.source = source or SourceClient(config.source, config.retry, collection)
        self.transfer_worker = transfer_worker or build_transfer_worker(context)
        self.destination = destination or build_destination(context)
        self.guard = ExistenceGuard(
            self.destination,
            collection.type,
            assume_missing_on_error=config.destination.assume_missing_on_error,
        )
        self.extractor = CandidateExtractor(
            collection, scan_rich_text=config.images.scan_rich_text
        )
        self.reconciler = MappingReconciler(collection)
        self.ledger = ledger or MigrationLedger(
            collection.name,
            dry_run=context.dry_run,
            upload_images=context.upload_images,
        )
        self.cancel_token = cancel_token or CancellationToken()
        self.show_progress = show_progress
        self._progress: Optional[tqdm] = None

    # -- Selection --------------------------------------------------------------

    def select_items(self) -> list[SourceItem]:
        """Read the items this run should process, in source order."""
        ctx = self.context
        if ctx.item_ids:
            items = self.source.get_items(ctx.item_ids)
        elif ctx.retry_source_ids is not None:
            items = [
                item
                for item in self.source.enumerate_items()
                if item.id in ctx.retry_source_ids
            ]
            log_with_context(
                logging.INFO,
                f"Retrying {len(items)} previously failed items",
                collection=ctx.collection_name,
            )
        else:
            return self.source.enumerate_items(limit=ctx.limit)

        if ctx.limit is not None:
            items = items[: ctx.limit]
        return items

    # -- Run --------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop before the next batch of items; completed items are kept."""
        self.cancel_token.cancel()

    def run(self, items: Optional[list[SourceItem]] = None) -> MigrationLedger:
        """
        Migrate the collection.

        Args:
            items: Pre-selected items; read from the source when omitted

        Returns:
            The ledger holding every item's result

        Raises:
            SourceEnumerationError: If the source cannot be listed
        """
        ctx = self.context
        if items is None:
            items = self.select_items()
        self.ledger.set_total(len(items))
        self.ledger.set_order(item.id for item in items)
        log_with_context(
            logging.INFO,
            f"{ctx.log_prefix}Migrating {len(items)} items from '{ctx.collection_name}'",
            collection=ctx.collection_name,
        )

        if ctx.config.destination.preload_existing and items:
            try:
                self.guard.preload()
            except (requests.RequestException, ValueError) as e:
                log_with_context(
                    logging.WARNING,
                    f"Could not preload existing records, checking per item: {e}",
                    collection=ctx.collection_name,
                )

        batch = ctx.config.items_batch
        scheduler: BatchScheduler[SourceItem, ItemResult] = BatchScheduler(
            batch.concurrency,
            batch.delay,
            cancel_token=self.cancel_token,
            name="items",
        )
        self._progress = tqdm(
            total=len(items),
            desc=f"{ctx.log_prefix}Migrating {ctx.collection_name}",
            unit="item",
            disable=not self.show_progress,
        )
        try:
            scheduler.run(items, self._process_and_record, on_error=self._record_crash)
        finally:
            self._progress.close()
            self._progress = None

        if scheduler.cancelled:
            self.ledger.mark_cancelled()
        return self.ledger

    def _process_and_record(self, item: SourceItem) -> ItemResult:
        result = self.process_item(item)
        self._record(result)
        return result

    def _record_crash(self, item: SourceItem, error: BaseException) -> ItemResult:
        log_with_context(
            logging.ERROR,
            f"Unexpected error migrating '{item.slug}': {error}",
            slug=item.slug,
            source_id=item.id,
            exc_info=error,
        )
        result = ItemResult(
            status=ItemStatus.FAILED,
            source_id=item.id,
            slug=item.slug,
            title=item.title,
            error=f"{type(error).__name__}: {error}",
        )
        self._record(result)
        return result

    def _record(self, result: ItemResult) -> None:
        self.ledger.record(result)
        if self._progress is not None:
            self._progress.update(1)

    # -- One item ---------------------------------------------------------------

    def process_item(self, item: SourceItem) -> ItemResult:
        """Take one item to a terminal state: created, updated, skipped or failed."""
        ctx = self.context
        log_context = {"slug": item.slug, "source_id": item.id}

        if item.error is not None:
            log_with_context(logging.WARNING, item.error, **log_context)
            return self._result(item, ItemStatus.FAILED, error=item.error)

        with self.guard.reserve(item.slug):
            try:
                existing = self.guard.lookup(item.slug, item.id)
            except ExistenceCheckError as e:
                log_with_context(logging.WARNING, str(e), **log_context)
                return self._result(item, ItemStatus.FAILED, error=str(e))

            if existing is not None and not ctx.update_existing:
                log_with_context(
                    logging.INFO,
                    f"{ctx.log_prefix}Skipping '{item.slug}': already exists",
                    **log_context,
                )
                return self._result(
                    item, ItemStatus.SKIPPED, destination_id=existing.get("id")
                )

            extraction = self.extractor.extract(item)
            transfers = self.transfer_images(item, extraction.references)
            counts = ImageCounts(
                found=len(extraction.references),
                migrated=sum(1 for t in transfers if t.success),
                failed=sum(1 for t in transfers if not t.success and not t.preserved),
                preserved=sum(1 for t in transfers if t.preserved),
                missing=extraction.missing,
            )
            record = self.build_record(item, transfers, counts)

            try:
                if existing is not None:
                    record_id = existing.get("id")
                    if not record_id:
                        raise DestinationError(
                            f"Existing record for '{item.slug}' has no id to update"
                        )
                    destination_id = self.destination.update(str(record_id), record)
                    status = ItemStatus.UPDATED
                else:
                    destination_id = self.destination.create(record)
                    self.guard.mark_created(item.slug, item.id, destination_id)
                    status = ItemStatus.CREATED
            except DuplicateRecordError as e:
                log_with_context(
                    logging.INFO,
                    f"Skipping '{item.slug}': destination reports duplicate slug ({e})",
                    **log_context,
                )
                self.guard.mark_created(item.slug, item.id)
                return self._result(
                    item,
                    ItemStatus.SKIPPED,
                    counts=counts,
                    transfers=transfers,
                    references=extraction.references,
                )
            except DestinationError as e:
                log_with_context(logging.ERROR, str(e), **log_context)
                return self._result(
                    item,
                    ItemStatus.FAILED,
                    error=str(e),
                    counts=counts,
                    transfers=transfers,
                    references=extraction.references,
                )

        log_with_context(
            logging.INFO,
            f"{ctx.log_prefix}{status.value.capitalize()} '{item.slug}' "
            f"({counts.migrated}/{counts.found} images migrated)",
            **log_context,
        )
        return self._result(
            item,
            status,
            counts=counts,
            transfers=transfers,
            references=extraction.references,
            destination_id=destination_id,
        )

    def transfer_images(
        self, item: SourceItem, references: list[ImageReference]
    ) -> list[TransferResult]:
        """
        Transfer an item's images, one result per reference, in order.

        With uploads disabled every reference is preserved as-is.
        """
        if not references:
            return []
        if not self.context.upload_images:
            return [TransferResult.failed(r.original_url, "upload_disabled") for r in references]

        collection = self.context.collection_name
        batch = self.context.config.images_batch
        scheduler: BatchScheduler[ImageReference, TransferResult] = BatchScheduler(
            batch.concurrency, batch.delay, name=f"images-{item.slug}"
        )
        return scheduler.run(
            references,
            lambda ref: self.transfer_worker.transfer(ref, collection, item.slug),
            on_error=lambda ref, e: TransferResult.failed(
                ref.original_url, failure_reason_for(e)
            ),
        )

    def build_record(
        self,
        item: SourceItem,
        transfers: list[TransferResult],
        counts: ImageCounts,
    ) -> MigrationRecord:
        """Assemble the destination record with rewritten image URLs."""
        data: dict[str, Any] = self.reconciler.reconcile(item, transfers)
        data.setdefault("title", item.title)
        data["slug"] = item.slug
        data["status"] = item.status
        data["sourceMeta"] = item.source_meta()
        if self.context.upload_images:
            data["imageMigration"] = {
                "migratedAt": datetime.now(timezone.utc).isoformat(),
                "migrated": counts.migrated,
                "failed": counts.failed,
            }
        return MigrationRecord(
            id=item.id,
            title=item.title or item.slug,
            slug=item.slug,
            type=self.context.collection.type,
            status=item.status,
            data=data,
        )

    @staticmethod
    def _result(
        item: SourceItem,
        status: ItemStatus,
        error: Optional[str] = None,
        counts: Optional[ImageCounts] = None,
        transfers: Optional[list[TransferResult]] = None,
        references: Optional[list[ImageReference]] = None,
        destination_id: Optional[str] = None,
    ) -> ItemResult:
        return ItemResult(
            status=status,
            source_id=item.id,
            slug=item.slug,
            title=item.title,
            image_counts=counts or ImageCounts(),
            images=transfers or [],
            references=references or [],
            error=error,
            destination_id=destination_id,
        )
