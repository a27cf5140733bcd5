"""Migration ledger: per-item outcomes and the persisted run report.

Workers append one :class:`ItemResult` per source item from many threads;
the ledger serializes those appends and turns them into the JSON report
written once at the end of the run (or when the run is interrupted).
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from cms_migrator.constants import REPORT_SCHEMA_VERSION
from cms_migrator.types import (
    ImageCounts,
    ImageResultDict,
    ItemResult,
    ItemResultDict,
    ItemStatus,
    MigrationReportDict,
)
from cms_migrator.utils.logging import log_with_context


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def serialize_item(result: ItemResult) -> ItemResultDict:
    """Convert an ItemResult to its report entry."""
    images: list[ImageResultDict] = []
    for reference, transfer in zip(result.references, result.images):
        entry: ImageResultDict = {
            "field": reference.field_name,
            "originalUrl": transfer.original_url,
            "newUrl": transfer.new_url,
            "success": transfer.success,
            "byteSize": transfer.byte_size,
        }
        if reference.index is not None:
            entry["index"] = reference.index
        if transfer.failure_reason:
            entry["failureReason"] = transfer.failure_reason
        images.append(entry)

    item: ItemResultDict = {
        "status": result.status.value,
        "sourceId": result.source_id,
        "slug": result.slug,
        "title": result.title,
        "imageCounts": result.image_counts.to_dict(),
        "images": images,
    }
    if result.error:
        item["error"] = result.error
    if result.destination_id:
        item["destinationId"] = result.destination_id
    return item


class MigrationLedger:
    """Thread-safe accumulator of item results for one run."""

    def __init__(
        self, collection: str, dry_run: bool = False, upload_images: bool = False
    ) -> None:
        self.collection = collection
        self.dry_run = dry_run
        self.upload_images = upload_images
        self.total = 0
        self.cancelled = False
        self.started_at = _now_iso()
        self._started = time.monotonic()
        self._results: list[ItemResult] = []
        self._order: dict[str, int] = {}
        self._lock = threading.Lock()

    def set_total(self, total: int) -> None:
        with self._lock:
            self.total = total

    def set_order(self, source_ids: Iterable[str]) -> None:
        """Report results in this source order instead of completion order."""
        with self._lock:
            self._order = {}
            for position, source_id in enumerate(source_ids):
                self._order.setdefault(source_id, position)

    def mark_cancelled(self) -> None:
        with self._lock:
            self.cancelled = True

    def record(self, result: ItemResult) -> None:
        """Append one item's terminal result."""
        with self._lock:
            self._results.append(result)
        log_with_context(
            logging.DEBUG,
            f"Recorded '{result.slug}' as {result.status.value}",
            slug=result.slug,
            source_id=result.source_id,
            status=result.status.value,
        )

    @property
    def results(self) -> list[ItemResult]:
        with self._lock:
            unknown = len(self._order)
            return sorted(
                self._results, key=lambda r: self._order.get(r.source_id, unknown)
            )

    def count(self, status: ItemStatus) -> int:
        with self._lock:
            return sum(1 for r in self._results if r.status is status)

    @property
    def has_failures(self) -> bool:
        return self.count(ItemStatus.FAILED) > 0

    def build_report(self) -> MigrationReportDict:
        """Aggregate everything recorded so far into the report structure."""
        results = self.results
        counts = {status: 0 for status in ItemStatus}
        image_totals = ImageCounts()
        for result in results:
            counts[result.status] += 1
            image_totals.add(result.image_counts)

        processed = len(results)
        succeeded = processed - counts[ItemStatus.FAILED]
        success_rate = round(100.0 * succeeded / processed, 1) if processed else 0.0

        return {
            "schemaVersion": REPORT_SCHEMA_VERSION,
            "collection": self.collection,
            "dryRun": self.dry_run,
            "uploadImages": self.upload_images,
            "cancelled": self.cancelled,
            "total": self.total,
            "processed": processed,
            "created": counts[ItemStatus.CREATED],
            "updated": counts[ItemStatus.UPDATED],
            "skipped": counts[ItemStatus.SKIPPED],
            "failed": counts[ItemStatus.FAILED],
            "successRate": success_rate,
            "durationSeconds": round(time.monotonic() - self._started, 2),
            "startedAt": self.started_at,
            "generatedAt": _now_iso(),
            "imageTotals": image_totals.to_dict(),
            "perItemResults": [serialize_item(r) for r in results],
        }

    def report_path(self, output_dir: Path) -> Path:
        """A fresh, timestamped report path that does not exist yet."""
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        stem = f"migration-report-{self.collection}-{timestamp}"
        path = output_dir / f"{stem}.json"
        suffix = 1
        while path.exists():
            path = output_dir / f"{stem}-{suffix}.json"
            suffix += 1
        return path

    def write_report(self, output_dir: Path) -> Path:
        """
        Persist the report as a new file in ``output_dir``.

        Never replaces an earlier report; the file is written to a temp
        name first and renamed into place.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        report = self.build_report()
        path = self.report_path(output_dir)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(report, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(path)
        log_with_context(logging.INFO, f"Migration report written to {path}")
        return path


def load_failed_source_ids(report_path: Path) -> set[str]:
    """
    Read a previous report and return the source ids that failed.

    Raises:
        ValueError: If the file is not a migration report
    """
    try:
        raw = json.loads(report_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Could not read report {report_path}: {e}") from e
    if not isinstance(raw, dict) or not isinstance(raw.get("perItemResults"), list):
        raise ValueError(f"{report_path} is not a migration report")
    return {
        str(entry["sourceId"])
        for entry in raw["perItemResults"]
        if isinstance(entry, dict)
        and entry.get("status") == ItemStatus.FAILED.value
        and entry.get("sourceId")
    }
