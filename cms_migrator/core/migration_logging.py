"""
End-of-run summary logging.

Kept apart from the migrator so the orchestrator stays focused on control
flow. Every summary line is a structured record: the statistic travels as
extra fields for the JSON log while the console shows the sentence.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from cms_migrator.types import MigrationReportDict
from cms_migrator.utils.logging import log_with_context


def log_migration_summary(
    report: MigrationReportDict, report_path: Optional[Path] = None
) -> None:
    """Log the outcome header and counters of a finished (or stopped) run.

    Args:
        report: The report built by the ledger.
        report_path: Where the report was written, if it was.
    """
    prefix = "[DRY RUN] " if report.get("dryRun") else ""

    if report.get("cancelled"):
        log_with_context(
            logging.WARNING,
            f"{prefix}MIGRATION STOPPED BEFORE COMPLETION - PARTIAL RESULTS RECORDED",
            outcome="cancelled",
        )
    elif report.get("failed"):
        log_with_context(
            logging.WARNING,
            f"{prefix}MIGRATION COMPLETED WITH {report['failed']} FAILED ITEMS",
            outcome="completed_with_failures",
        )
    else:
        log_with_context(
            logging.INFO,
            f"{prefix}MIGRATION COMPLETED SUCCESSFULLY",
            outcome="success",
        )

    duration = report.get("durationSeconds", 0.0)
    log_with_context(
        logging.INFO,
        f"Duration: {duration / 60:.1f} minutes ({duration:.1f} seconds)",
        duration_seconds=duration,
    )
    for stat in ("total", "processed", "created", "updated", "skipped", "failed"):
        log_with_context(
            logging.INFO,
            f"Items {stat}: {report.get(stat, 0)}",
            stat=stat,
            count=report.get(stat, 0),
        )
    log_with_context(
        logging.INFO,
        f"Success rate: {report.get('successRate', 0.0):.1f}%",
        stat="success_rate",
    )

    images = report.get("imageTotals")
    if images:
        log_with_context(
            logging.INFO,
            f"Images: {images['migrated']} migrated, {images['failed']} failed, "
            f"{images['preserved']} preserved, {images['missing']} missing "
            f"(of {images['found']} found)",
            stat="images",
            **{f"images_{k}": v for k, v in images.items()},
        )

    if report_path is not None:
        log_with_context(logging.INFO, f"Report: {report_path}")


def log_migration_failure(error: BaseException, collection: str) -> None:
    """Log why a run could not complete."""
    if isinstance(error, KeyboardInterrupt):
        log_with_context(
            logging.WARNING,
            "MIGRATION INTERRUPTED BY USER",
            outcome="interrupted",
            collection=collection,
        )
        return
    log_with_context(
        logging.ERROR,
        f"MIGRATION FAILED: {error}",
        outcome="failed",
        collection=collection,
        error_type=type(error).__name__,
    )
