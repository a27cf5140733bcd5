"""
Report output for migration runs: run directories, the persisted JSON
report and the console summary.
"""

import datetime
import os
from pathlib import Path
from typing import Optional

import click

from cms_migrator.core.ledger import MigrationLedger, load_failed_source_ids
from cms_migrator.core.migration_logging import log_migration_summary
from cms_migrator.types import MigrationReportDict

__all__ = [
    "create_output_directory",
    "load_failed_source_ids",
    "print_run_summary",
    "write_report",
]


def create_output_directory(base_dir: str = "migration_logs") -> Path:
    """Create a timestamped directory for this run's logs and report."""
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    run_output_dir = os.path.join(base_dir, f"run_{timestamp}")
    suffix = 1
    while os.path.exists(run_output_dir):
        run_output_dir = os.path.join(base_dir, f"run_{timestamp}_{suffix}")
        suffix += 1
    os.makedirs(run_output_dir)
    return Path(run_output_dir)


def write_report(ledger: MigrationLedger, output_dir: Path) -> Path:
    """Persist the ledger's report and log the run summary."""
    report_path = ledger.write_report(output_dir)
    log_migration_summary(ledger.build_report(), report_path)
    return report_path


def print_run_summary(
    report: MigrationReportDict, report_file: Optional[Path] = None
) -> None:
    """Print a summary of the run to the console."""
    dry_run = report.get("dryRun", False)
    title = "DRY RUN SUMMARY" if dry_run else "MIGRATION SUMMARY"
    if report.get("cancelled"):
        title += " (STOPPED EARLY)"

    click.echo("\n" + "=" * 80)
    click.echo(title)
    click.echo("=" * 80)
    click.echo(f"Collection: {report.get('collection')}")
    click.echo(f"Items found: {report.get('total', 0)}")
    click.echo(f"Items processed: {report.get('processed', 0)}")
    verb = "would be " if dry_run else ""
    click.echo(f"Items {verb}created: {report.get('created', 0)}")
    if report.get("updated"):
        click.echo(f"Items {verb}updated: {report.get('updated', 0)}")
    click.echo(f"Items skipped (already exist): {report.get('skipped', 0)}")
    click.echo(f"Items failed: {report.get('failed', 0)}")
    click.echo(f"Success rate: {report.get('successRate', 0.0):.1f}%")

    images = report.get("imageTotals")
    if images and images["found"]:
        click.echo(
            f"\nImages found: {images['found']} "
            f"(migrated {images['migrated']}, failed {images['failed']}, "
            f"kept original {images['preserved']})"
        )
    if images and images["missing"]:
        click.echo(f"Missing or unusable image fields: {images['missing']}")

    failed = [r for r in report.get("perItemResults", []) if r.get("status") == "failed"]
    if failed:
        click.echo("\nFailed items:")
        for entry in failed[:20]:
            click.echo(f"  - {entry.get('slug')} ({entry.get('sourceId')}): {entry.get('error', '')}")
        if len(failed) > 20:
            click.echo(f"  ... and {len(failed) - 20} more")

    if report_file is not None:
        click.echo(f"\nDetailed report saved to {report_file}")
        if failed:
            click.echo(f"Re-run just the failures with --retry-failed {report_file}")
    click.echo("=" * 80)
    if dry_run:
        click.echo("\nTo perform the actual migration, run again without --dry-run")
        click.echo("=" * 80)
