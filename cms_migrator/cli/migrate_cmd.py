"""CLI command handler for the migrate workflow."""

from __future__ import annotations

import logging
import signal
import sys
import threading
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Optional

import click

from cms_migrator.cli.common import cli, common_options, handle_exception
from cms_migrator.cli.report import (
    create_output_directory,
    load_failed_source_ids,
    print_run_summary,
    write_report,
)
from cms_migrator.core.config import load_config, validate_config
from cms_migrator.core.context import MigrationContext
from cms_migrator.core.migration_logging import log_migration_failure
from cms_migrator.core.migrator import CollectionMigrator
from cms_migrator.exceptions import ConfigError, MigrationAbortedError
from cms_migrator.utils.logging import log_with_context, setup_logger

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_INTERRUPTED = 130


# ---------------------------------------------------------------------------
# migrate subcommand
# ---------------------------------------------------------------------------


@cli.command()
@common_options
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Process at most N items",
)
@click.option(
    "--dry-run",
    "dry_run",
    is_flag=True,
    default=False,
    help="Compute predicted URLs and a report without transferring images or writing records",
)
@click.option(
    "--update-existing",
    "update_existing",
    is_flag=True,
    default=False,
    help="Update records that already exist instead of skipping them",
)
@click.option(
    "--retry-failed",
    "retry_failed",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Only process items that failed in this earlier report",
)
@click.option(
    "--item-id",
    "item_ids",
    multiple=True,
    help="Migrate only this source item id (repeatable)",
)
@click.option(
    "--output-dir",
    "output_dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for logs and the report (default: migration_logs/run_<timestamp>)",
)
def migrate(
    collection: str,
    config: str,
    upload_images: bool,
    verbose: bool,
    debug_api: bool,
    limit: Optional[int],
    dry_run: bool,
    update_existing: bool,
    retry_failed: Optional[str],
    item_ids: tuple[str, ...],
    output_dir: Optional[str],
) -> None:
    """Migrate one collection, its images and their references.

    Exits 0 when no item failed, 1 when any item failed or the run could
    not start, and 130 when stopped with Ctrl-C.
    """
    args = SimpleNamespace(
        collection=collection,
        config=config,
        upload_images=upload_images,
        verbose=verbose,
        debug_api=debug_api,
        limit=limit,
        dry_run=dry_run,
        update_existing=update_existing,
        retry_failed=retry_failed,
        item_ids=item_ids,
    )

    run_dir = Path(output_dir) if output_dir else create_output_directory()
    setup_logger(args.verbose, args.debug_api, str(run_dir))
    log_startup_info(args)
    log_with_context(logging.INFO, f"Output directory: {run_dir}")

    orchestrator = MigrationOrchestrator(args, run_dir)
    try:
        orchestrator.load_context()
        exit_code = orchestrator.run_migration()
    except BaseException as e:
        if isinstance(e, SystemExit):
            raise
        handle_exception(e)
        sys.exit(EXIT_INTERRUPTED if isinstance(e, KeyboardInterrupt) else EXIT_FAILURES)
    finally:
        orchestrator.cleanup()

    sys.exit(exit_code)


# ---------------------------------------------------------------------------
# MigrationOrchestrator
# ---------------------------------------------------------------------------


class MigrationOrchestrator:
    """Drives one run: context, migration, report and interrupt handling."""

    def __init__(self, args: SimpleNamespace, output_dir: Path) -> None:
        self.args = args
        self.output_dir = output_dir
        self.context: Optional[MigrationContext] = None
        self.migrator: Optional[CollectionMigrator] = None
        self.report_file: Optional[Path] = None
        self._interrupts = 0
        self._previous_handler: Any = None

    def load_context(self) -> MigrationContext:
        """Load and validate configuration, then freeze the run context.

        Raises:
            ConfigError: If the configuration or the retry report is unusable
            MigrationAbortedError: If the retry report has no failed items
        """
        config = load_config(Path(self.args.config))
        collection = validate_config(
            config,
            self.args.collection,
            upload_images=self.args.upload_images,
            dry_run=self.args.dry_run,
        )

        retry_ids = None
        if self.args.retry_failed:
            try:
                retry_ids = frozenset(load_failed_source_ids(Path(self.args.retry_failed)))
            except ValueError as e:
                raise ConfigError(str(e)) from e
            if not retry_ids:
                raise MigrationAbortedError(
                    f"{self.args.retry_failed} lists no failed items. Nothing to retry."
                )
            log_with_context(
                logging.INFO,
                f"Loaded {len(retry_ids)} failed item ids from {self.args.retry_failed}",
            )

        self.context = MigrationContext(
            config=config,
            collection=collection,
            output_dir=self.output_dir,
            dry_run=self.args.dry_run,
            upload_images=self.args.upload_images,
            update_existing=self.args.update_existing,
            verbose=self.args.verbose,
            debug_api=self.args.debug_api,
            limit=self.args.limit,
            item_ids=tuple(self.args.item_ids or ()),
            retry_source_ids=retry_ids,
        )
        return self.context

    def create_migrator(self) -> CollectionMigrator:
        if self.context is None:
            raise RuntimeError("Context not loaded")
        return CollectionMigrator(self.context)

    # -- Interrupts -------------------------------------------------------------

    def _handle_sigint(self, signum: int, frame: Any) -> None:
        self._interrupts += 1
        if self._interrupts == 1 and self.migrator is not None:
            log_with_context(
                logging.WARNING,
                "Stop requested: finishing the current batch, then writing the report. "
                "Press Ctrl-C again to abort immediately.",
            )
            self.migrator.cancel()
            return
        raise KeyboardInterrupt

    def install_signal_handler(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        self._previous_handler = signal.signal(signal.SIGINT, self._handle_sigint)

    def restore_signal_handler(self) -> None:
        if self._previous_handler is not None:
            signal.signal(signal.SIGINT, self._previous_handler)
            self._previous_handler = None

    # -- Run --------------------------------------------------------------------

    def run_migration(self) -> int:
        """Run the migration and write its report.

        Enumeration failures propagate before anything is written. Once
        items are being processed a report is always written, even when
        the run is interrupted or crashes.

        Returns:
            The process exit code
        """
        self.migrator = self.create_migrator()
        m = self.migrator
        items = m.select_items()

        self.install_signal_handler()
        try:
            ledger = m.run(items)
        except BaseException as e:
            m.ledger.mark_cancelled()
            log_migration_failure(e, m.context.collection_name)
            try:
                self.report_file = write_report(m.ledger, self.output_dir)
                log_with_context(
                    logging.INFO,
                    f"Migration report (with partial results) available at: {self.report_file}",
                )
            except OSError as report_error:
                log_with_context(
                    logging.WARNING,
                    f"Failed to write migration report after failure: {report_error}",
                )
            raise
        finally:
            self.restore_signal_handler()

        self.report_file = write_report(ledger, self.output_dir)
        report = ledger.build_report()
        print_run_summary(report, self.report_file)

        if report["cancelled"]:
            return EXIT_INTERRUPTED
        return EXIT_FAILURES if report["failed"] else EXIT_OK

    def cleanup(self) -> None:
        self.restore_signal_handler()
        for handler in logging.getLogger("cms_migrator").handlers:
            handler.flush()


def log_startup_info(args: SimpleNamespace) -> None:
    """Log startup information.

    Args:
        args: Parsed CLI arguments containing migration parameters.
    """
    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = Path.cwd() / args.config

    log_with_context(logging.INFO, "Starting migration with the following parameters:")
    log_with_context(logging.INFO, f"- Collection: {args.collection}")
    log_with_context(logging.INFO, f"- Config: {config_path}")
    log_with_context(logging.INFO, f"- Upload images: {args.upload_images}")
    log_with_context(logging.INFO, f"- Dry run: {args.dry_run}")
    log_with_context(logging.INFO, f"- Update existing: {args.update_existing}")
    log_with_context(logging.INFO, f"- Limit: {args.limit or 'none'}")
    if args.item_ids:
        log_with_context(logging.INFO, f"- Item ids: {', '.join(args.item_ids)}")
    if args.retry_failed:
        log_with_context(logging.INFO, f"- Retrying failures from: {args.retry_failed}")
    log_with_context(logging.INFO, f"- Verbose logging: {args.verbose}")
    log_with_context(logging.INFO, f"- Debug API calls: {args.debug_api}")
