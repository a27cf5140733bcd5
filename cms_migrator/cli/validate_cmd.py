"""CLI command handlers for configuration validation and setup."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from cms_migrator.cli.common import cli, common_options, handle_exception
from cms_migrator.core.config import (
    MigrationConfig,
    create_default_config,
    load_config,
    validate_config,
)
from cms_migrator.core.field_mappings import CollectionConfig
from cms_migrator.services.destination import DestinationClient
from cms_migrator.services.source import SourceClient
from cms_migrator.utils.logging import log_with_context, setup_logger

# ---------------------------------------------------------------------------
# validate subcommand
# ---------------------------------------------------------------------------


@cli.command()
@common_options
@click.option(
    "--offline",
    is_flag=True,
    default=False,
    help="Only check the configuration; do not contact the source or destination",
)
def validate(
    collection: str,
    config: str,
    upload_images: bool,
    verbose: bool,
    debug_api: bool,
    offline: bool,
) -> None:
    """Check configuration and API access without migrating anything.

    Validates the config file for the chosen collection, then reads one
    source item and queries the destination once.
    """
    setup_logger(verbose, debug_api)

    try:
        migration_config = load_config(Path(config))
        selected = validate_config(
            migration_config, collection, upload_images=upload_images
        )
        log_with_context(logging.INFO, f"Configuration for '{collection}' is valid")
        if not offline:
            check_connectivity(migration_config, selected)
    except Exception as e:
        handle_exception(e)
        sys.exit(1)

    click.echo("Validation passed.")


def check_connectivity(
    migration_config: MigrationConfig, selected: CollectionConfig
) -> None:
    """Read one source item and run one destination query."""
    source = SourceClient(migration_config.source, migration_config.retry, selected)
    _, total = source.list_page(offset=0, limit=1)
    log_with_context(
        logging.INFO,
        f"Source collection reachable ({total if total is not None else 'unknown'} items)",
    )

    destination = DestinationClient(migration_config.destination, migration_config.retry)
    destination.list_records(selected.type, slug="__connectivity-check__")
    log_with_context(logging.INFO, "Destination API reachable")


# ---------------------------------------------------------------------------
# init-config subcommand
# ---------------------------------------------------------------------------


@cli.command("init-config")
@click.option(
    "--config",
    default="config.yaml",
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Where to write the starter config",
)
def init_config(config: str) -> None:
    """Write a starter config file (never overwrites)."""
    setup_logger()
    if not create_default_config(Path(config)):
        sys.exit(1)
    click.echo(f"Wrote {config}")
