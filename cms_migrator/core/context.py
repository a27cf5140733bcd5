"""Immutable migration context.

MigrationContext is a frozen dataclass holding the configuration and mode
flags for one run. It is created once by the CLI and shared read-only with
every component that needs to know what kind of run is in progress.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from cms_migrator.core.config import MigrationConfig
from cms_migrator.core.field_mappings import CollectionConfig


@dataclass(frozen=True)
class MigrationContext:
    """Immutable context for a migration run. Created once, shared everywhere."""

    config: MigrationConfig
    collection: CollectionConfig
    output_dir: Path

    # Mode flags
    dry_run: bool = False
    upload_images: bool = False
    update_existing: bool = False
    verbose: bool = False
    debug_api: bool = False

    # Selection
    limit: int | None = None
    item_ids: tuple[str, ...] = ()
    retry_source_ids: frozenset[str] | None = None

    @property
    def collection_name(self) -> str:
        return self.collection.name

    @property
    def log_prefix(self) -> str:
        """Mode-aware log prefix such as ``"[DRY RUN] "``."""
        prefix = ""
        if self.dry_run:
            prefix += "[DRY RUN] "
        if self.update_existing:
            prefix += "[UPDATE MODE] "
        return prefix
