"""
Configuration module for the CMS asset migration tool.

Loads the YAML configuration into typed dataclasses, layers secrets from
environment variables on top, writes a starter config file and validates
the result once at startup.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from cms_migrator import constants
from cms_migrator.core.field_mappings import (
    CollectionConfig,
    default_collections,
    validate_field_mappings,
)
from cms_migrator.exceptions import ConfigError
from cms_migrator.utils.logging import log_with_context

SOURCE_TOKEN_ENV = "SOURCE_API_TOKEN"
DESTINATION_KEY_ENV = "DESTINATION_API_KEY"
STORAGE_CREDENTIALS_ENV = "GOOGLE_APPLICATION_CREDENTIALS"


@dataclass
class SourceConfig:
    """Legacy CMS collection API."""

    base_url: str = "https://api.webflow.com/v2"
    token: str = ""
    page_size: int = constants.DEFAULT_PAGE_SIZE
    page_delay: float = constants.DEFAULT_PAGE_DELAY
    timeout: float = 30.0
    published_only: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SourceConfig:
        if not data:
            return cls()
        return cls(
            base_url=data.get("base_url", cls.base_url),
            token=data.get("token", "") or "",
            page_size=data.get("page_size", constants.DEFAULT_PAGE_SIZE),
            page_delay=data.get("page_delay", constants.DEFAULT_PAGE_DELAY),
            timeout=data.get("timeout", 30.0),
            published_only=data.get("published_only", False),
        )


@dataclass
class DestinationConfig:
    """Destination record API."""

    base_url: str = ""
    api_key: str = ""
    timeout: float = 30.0
    preload_existing: bool = False
    assume_missing_on_error: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DestinationConfig:
        if not data:
            return cls()
        return cls(
            base_url=data.get("base_url", "") or "",
            api_key=data.get("api_key", "") or "",
            timeout=data.get("timeout", 30.0),
            preload_existing=data.get("preload_existing", False),
            assume_missing_on_error=data.get("assume_missing_on_error", False),
        )


@dataclass
class StorageConfig:
    """Object storage bucket and the CDN that fronts it."""

    bucket: str = ""
    cdn_base_url: str = ""
    root_prefix: str = constants.DEFAULT_ROOT_PREFIX
    credentials_path: str = ""
    cache_control: str = constants.DEFAULT_CACHE_CONTROL
    max_attempts: int = constants.DEFAULT_UPLOAD_ATTEMPTS
    base_delay: float = constants.DEFAULT_UPLOAD_BASE_DELAY
    max_delay: float = constants.DEFAULT_MAX_DELAY

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> StorageConfig:
        if not data:
            return cls()
        return cls(
            bucket=data.get("bucket", "") or "",
            cdn_base_url=(data.get("cdn_base_url", "") or "").rstrip("/"),
            root_prefix=(data.get("root_prefix", constants.DEFAULT_ROOT_PREFIX) or "").strip("/"),
            credentials_path=data.get("credentials_path", "") or "",
            cache_control=data.get("cache_control", constants.DEFAULT_CACHE_CONTROL),
            max_attempts=data.get("max_attempts", constants.DEFAULT_UPLOAD_ATTEMPTS),
            base_delay=data.get("base_delay", constants.DEFAULT_UPLOAD_BASE_DELAY),
            max_delay=data.get("max_delay", constants.DEFAULT_MAX_DELAY),
        )


@dataclass
class ImageConfig:
    """Download limits and transcoding."""

    compress_to_webp: bool = True
    quality: int = constants.DEFAULT_WEBP_QUALITY
    download_timeout: float = constants.DEFAULT_DOWNLOAD_TIMEOUT
    max_bytes: int = constants.DEFAULT_MAX_IMAGE_BYTES
    max_redirects: int = constants.DEFAULT_MAX_REDIRECTS
    require_image_content_type: bool = True
    scan_rich_text: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ImageConfig:
        if not data:
            return cls()
        return cls(
            compress_to_webp=data.get("compress_to_webp", True),
            quality=data.get("quality", constants.DEFAULT_WEBP_QUALITY),
            download_timeout=data.get(
                "download_timeout", constants.DEFAULT_DOWNLOAD_TIMEOUT
            ),
            max_bytes=data.get("max_bytes", constants.DEFAULT_MAX_IMAGE_BYTES),
            max_redirects=data.get("max_redirects", constants.DEFAULT_MAX_REDIRECTS),
            require_image_content_type=data.get("require_image_content_type", True),
            scan_rich_text=data.get("scan_rich_text", False),
        )


@dataclass
class BatchConfig:
    """Concurrency limit and pause between batches for one scheduler."""

    concurrency: int = 1
    delay: float = 0.0

    @classmethod
    def from_dict(
        cls, data: dict[str, Any] | None, concurrency: int, delay: float
    ) -> BatchConfig:
        data = data or {}
        return cls(
            concurrency=data.get("concurrency", concurrency),
            delay=data.get("delay", delay),
        )


@dataclass
class RetryConfig:
    """Backoff settings for source and destination API calls."""

    max_attempts: int = constants.DEFAULT_MAX_ATTEMPTS
    base_delay: float = constants.DEFAULT_BASE_DELAY
    max_delay: float = constants.DEFAULT_MAX_DELAY

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RetryConfig:
        if not data:
            return cls()
        return cls(
            max_attempts=data.get("max_attempts", constants.DEFAULT_MAX_ATTEMPTS),
            base_delay=data.get("base_delay", constants.DEFAULT_BASE_DELAY),
            max_delay=data.get("max_delay", constants.DEFAULT_MAX_DELAY),
        )


def _default_items_batch() -> BatchConfig:
    return BatchConfig(
        constants.DEFAULT_ITEM_CONCURRENCY, constants.DEFAULT_ITEM_BATCH_DELAY
    )


def _default_images_batch() -> BatchConfig:
    return BatchConfig(
        constants.DEFAULT_IMAGE_CONCURRENCY, constants.DEFAULT_IMAGE_BATCH_DELAY
    )


@dataclass
class MigrationConfig:
    """Typed configuration for the migration tool.

    Every component receives the piece it needs from this object through
    its constructor.
    """

    source: SourceConfig = field(default_factory=SourceConfig)
    destination: DestinationConfig = field(default_factory=DestinationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    images: ImageConfig = field(default_factory=ImageConfig)
    items_batch: BatchConfig = field(default_factory=_default_items_batch)
    images_batch: BatchConfig = field(default_factory=_default_images_batch)
    retry: RetryConfig = field(default_factory=RetryConfig)
    collections: dict[str, CollectionConfig] = field(default_factory=default_collections)

    # Problems found while parsing, reported by validate_config
    load_errors: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationConfig:
        """Create a MigrationConfig from a raw config dictionary."""
        batches = data.get("batches") or {}
        load_errors: list[str] = []

        collections = default_collections()
        for name, entry in (data.get("collections") or {}).items():
            try:
                collections[name] = CollectionConfig.from_dict(
                    name, entry, base=collections.get(name)
                )
            except (ValueError, TypeError, AttributeError) as e:
                load_errors.append(f"collections.{name}: {e}")

        return cls(
            source=SourceConfig.from_dict(data.get("source")),
            destination=DestinationConfig.from_dict(data.get("destination")),
            storage=StorageConfig.from_dict(data.get("storage")),
            images=ImageConfig.from_dict(data.get("images")),
            items_batch=BatchConfig.from_dict(
                batches.get("items"),
                constants.DEFAULT_ITEM_CONCURRENCY,
                constants.DEFAULT_ITEM_BATCH_DELAY,
            ),
            images_batch=BatchConfig.from_dict(
                batches.get("images"),
                constants.DEFAULT_IMAGE_CONCURRENCY,
                constants.DEFAULT_IMAGE_BATCH_DELAY,
            ),
            retry=RetryConfig.from_dict(data.get("retry")),
            collections=collections,
            load_errors=load_errors,
        )

    def collection(self, name: str) -> CollectionConfig:
        """Look up a collection by name, raising ConfigError if unknown."""
        try:
            return self.collections[name]
        except KeyError:
            known = ", ".join(sorted(self.collections)) or "none"
            raise ConfigError(
                f"Unknown collection '{name}' (configured: {known})"
            ) from None

    def apply_environment(self, environ: dict[str, str] | None = None) -> None:
        """Override secrets with values from the environment."""
        env = os.environ if environ is None else environ
        if env.get(SOURCE_TOKEN_ENV):
            self.source.token = env[SOURCE_TOKEN_ENV]
        if env.get(DESTINATION_KEY_ENV):
            self.destination.api_key = env[DESTINATION_KEY_ENV]
        if env.get(STORAGE_CREDENTIALS_ENV):
            self.storage.credentials_path = env[STORAGE_CREDENTIALS_ENV]


def load_config(
    config_path: Path, environ: dict[str, str] | None = None
) -> MigrationConfig:
    """
    Load configuration from YAML file and apply default values.

    If the file doesn't exist or is invalid, a warning is logged and
    default settings are used. Secrets from the environment override
    whatever the file says.

    Args:
        config_path: Path to the config YAML file
        environ: Environment mapping, defaults to ``os.environ``

    Returns:
        MigrationConfig with all necessary defaults applied
    """
    raw: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                loaded_config = yaml.safe_load(f)
            if loaded_config is None:
                log_with_context(
                    logging.WARNING,
                    f"Config file {config_path} is empty, using default settings",
                )
            else:
                raw = loaded_config
                log_with_context(
                    logging.INFO, f"Loaded configuration from {config_path}"
                )
        except (yaml.YAMLError, OSError) as e:
            log_with_context(
                logging.WARNING, f"Failed to load config file {config_path}: {e}"
            )
    else:
        log_with_context(
            logging.WARNING,
            f"Config file {config_path} not found, using default settings",
        )

    if not isinstance(raw, dict):
        log_with_context(
            logging.WARNING,
            f"Config file {config_path} does not contain a mapping, using default settings",
        )
        raw = {}

    config = MigrationConfig.from_dict(raw)
    config.apply_environment(environ)
    return config


def create_default_config(output_path: Path) -> bool:
    """
    Create a default configuration file with recommended settings.

    Never overwrites an existing file. Secrets are left blank; they are
    expected to come from the environment.

    Args:
        output_path: Path where the default config should be saved

    Returns:
        True if the config file was created successfully, False otherwise
    """
    if output_path.exists():
        log_with_context(
            logging.WARNING,
            f"Config file {output_path} already exists, not overwriting",
        )
        return False

    default_config = {
        "source": {
            "base_url": "https://api.webflow.com/v2",
            "page_size": constants.DEFAULT_PAGE_SIZE,
            "page_delay": constants.DEFAULT_PAGE_DELAY,
            "published_only": False,
        },
        "destination": {
            "base_url": "http://localhost:3000",
            "preload_existing": False,
            "assume_missing_on_error": False,
        },
        "storage": {
            "bucket": "my-cdn-bucket",
            "cdn_base_url": "https://cdn.example.com",
            "root_prefix": constants.DEFAULT_ROOT_PREFIX,
            "cache_control": constants.DEFAULT_CACHE_CONTROL,
        },
        "images": {
            "compress_to_webp": True,
            "quality": constants.DEFAULT_WEBP_QUALITY,
            "download_timeout": constants.DEFAULT_DOWNLOAD_TIMEOUT,
            "max_bytes": constants.DEFAULT_MAX_IMAGE_BYTES,
            "max_redirects": constants.DEFAULT_MAX_REDIRECTS,
            "scan_rich_text": False,
        },
        "batches": {
            "items": {
                "concurrency": constants.DEFAULT_ITEM_CONCURRENCY,
                "delay": constants.DEFAULT_ITEM_BATCH_DELAY,
            },
            "images": {
                "concurrency": constants.DEFAULT_IMAGE_CONCURRENCY,
                "delay": constants.DEFAULT_IMAGE_BATCH_DELAY,
            },
        },
        "retry": {
            "max_attempts": constants.DEFAULT_MAX_ATTEMPTS,
            "base_delay": constants.DEFAULT_BASE_DELAY,
            "max_delay": constants.DEFAULT_MAX_DELAY,
        },
        "collections": {
            name: {"collection_id": "", "type": collection.type}
            for name, collection in default_collections().items()
        },
    }

    try:
        with open(output_path, "w", encoding="utf-8") as f:
            f.write(
                f"# Secrets are read from {SOURCE_TOKEN_ENV}, {DESTINATION_KEY_ENV}"
                f" and {STORAGE_CREDENTIALS_ENV}\n"
            )
            yaml.safe_dump(default_config, f, default_flow_style=False, sort_keys=False)
        log_with_context(logging.INFO, f"Created default config file at {output_path}")
        return True
    except OSError as e:
        log_with_context(logging.ERROR, f"Failed to create default config file: {e}")
        return False


def validate_config(
    config: MigrationConfig,
    collection: str,
    upload_images: bool = False,
    dry_run: bool = False,
) -> CollectionConfig:
    """
    Validate everything a run needs before any network call is made.

    Args:
        config: The loaded configuration
        collection: Name of the collection to migrate
        upload_images: Whether images will be uploaded to storage
        dry_run: Whether this is a dry run (no storage credentials needed)

    Returns:
        The selected collection's configuration

    Raises:
        ConfigError: Listing every problem found
    """
    problems = list(config.load_errors)

    selected = config.collections.get(collection)
    if selected is None:
        known = ", ".join(sorted(config.collections)) or "none"
        problems.append(f"unknown collection '{collection}' (configured: {known})")
    else:
        if not selected.collection_id:
            problems.append(f"collections.{collection}.collection_id is not set")
        if not selected.fields:
            problems.append(f"collections.{collection} has no field mappings")
        problems.extend(validate_field_mappings(collection, selected.fields))

    if not config.source.base_url:
        problems.append("source.base_url is not set")
    if not config.source.token:
        problems.append(f"source token is missing (set {SOURCE_TOKEN_ENV})")
    if config.source.page_size < 1:
        problems.append("source.page_size must be at least 1")
    if not config.destination.base_url:
        problems.append("destination.base_url is not set")

    if upload_images:
        if not config.storage.bucket:
            problems.append("storage.bucket is required with --upload-images")
        if not config.storage.cdn_base_url:
            problems.append("storage.cdn_base_url is required with --upload-images")
        if not dry_run and not config.storage.credentials_path:
            problems.append(
                f"storage credentials are missing (set {STORAGE_CREDENTIALS_ENV})"
            )
        elif not dry_run and not Path(config.storage.credentials_path).exists():
            problems.append(
                f"storage credentials file not found: {config.storage.credentials_path}"
            )

    if not 1 <= config.images.quality <= 100:
        problems.append("images.quality must be between 1 and 100")
    if config.images.max_bytes < 1:
        problems.append("images.max_bytes must be positive")
    if config.images.max_redirects < 0:
        problems.append("images.max_redirects must not be negative")
    for label, batch in (("items", config.items_batch), ("images", config.images_batch)):
        if batch.concurrency < 1:
            problems.append(f"batches.{label}.concurrency must be at least 1")
        if batch.delay < 0:
            problems.append(f"batches.{label}.delay must not be negative")
    if config.source.page_delay < 0:
        problems.append("source.page_delay must not be negative")
    if config.retry.max_attempts < 1 or config.storage.max_attempts < 1:
        problems.append("retry attempts must be at least 1")

    if problems:
        raise ConfigError(
            "Invalid configuration:\n" + "\n".join(f"  - {p}" for p in problems)
        )
    assert selected is not None
    return selected
