"""Custom exception hierarchy for the CMS asset migration tool."""

from __future__ import annotations


class MigratorError(Exception):
    """Base exception for all migration-related errors."""


class ConfigError(MigratorError):
    """Raised when configuration is invalid or missing."""


class SourceEnumerationError(MigratorError):
    """Raised when the source collection cannot be fully enumerated."""


class DestinationError(MigratorError):
    """Raised when a destination record API call fails."""


class DuplicateRecordError(DestinationError):
    """Raised when the destination rejects a record because its slug exists."""


class ExistenceCheckError(DestinationError):
    """Raised when the destination cannot say whether a record exists."""


class TransferError(MigratorError):
    """Raised when an image cannot be downloaded or prepared.

    ``reason`` is a stable code recorded in the migration report.
    """

    def __init__(self, message: str, reason: str = "network_error") -> None:
        super().__init__(message)
        self.reason = reason


class AssetTooLargeError(TransferError):
    """Raised when an image exceeds the configured byte ceiling."""

    def __init__(self, message: str) -> None:
        super().__init__(message, reason="too_large")


class InvalidAssetError(TransferError):
    """Raised when a download is empty or not an image."""


class TooManyRedirectsError(TransferError):
    """Raised when a redirect chain exceeds the hop limit."""

    def __init__(self, message: str) -> None:
        super().__init__(message, reason="too_many_redirects")


class StorageUploadError(MigratorError):
    """Raised when an object could not be written to storage."""


class MigrationAbortedError(MigratorError):
    """Raised when the migration is aborted before completion."""
