"""Uploads image buffers to object storage at deterministic paths."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable
from urllib.parse import quote

from cms_migrator.core.config import StorageConfig
from cms_migrator.exceptions import StorageUploadError
from cms_migrator.services.storage_adapter import StorageAdapter
from cms_migrator.utils.api import (
    get_storage_service,
    is_retryable_upload_error,
    retry,
)
from cms_migrator.utils.logging import log_with_context


class StorageUploader:
    """
    Writes buffers to ``{root_prefix}/collection/{collection}/{slug}/{filename}``
    and returns the CDN URL for the written object.

    Uploading the same path twice overwrites the object. Each worker thread
    gets its own storage service.
    """

    def __init__(
        self,
        config: StorageConfig,
        service_factory: Callable[[], Any] | None = None,
    ) -> None:
        self.config = config
        self._service_factory = service_factory or (
            lambda: get_storage_service(config.credentials_path)
        )
        self._local = threading.local()

    @property
    def adapter(self) -> StorageAdapter:
        adapter = getattr(self._local, "adapter", None)
        if adapter is None:
            adapter = StorageAdapter(self._service_factory())
            self._local.adapter = adapter
        return adapter

    def object_path(self, collection: str, slug: str, filename: str) -> str:
        parts = [self.config.root_prefix, "collection", collection, slug, filename]
        return "/".join(p.strip("/") for p in parts if p)

    def public_url(self, path: str) -> str:
        return f"{self.config.cdn_base_url.rstrip('/')}/{quote(path, safe='/')}"

    @retry("Storage upload", should_retry=is_retryable_upload_error, config_attr="config")
    def _insert(self, data: bytes, path: str, content_type: str) -> None:
        self.adapter.insert_object(
            self.config.bucket,
            path,
            data,
            content_type,
            cache_control=self.config.cache_control,
        )

    def upload(self, data: bytes, path: str, content_type: str) -> str:
        """
        Write ``data`` to ``path`` and return its public URL.

        Transient failures are retried with exponential backoff using the
        storage section's attempts and delays. Client errors other than 429
        are not retried.

        Raises:
            StorageUploadError: When the write still fails after retries
        """
        try:
            self._insert(data, path, content_type)
        except Exception as e:
            raise StorageUploadError(f"Failed to upload {path}: {e}") from e

        url = self.public_url(path)
        log_with_context(
            logging.DEBUG,
            f"Uploaded {len(data)} bytes to {path}",
            path=path,
            content_type=content_type,
        )
        return url
