"""Typed adapter for the Cloud Storage JSON API.

Replaces raw ``storage.objects().insert(...).execute()`` chains with an
explicit method call that is easier to mock and test. The adapter does
not retry; callers wrap it in the retry combinator.
"""

from __future__ import annotations

import io
from typing import Any

from googleapiclient.http import MediaIoBaseUpload


class StorageAdapter:
    """Thin typed wrapper around the Cloud Storage service."""

    def __init__(self, service: Any) -> None:
        self._svc = service

    def insert_object(
        self,
        bucket: str,
        name: str,
        data: bytes,
        content_type: str,
        cache_control: str | None = None,
        fields: str = "name,bucket,size,contentType",
    ) -> dict[str, Any]:
        """Write an object, replacing any object already at ``name``.

        Args:
            bucket: Bucket name.
            name: Full object name (the storage path).
            data: Object bytes.
            content_type: MIME type stored on the object.
            cache_control: Optional ``Cache-Control`` metadata.
            fields: Response field mask.

        Returns:
            Object resource dict.
        """
        body: dict[str, Any] = {"name": name, "contentType": content_type}
        if cache_control:
            body["cacheControl"] = cache_control
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=content_type, resumable=False)
        result: dict[str, Any] = (
            self._svc.objects()
            .insert(bucket=bucket, name=name, body=body, media_body=media, fields=fields)
            .execute()
        )
        return result
