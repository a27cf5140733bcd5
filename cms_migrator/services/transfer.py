"""Transfer worker: download one image, optionally transcode, upload it.

Every failure is turned into a :class:`TransferResult` that keeps the
original URL and carries a stable ``failure_reason`` code, so a broken
image never loses the reference the source record had.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from urllib.parse import urljoin

import requests

from cms_migrator.constants import (
    DOWNLOAD_CHUNK_SIZE,
    DOWNLOAD_USER_AGENT,
    HTTP_OK,
    REDIRECT_STATUSES,
    TRANSCODABLE_EXTENSIONS,
)
from cms_migrator.core.config import ImageConfig, RetryConfig
from cms_migrator.exceptions import (
    AssetTooLargeError,
    InvalidAssetError,
    StorageUploadError,
    TooManyRedirectsError,
    TransferError,
)
from cms_migrator.services.storage_uploader import StorageUploader
from cms_migrator.services.transcode import needs_transcoding, transcode_image
from cms_migrator.types import ImageReference, TransferResult
from cms_migrator.utils.api import retry_call, status_of_error
from cms_migrator.utils.formatting import (
    content_type_for_extension,
    resolve_extension,
    sanitize_filename,
)
from cms_migrator.utils.logging import log_with_context

_ACCEPTED_NON_IMAGE_TYPES = ("application/octet-stream", "binary/octet-stream")


@dataclass(frozen=True)
class DownloadedImage:
    data: bytes
    content_type: str | None
    final_url: str


def failure_reason_for(error: BaseException) -> str:
    """Map a download error to its stable report code."""
    if isinstance(error, TransferError):
        return error.reason
    if isinstance(error, (requests.Timeout, TimeoutError)):
        return "timeout"
    status = status_of_error(error)
    if status is not None:
        return f"http_{status}"
    return "network_error"


def build_filename(reference: ImageReference, extension: str) -> str:
    """
    Deterministic storage filename for a reference.

    ``{field}`` for single images, ``{field}-{n}`` for the n-th gallery
    entry (1-based) and ``{field}-inline-{n}`` for inline images.
    """
    stem = sanitize_filename(reference.field_name)
    if reference.inline:
        stem = f"{stem}-inline-{(reference.index or 0) + 1}"
    elif reference.index is not None:
        stem = f"{stem}-{reference.index + 1}"
    return f"{stem}.{extension}"


def target_extension(source_extension: str, compress_to_webp: bool) -> str:
    """Extension an image of ``source_extension`` is stored under."""
    if compress_to_webp and source_extension.lower() in TRANSCODABLE_EXTENSIONS:
        return "webp"
    return source_extension


class TransferWorker:
    """Moves single images from the legacy host into object storage."""

    def __init__(
        self,
        config: ImageConfig,
        retry_config: RetryConfig,
        uploader: StorageUploader,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.retry_config = retry_config
        self.uploader = uploader
        self._session = session
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = DOWNLOAD_USER_AGENT
            self._local.session = session
        return session

    # -- Download ---------------------------------------------------------------

    def download(self, url: str) -> DownloadedImage:
        """
        Fetch an image with a timeout, a size ceiling and a redirect limit.

        Redirects are followed one hop at a time up to ``max_redirects``.

        Raises:
            requests.HTTPError: For a non-200 final response
            AssetTooLargeError: When the body exceeds ``max_bytes``
            InvalidAssetError: For empty bodies or non-image content types
            TooManyRedirectsError: When the redirect chain is too long
        """
        current = url
        for _hop in range(self.config.max_redirects + 1):
            response = self.session.get(
                current,
                stream=True,
                allow_redirects=False,
                timeout=self.config.download_timeout,
            )
            try:
                if response.status_code in REDIRECT_STATUSES:
                    location = response.headers.get("Location")
                    if not location:
                        raise InvalidAssetError(
                            f"Redirect from {current} has no Location header",
                            reason=f"http_{response.status_code}",
                        )
                    current = urljoin(current, location)
                    continue
                if response.status_code != HTTP_OK:
                    raise requests.HTTPError(
                        f"HTTP {response.status_code} for {current}", response=response
                    )
                return DownloadedImage(
                    data=self._read_body(response, current),
                    content_type=self._checked_content_type(response, current),
                    final_url=current,
                )
            finally:
                response.close()

        raise TooManyRedirectsError(
            f"More than {self.config.max_redirects} redirects for {url}"
        )

    def _checked_content_type(self, response: requests.Response, url: str) -> str | None:
        content_type = response.headers.get("Content-Type")
        if not content_type or not self.config.require_image_content_type:
            return content_type
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime.startswith("image/") or mime in _ACCEPTED_NON_IMAGE_TYPES:
            return content_type
        raise InvalidAssetError(
            f"{url} returned non-image content type {mime}",
            reason="invalid_content_type",
        )

    def _read_body(self, response: requests.Response, url: str) -> bytes:
        limit = self.config.max_bytes
        declared = response.headers.get("Content-Length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise AssetTooLargeError(
                f"{url} is {declared} bytes, above the {limit} byte limit"
            )

        chunks = []
        received = 0
        for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
            if not chunk:
                continue
            received += len(chunk)
            if received > limit:
                raise AssetTooLargeError(f"{url} exceeded the {limit} byte limit")
            chunks.append(chunk)

        if not received:
            raise InvalidAssetError(f"{url} returned an empty body", reason="empty_body")
        return b"".join(chunks)

    # -- Transfer ---------------------------------------------------------------

    def transfer(
        self, reference: ImageReference, collection: str, slug: str
    ) -> TransferResult:
        """Download, transcode if configured, and upload one image."""
        url = reference.original_url
        log_context = {"slug": slug, "field": reference.field_name, "url": url}

        try:
            downloaded = retry_call(
                lambda: self.download(url),
                max_attempts=self.retry_config.max_attempts,
                base_delay=self.retry_config.base_delay,
                max_delay=self.retry_config.max_delay,
                description=f"Download of {url}",
                **log_context,
            )
        except (requests.RequestException, TransferError, OSError) as e:
            reason = failure_reason_for(e)
            log_with_context(
                logging.WARNING,
                f"Image download failed ({reason}), keeping original URL: {e}",
                reason=reason,
                **log_context,
            )
            return TransferResult.failed(url, reason)

        data = downloaded.data
        extension = resolve_extension(url, downloaded.content_type)

        if self.config.compress_to_webp and needs_transcoding(extension, data):
            try:
                transcoded = transcode_image(data, self.config.quality)
            except TransferError as e:
                log_with_context(
                    logging.WARNING,
                    f"Image transcoding failed, keeping original URL: {e}",
                    reason=e.reason,
                    **log_context,
                )
                return TransferResult.failed(url, e.reason)
            data = transcoded.data
            extension = transcoded.extension
            content_type = transcoded.content_type
        else:
            content_type = content_type_for_extension(extension)

        path = self.uploader.object_path(
            collection, slug, build_filename(reference, extension)
        )
        try:
            new_url = self.uploader.upload(data, path, content_type)
        except StorageUploadError as e:
            log_with_context(
                logging.WARNING,
                f"Image upload failed, keeping original URL: {e}",
                reason="upload_failed",
                **log_context,
            )
            return TransferResult.failed(url, "upload_failed")

        return TransferResult(
            original_url=url,
            new_url=new_url,
            success=True,
            byte_size=len(data),
            content_type=content_type,
            storage_path=path,
        )
