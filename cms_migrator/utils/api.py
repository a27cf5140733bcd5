"""
API utilities for the CMS asset migration tool: the retry/backoff
combinator, the JSON HTTP client used for the source and destination
APIs, and the Google Cloud Storage service factory.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from typing import Any, Callable, Optional, TypeVar

import requests
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from cms_migrator.constants import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_DELAY,
    HTTP_RATE_LIMIT,
    HTTP_SERVER_ERROR_MIN,
    STORAGE_SCOPES,
)
from cms_migrator.utils.logging import (
    log_api_request,
    log_api_response,
    log_with_context,
)

T = TypeVar("T")

# Google API client objects are not thread-safe, so each worker gets its own
_thread_local = threading.local()


# ---------------------------------------------------------------------------
# Retry / backoff
# ---------------------------------------------------------------------------


def status_of_error(error: BaseException) -> Optional[int]:
    """Return the HTTP status carried by a requests or Google API error."""
    if isinstance(error, HttpError):
        return getattr(error.resp, "status", None)
    if isinstance(error, requests.HTTPError) and error.response is not None:
        return error.response.status_code
    return None


def is_retryable_error(error: BaseException) -> bool:
    """
    Classify an error as transient.

    Timeouts, connection resets, HTTP 429 and HTTP 5xx are retryable.
    Everything else (4xx, malformed payloads, programming errors) is not.
    """
    if isinstance(error, (requests.Timeout, requests.ConnectionError)):
        return True
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    status = status_of_error(error)
    if status is None:
        return False
    return status == HTTP_RATE_LIMIT or status >= HTTP_SERVER_ERROR_MIN


def is_retryable_upload_error(error: BaseException) -> bool:
    """Storage writes retry on anything except a 4xx other than 429."""
    status = status_of_error(error)
    if status is not None and status // 100 == 4 and status != HTTP_RATE_LIMIT:
        return False
    return True


def backoff_delay(
    attempt: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> float:
    """Delay before the retry that follows failed attempt ``attempt`` (1-based)."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def retry_call(
    operation: Callable[[], T],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    description: str = "operation",
    **log_context: Any,
) -> T:
    """
    Run ``operation`` until it succeeds or retries are exhausted.

    After failed attempt ``n`` a retryable error waits
    ``base_delay * 2**(n - 1)`` seconds (capped at ``max_delay``). A
    non-retryable error, or the last attempt's error, propagates unchanged.

    Args:
        operation: Zero-argument callable to run
        max_attempts: Total attempts including the first
        base_delay: Delay after the first failure, in seconds
        max_delay: Upper bound for any single delay
        should_retry: Predicate deciding whether an error is transient
        description: Human-readable name used in log messages
        **log_context: Extra structured context for log records

    Returns:
        Whatever ``operation`` returns
    """
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except Exception as e:
            if not should_retry(e):
                log_with_context(
                    logging.DEBUG,
                    f"{description} failed with non-retryable error: {e}",
                    **log_context,
                )
                raise
            if attempt >= attempts:
                log_with_context(
                    logging.ERROR,
                    f"{description} failed after {attempts} attempts. Last error: {e}",
                    **log_context,
                )
                raise

            sleep_time = backoff_delay(attempt, base_delay, max_delay)
            log_with_context(
                logging.WARNING,
                f"{description} failed (attempt {attempt}/{attempts}): {e}. "
                f"Retrying in {sleep_time:.1f} seconds...",
                attempt=attempt,
                **log_context,
            )
            time.sleep(sleep_time)

    raise RuntimeError("Exited retry loop unexpectedly.")


def retry(
    description: Optional[str] = None,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    config_attr: str = "retry_config",
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorate a method so each call goes through :func:`retry_call`.

    Attempt counts and delays are read at call time from the instance
    attribute named by ``config_attr`` (anything with ``max_attempts``,
    ``base_delay`` and ``max_delay``).
    """

    def decorator(method: Callable[..., T]) -> Callable[..., T]:
        label = description or method.__name__

        @functools.wraps(method)
        def wrapper(self, *args: Any, **kwargs: Any) -> T:
            config = getattr(self, config_attr)
            return retry_call(
                lambda: method(self, *args, **kwargs),
                max_attempts=config.max_attempts,
                base_delay=config.base_delay,
                max_delay=config.max_delay,
                should_retry=should_retry,
                description=label,
            )

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# JSON HTTP client
# ---------------------------------------------------------------------------


class ApiClient:
    """
    Small JSON client for the source and destination REST APIs.

    Every request carries an explicit timeout and goes through the retry
    combinator, so 429, 5xx, timeouts and connection resets back off and
    retry while other HTTP errors raise ``requests.HTTPError`` at once.
    """

    def __init__(
        self,
        base_url: str,
        retry_config: Any,
        token: Optional[str] = None,
        auth_scheme: str = "Bearer",
        headers: Optional[dict[str, str]] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry_config = retry_config
        self.timeout = timeout
        self.headers = {"Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"{auth_scheme} {token}"
        if headers:
            self.headers.update(headers)
        self._session = session
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        """The injected session, or one session per calling thread."""
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            self._local.session = session
        return session

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, payload: dict[str, Any]) -> Any:
        return self.request("POST", path, payload=payload)

    def put(self, path: str, payload: dict[str, Any]) -> Any:
        return self.request("PUT", path, payload=payload)

    def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Send one request with retries and return the decoded JSON body."""
        url = self.url(path)
        return retry_call(
            lambda: self._send(method, url, params, payload),
            max_attempts=self.retry_config.max_attempts,
            base_delay=self.retry_config.base_delay,
            max_delay=self.retry_config.max_delay,
            description=f"{method} {url}",
            url=url,
        )

    def _send(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]],
        payload: Optional[dict[str, Any]],
    ) -> Any:
        log_api_request(method, url, payload, params=params)
        response = self.session.request(
            method,
            url,
            params=params,
            json=payload,
            headers=self.headers,
            timeout=self.timeout,
        )
        body: Any = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                body = response.text
        log_api_response(response.status_code, url, body)

        if response.status_code >= 400:
            detail = body.get("error", "") if isinstance(body, dict) else body or ""
            raise requests.HTTPError(
                f"{response.status_code} error for {method} {url}: {detail}",
                response=response,
            )
        if isinstance(body, str):
            raise ValueError(f"Expected a JSON response from {method} {url}")
        return body if body is not None else {}


# ---------------------------------------------------------------------------
# Google Cloud Storage
# ---------------------------------------------------------------------------


def get_storage_service(creds_path: str) -> Any:
    """
    Get a Cloud Storage JSON API client for the calling thread.

    Services are cached per thread and per credentials file.
    """
    cache: dict[str, Any] = getattr(_thread_local, "services", None) or {}
    if creds_path in cache:
        return cache[creds_path]

    try:
        log_with_context(
            logging.DEBUG,
            f"Creating storage service in {threading.current_thread().name}",
        )
        creds = service_account.Credentials.from_service_account_file(
            creds_path, scopes=STORAGE_SCOPES
        )
        service = build("storage", "v1", credentials=creds, cache_discovery=False)
    except Exception as e:
        log_with_context(
            logging.ERROR,
            f"Failed to create storage service: {e}",
            creds_path=creds_path,
        )
        raise

    cache[creds_path] = service
    _thread_local.services = cache
    return service
