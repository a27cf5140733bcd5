"""Bounded batch scheduler.

Runs work in consecutive chunks of at most ``concurrency`` items on a
thread pool, waits for each chunk to finish, pauses, then starts the next.
Results are written by input index, so output order always matches input
order no matter which worker finishes first.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Generic, Optional, Sequence, TypeVar

from cms_migrator.utils.logging import log_with_context

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """Cooperative stop signal checked by the scheduler between batches."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)


class BatchScheduler(Generic[T, R]):
    """
    Fan-out/fan-in over fixed-size chunks.

    Args:
        concurrency: Maximum operations in flight at once
        delay: Seconds to pause between chunks
        cancel_token: Optional token; when set, no further chunk starts
        name: Label used for worker threads and log messages
    """

    def __init__(
        self,
        concurrency: int,
        delay: float = 0.0,
        cancel_token: Optional[CancellationToken] = None,
        name: str = "batch",
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.delay = delay
        self.cancel_token = cancel_token
        self.name = name
        self.cancelled = False

    def _pause(self) -> None:
        if self.delay <= 0:
            return
        if self.cancel_token is not None:
            self.cancel_token.wait(self.delay)
        else:
            time.sleep(self.delay)

    def run(
        self,
        items: Sequence[T],
        operation: Callable[[T], R],
        on_error: Optional[Callable[[T, BaseException], R]] = None,
    ) -> list[R]:
        """
        Apply ``operation`` to every item, ``concurrency`` at a time.

        Args:
            items: Work in the order results should come back
            operation: Callable run once per item on a worker thread
            on_error: Turns an exception raised by ``operation`` into a
                result value; without it the first error is re-raised once
                its chunk has finished

        Returns:
            One result per item in input order. If cancelled, only the
            results of the chunks that ran (a prefix of the input).
        """
        self.cancelled = False
        if not items:
            return []

        results: list[Optional[R]] = [None] * len(items)
        completed = 0
        total_chunks = (len(items) + self.concurrency - 1) // self.concurrency

        with ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix=self.name
        ) as pool:
            for chunk_number, start in enumerate(
                range(0, len(items), self.concurrency), start=1
            ):
                if self.cancel_token is not None and self.cancel_token.cancelled:
                    self.cancelled = True
                    log_with_context(
                        logging.WARNING,
                        f"Stopping {self.name} run before chunk {chunk_number}/{total_chunks}",
                    )
                    break

                chunk = items[start : start + self.concurrency]
                futures = [pool.submit(operation, item) for item in chunk]
                first_error: Optional[BaseException] = None
                for offset, future in enumerate(futures):
                    try:
                        results[start + offset] = future.result()
                    except Exception as e:
                        if on_error is None:
                            first_error = first_error or e
                            continue
                        results[start + offset] = on_error(chunk[offset], e)
                if first_error is not None:
                    raise first_error
                completed = start + len(chunk)

                if chunk_number < total_chunks:
                    self._pause()

        return results[:completed]  # type: ignore[return-value]
