"""Source collection enumeration.

Pages through the legacy CMS collection endpoint with ``limit``/``offset``
until the reported total is reached or a page comes back empty. A page
that still fails after the retry combinator gives up aborts the whole
run: a partial listing is never reported as the collection total.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable

import requests

from cms_migrator.constants import SOURCE_ACCEPT_VERSION
from cms_migrator.core.config import RetryConfig, SourceConfig
from cms_migrator.core.field_mappings import CollectionConfig
from cms_migrator.exceptions import SourceEnumerationError
from cms_migrator.types import SourceItem
from cms_migrator.utils.api import ApiClient
from cms_migrator.utils.logging import log_with_context


class SourceClient:
    """Reads items from one legacy CMS collection."""

    def __init__(
        self,
        config: SourceConfig,
        retry_config: RetryConfig,
        collection: CollectionConfig,
        api: ApiClient | None = None,
    ) -> None:
        self.config = config
        self.collection = collection
        self.api = api or ApiClient(
            config.base_url,
            retry_config,
            token=config.token,
            headers={"accept-version": SOURCE_ACCEPT_VERSION},
            timeout=config.timeout,
        )

    def _items_path(self) -> str:
        return f"collections/{self.collection.collection_id}/items"

    def _to_item(self, raw: Any, position: int = 0) -> SourceItem:
        if not isinstance(raw, dict):
            item = SourceItem.unreadable(position, raw)
            log_with_context(
                logging.WARNING,
                item.error,
                collection=self.collection.name,
                position=position,
            )
            return item
        return SourceItem.from_api(
            raw,
            title_field=self.collection.title_field,
            slug_field=self.collection.slug_field,
        )

    def list_page(self, offset: int, limit: int) -> tuple[list[dict[str, Any]], int | None]:
        """
        Fetch one page of raw items.

        Returns:
            The page's raw item objects and the collection total, when reported

        Raises:
            ValueError: If the response does not have the expected shape
        """
        body = self.api.get(
            self._items_path(), params={"limit": limit, "offset": offset}
        )
        if not isinstance(body, dict) or not isinstance(body.get("items", []), list):
            raise ValueError(f"Malformed page at offset {offset}: expected 'items' list")
        pagination = body.get("pagination") or {}
        total = pagination.get("total")
        return body.get("items") or [], int(total) if total is not None else None

    def get_item(self, item_id: str) -> SourceItem:
        """Fetch a single item by id."""
        body = self.api.get(f"{self._items_path()}/{item_id}")
        if not isinstance(body, dict):
            raise ValueError(f"Malformed item response for {item_id}")
        return self._to_item(body)

    def get_items(self, item_ids: Iterable[str]) -> list[SourceItem]:
        """Fetch specific items, aborting the run if any cannot be read."""
        items = []
        for item_id in item_ids:
            try:
                items.append(self.get_item(item_id))
            except (requests.RequestException, ValueError) as e:
                raise SourceEnumerationError(
                    f"Could not fetch source item {item_id}: {e}"
                ) from e
        return items

    def enumerate_items(self, limit: int | None = None) -> list[SourceItem]:
        """
        Read the whole collection, in source order.

        Entries that are not item objects come back as unreadable
        placeholders so they are reported as failed rather than dropped.

        Args:
            limit: Optional cap on the number of items returned, counted
                after the ``published_only`` filter

        Returns:
            Items in source order, filtered to published ones when the
            source is configured with ``published_only``

        Raises:
            SourceEnumerationError: If any page fails after retries
        """
        page_size = self.config.page_size
        if limit is not None and not self.config.published_only:
            page_size = max(1, min(page_size, limit))

        result: list[SourceItem] = []
        total: int | None = None
        seen = 0
        filtered = 0
        offset = 0
        page = 1

        while True:
            try:
                raw_items, reported_total = self.list_page(offset, page_size)
            except (requests.RequestException, ValueError) as e:
                where = "first page" if page == 1 else f"page {page}"
                raise SourceEnumerationError(
                    f"Failed to enumerate collection '{self.collection.name}' "
                    f"({where}, offset {offset}): {e}"
                ) from e

            if total is None and reported_total is not None:
                total = reported_total
                log_with_context(
                    logging.INFO,
                    f"Collection '{self.collection.name}' reports {total} items",
                    collection=self.collection.name,
                )

            for index, raw in enumerate(raw_items):
                item = self._to_item(raw, position=offset + index)
                if self.config.published_only and item.error is None and (
                    item.is_draft or item.is_archived
                ):
                    filtered += 1
                    continue
                result.append(item)
            seen += len(raw_items)
            log_with_context(
                logging.DEBUG,
                f"Fetched page {page} ({len(raw_items)} items, {seen} so far)",
                collection=self.collection.name,
                offset=offset,
            )

            offset += page_size
            page += 1
            if not raw_items:
                break
            if limit is not None and len(result) >= limit:
                break
            if total is not None and offset >= total:
                break
            if total is None and len(raw_items) < page_size:
                break
            time.sleep(self.config.page_delay)

        if total is not None and limit is None and seen != total:
            log_with_context(
                logging.WARNING,
                f"Collected {seen} items but source reported {total}",
                collection=self.collection.name,
            )
        if self.config.published_only:
            log_with_context(
                logging.INFO,
                f"Filtered out {filtered} draft/archived items",
                collection=self.collection.name,
            )

        if limit is not None:
            result = result[:limit]
        return result
