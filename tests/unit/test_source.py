"""Unit tests for source collection enumeration."""

import logging
from dataclasses import replace
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import requests

from cms_migrator.core.config import RetryConfig, SourceConfig
from cms_migrator.core.field_mappings import default_collections
from cms_migrator.exceptions import SourceEnumerationError
from cms_migrator.services.source import SourceClient
from cms_migrator.utils.api import ApiClient
from tests.unit.conftest import make_raw_item


def _collection():
    return replace(default_collections()["news"], collection_id="col-news")


def _page(items, total):
    return {"items": items, "pagination": {"limit": 2, "offset": 0, "total": total}}


def _raw(n):
    return [make_raw_item(item_id=f"wf-{i}", name=f"Item {i}", slug=f"item-{i}") for i in range(n)]


def _client(api, **config):
    source_config = SourceConfig(page_size=2, page_delay=0, **config)
    return SourceClient(source_config, RetryConfig(), _collection(), api=api)


class TestListPage:
    def test_requests_limit_and_offset(self):
        api = MagicMock()
        api.get.return_value = _page(_raw(2), 5)
        items, total = _client(api).list_page(offset=4, limit=2)
        api.get.assert_called_once_with(
            "collections/col-news/items", params={"limit": 2, "offset": 4}
        )
        assert len(items) == 2
        assert total == 5

    def test_missing_pagination(self):
        api = MagicMock()
        api.get.return_value = {"items": []}
        assert _client(api).list_page(0, 2) == ([], None)

    def test_malformed_body(self):
        api = MagicMock()
        api.get.return_value = {"items": "nope"}
        with pytest.raises(ValueError, match="Malformed page"):
            _client(api).list_page(0, 2)


class TestEnumerateItems:
    @patch("cms_migrator.services.source.time.sleep")
    def test_reads_every_page_in_order(self, mock_sleep):
        raw = _raw(5)
        api = MagicMock()
        api.get.side_effect = [_page(raw[0:2], 5), _page(raw[2:4], 5), _page(raw[4:5], 5)]

        items = _client(api).enumerate_items()

        assert [i.id for i in items] == [r["id"] for r in raw]
        offsets = [c.kwargs["params"]["offset"] for c in api.get.call_args_list]
        assert offsets == [0, 2, 4]
        assert mock_sleep.call_count == 2

    @patch("cms_migrator.services.source.time.sleep")
    def test_stops_on_empty_page_without_total(self, mock_sleep):
        api = MagicMock()
        api.get.side_effect = [{"items": _raw(2)}, {"items": []}]
        assert len(_client(api).enumerate_items()) == 2

    @patch("cms_migrator.services.source.time.sleep")
    def test_short_page_without_total_ends(self, mock_sleep):
        api = MagicMock()
        api.get.return_value = {"items": _raw(1)}
        assert len(_client(api).enumerate_items()) == 1
        assert api.get.call_count == 1

    @patch("cms_migrator.services.source.time.sleep")
    def test_limit_caps_page_size_and_result(self, mock_sleep):
        api = MagicMock()
        api.get.return_value = _page(_raw(1), 10)
        items = _client(api).enumerate_items(limit=1)
        assert len(items) == 1
        assert api.get.call_args.kwargs["params"]["limit"] == 1
        assert api.get.call_count == 1

    def test_first_page_failure_aborts(self):
        api = MagicMock()
        api.get.side_effect = requests.HTTPError("401 unauthorized")
        with pytest.raises(SourceEnumerationError, match="first page"):
            _client(api).enumerate_items()

    @patch("cms_migrator.services.source.time.sleep")
    def test_later_page_failure_aborts_without_partial_result(self, mock_sleep):
        api = MagicMock()
        api.get.side_effect = [_page(_raw(2), 6), requests.ConnectionError("reset")]
        with pytest.raises(SourceEnumerationError, match="page 2"):
            _client(api).enumerate_items()

    @patch("cms_migrator.services.source.time.sleep")
    def test_published_only_filters_drafts_and_archived(self, mock_sleep):
        raw = _raw(3)
        raw[1]["isDraft"] = True
        raw[2]["isArchived"] = True
        api = MagicMock()
        api.get.side_effect = [{"items": raw}, {"items": []}]
        items = _client(api, published_only=True).enumerate_items()
        assert [i.id for i in items] == ["wf-0"]

    @patch("cms_migrator.services.source.time.sleep")
    def test_limit_counts_published_items_only(self, mock_sleep):
        raw = _raw(5)
        raw[0]["isDraft"] = True
        raw[2]["isArchived"] = True
        api = MagicMock()
        api.get.side_effect = [_page(raw[0:2], 5), _page(raw[2:4], 5), _page(raw[4:5], 5)]

        items = _client(api, published_only=True).enumerate_items(limit=2)

        assert [i.id for i in items] == ["wf-1", "wf-3"]
        assert api.get.call_count == 2
        assert api.get.call_args.kwargs["params"]["limit"] == 2

    @patch("cms_migrator.services.source.time.sleep")
    def test_malformed_entries_become_failed_placeholders(self, mock_sleep):
        raw = _raw(2)
        api = MagicMock()
        api.get.side_effect = [_page([raw[0], None], 4), _page(["oops", raw[1]], 4)]

        with patch("cms_migrator.services.source.log_with_context") as mock_log:
            items = _client(api).enumerate_items()

        assert len(items) == 4
        assert [i.id for i in items] == ["wf-0", "unreadable-1", "unreadable-2", "wf-1"]
        assert "got NoneType" in items[1].error
        assert "got str" in items[2].error
        assert items[0].error is None
        warnings = [c for c in mock_log.call_args_list if c.args[0] == logging.WARNING]
        assert len(warnings) == 2

    @patch("cms_migrator.services.source.time.sleep")
    def test_published_only_keeps_malformed_entries(self, mock_sleep):
        api = MagicMock()
        api.get.side_effect = [{"items": [42]}]
        items = _client(api, published_only=True).enumerate_items()
        assert [i.id for i in items] == ["unreadable-0"]


class TestRetryDuringEnumeration:
    """A rate-limited page is retried with the configured backoff."""

    @patch("cms_migrator.utils.api.time.sleep")
    @patch("cms_migrator.services.source.time.sleep")
    def test_rate_limited_page_backs_off_then_succeeds(self, page_sleep, retry_sleep):
        def response(status, body=None):
            r = MagicMock()
            r.status_code = status
            r.content = b"{}"
            r.json.return_value = body if body is not None else {"error": "slow down"}
            return r

        session = MagicMock()
        session.request.side_effect = [
            response(429),
            response(429),
            response(200, _page(_raw(2), 2)),
        ]
        retry_config = SimpleNamespace(max_attempts=3, base_delay=5.0, max_delay=60.0)
        api = ApiClient("https://source.example/v2", retry_config, session=session)

        items = _client(api).enumerate_items()

        assert len(items) == 2
        assert [c.args[0] for c in retry_sleep.call_args_list] == [5.0, 10.0]

    @patch("cms_migrator.utils.api.time.sleep")
    def test_persistent_rate_limit_aborts(self, retry_sleep):
        r = MagicMock()
        r.status_code = 429
        r.content = b"{}"
        r.json.return_value = {"error": "slow down"}
        session = MagicMock()
        session.request.return_value = r
        retry_config = SimpleNamespace(max_attempts=3, base_delay=5.0, max_delay=60.0)
        api = ApiClient("https://source.example/v2", retry_config, session=session)

        with pytest.raises(SourceEnumerationError):
            _client(api).enumerate_items()
        assert session.request.call_count == 3


class TestGetItems:
    def test_fetches_each_id(self):
        api = MagicMock()
        api.get.side_effect = [make_raw_item(item_id="a", slug="a"), make_raw_item(item_id="b", slug="b")]
        items = _client(api).get_items(["a", "b"])
        assert [i.id for i in items] == ["a", "b"]
        assert api.get.call_args_list[0].args[0] == "collections/col-news/items/a"

    def test_unreadable_item_aborts(self):
        api = MagicMock()
        api.get.side_effect = requests.HTTPError("404")
        with pytest.raises(SourceEnumerationError, match="missing-id"):
            _client(api).get_items(["missing-id"])
