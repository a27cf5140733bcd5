"""Unit tests for the collection migrator."""

import random
import time
from unittest.mock import MagicMock

import pytest
import requests

from cms_migrator.core.config import BatchConfig
from cms_migrator.core.migrator import (
    CollectionMigrator,
    build_destination,
    build_transfer_worker,
)
from cms_migrator.core.scheduler import CancellationToken
from cms_migrator.exceptions import DestinationError, SourceEnumerationError
from cms_migrator.services.dry_run import DryRunDestinationClient, DryRunTransferWorker
from cms_migrator.services.transfer import TransferWorker
from cms_migrator.types import ItemStatus, SourceItem, TransferResult
from tests.unit.conftest import (
    InMemoryDestination,
    make_config,
    make_context,
    make_item,
)

HERO = "https://cdn.legacy.example/hero.jpg"
THUMB = "https://cdn.legacy.example/thumb.png"


def _cdn(ref, collection, slug):
    suffix = f"-{ref.index + 1}" if ref.index is not None else ""
    return f"https://cdn.example.com/website/collection/{collection}/{slug}/{ref.field_name}{suffix}.webp"


def _succeeding_worker():
    worker = MagicMock()
    worker.transfer.side_effect = lambda ref, collection, slug: TransferResult(
        original_url=ref.original_url,
        new_url=_cdn(ref, collection, slug),
        success=True,
        byte_size=10,
    )
    return worker


def _migrator(context, source, destination, worker=None, **kwargs):
    return CollectionMigrator(
        context,
        source=source,
        transfer_worker=worker or _succeeding_worker(),
        destination=destination,
        show_progress=False,
        **kwargs,
    )


def _news_items(n=3):
    return [
        make_item(
            item_id=f"wf-{i}",
            name=f"Story {i}",
            slug=f"story-{i}",
            summary=f"Summary {i}",
            hero_image={"url": f"https://cdn.legacy.example/hero-{i}.jpg", "alt": f"Hero {i}"},
        )
        for i in range(n)
    ]


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


class TestBuilders:
    def test_real_services(self):
        context = make_context()
        assert isinstance(build_transfer_worker(context), TransferWorker)
        assert type(build_destination(context)).__name__ == "DestinationClient"

    def test_dry_run_services(self):
        context = make_context(dry_run=True)
        assert isinstance(build_transfer_worker(context), DryRunTransferWorker)
        assert isinstance(build_destination(context), DryRunDestinationClient)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestSelectItems:
    def test_enumerates_with_limit(self, mock_source, destination):
        mock_source.enumerate_items.return_value = _news_items(2)
        migrator = _migrator(make_context(limit=2), mock_source, destination)
        assert len(migrator.select_items()) == 2
        mock_source.enumerate_items.assert_called_once_with(limit=2)

    def test_specific_item_ids(self, mock_source, destination):
        mock_source.get_items.return_value = _news_items(1)
        migrator = _migrator(make_context(item_ids=("wf-0",)), mock_source, destination)
        assert [i.id for i in migrator.select_items()] == ["wf-0"]
        mock_source.get_items.assert_called_once_with(("wf-0",))

    def test_retry_failed_filters_source_order(self, mock_source, destination):
        mock_source.enumerate_items.return_value = _news_items(3)
        context = make_context(retry_source_ids=frozenset({"wf-2", "wf-0"}))
        migrator = _migrator(context, mock_source, destination)
        assert [i.id for i in migrator.select_items()] == ["wf-0", "wf-2"]

    def test_enumeration_failure_propagates(self, mock_source, destination):
        mock_source.enumerate_items.side_effect = SourceEnumerationError("first page")
        migrator = _migrator(make_context(), mock_source, destination)
        with pytest.raises(SourceEnumerationError):
            migrator.run()
        assert destination.created == []


# ---------------------------------------------------------------------------
# Full runs
# ---------------------------------------------------------------------------


class TestRun:
    def test_creates_records_with_migrated_urls(self, mock_source, destination):
        mock_source.enumerate_items.return_value = _news_items(2)
        ledger = _migrator(make_context(upload_images=True), mock_source, destination).run()

        assert ledger.count(ItemStatus.CREATED) == 2
        record = destination.created[0]
        assert record.type == "news"
        assert record.slug == "story-0"
        assert record.status == "published"
        assert record.data["heroImage"] == {
            "url": "https://cdn.example.com/website/collection/news/story-0/hero-image.webp",
            "alt": "Hero 0",
        }
        assert record.data["summary"] == "Summary 0"
        assert record.data["sourceMeta"]["sourceId"] == "wf-0"
        assert record.data["imageMigration"]["migrated"] == 1
        report = ledger.build_report()
        assert report["imageTotals"]["migrated"] == 2
        assert report["successRate"] == 100.0

    def test_rerun_is_idempotent(self, mock_source, destination):
        mock_source.enumerate_items.return_value = _news_items(3)
        context = make_context(upload_images=True)

        _migrator(context, mock_source, destination).run()
        second = _migrator(context, mock_source, destination).run()

        assert len(destination.records) == 3
        assert second.count(ItemStatus.SKIPPED) == 3
        assert second.count(ItemStatus.CREATED) == 0

    def test_existing_records_skipped_without_transfers(self, mock_source):
        destination = InMemoryDestination([{"id": "rec-1", "type": "news", "slug": "story-0"}])
        mock_source.enumerate_items.return_value = _news_items(1)
        worker = _succeeding_worker()

        ledger = _migrator(make_context(upload_images=True), mock_source, destination, worker).run()

        assert ledger.results[0].status is ItemStatus.SKIPPED
        assert ledger.results[0].destination_id == "rec-1"
        worker.transfer.assert_not_called()

    def test_update_existing(self, mock_source):
        destination = InMemoryDestination([{"id": "rec-1", "type": "news", "slug": "story-0"}])
        mock_source.enumerate_items.return_value = _news_items(1)
        context = make_context(upload_images=True, update_existing=True)

        ledger = _migrator(context, mock_source, destination).run()

        assert ledger.results[0].status is ItemStatus.UPDATED
        record_id, record = destination.updated[0]
        assert record_id == "rec-1"
        assert record.slug == "story-0"
        assert destination.created == []

    def test_failed_image_keeps_original_url(self, mock_source, destination):
        item = make_item(item_id="wf-1", slug="a", hero_image=HERO, thumbnail=THUMB)
        mock_source.enumerate_items.return_value = [item]
        worker = MagicMock()
        worker.transfer.side_effect = lambda ref, collection, slug: (
            TransferResult.failed(ref.original_url, "http_404")
            if ref.field_name == "hero-image"
            else TransferResult(ref.original_url, _cdn(ref, collection, slug), True, 5)
        )

        ledger = _migrator(make_context(upload_images=True), mock_source, destination, worker).run()

        data = destination.created[0].data
        assert data["heroImage"]["url"] == HERO
        assert data["thumbnail"]["url"].startswith("https://cdn.example.com/")
        result = ledger.results[0]
        assert result.status is ItemStatus.CREATED
        assert result.image_counts.failed == 1
        assert result.image_counts.migrated == 1
        assert result.images[0].failure_reason == "http_404"

    def test_unexpected_transfer_exception_becomes_failed_image(self, mock_source, destination):
        mock_source.enumerate_items.return_value = [make_item(hero_image=HERO)]
        worker = MagicMock()
        worker.transfer.side_effect = RuntimeError("worker bug")

        ledger = _migrator(make_context(upload_images=True), mock_source, destination, worker).run()

        result = ledger.results[0]
        assert result.status is ItemStatus.CREATED
        assert result.images[0].success is False
        assert destination.created[0].data["heroImage"]["url"] == HERO

    def test_gallery_order_survives_concurrency(self, mock_source, destination):
        config = make_config(images_batch=BatchConfig(concurrency=4, delay=0))
        urls = [f"https://a.example/g{i}.jpg" for i in range(10)]
        mock_source.enumerate_items.return_value = [
            make_item(item_id="wf-1", slug="gala", image_gallery=urls)
        ]
        worker = MagicMock()

        def slow_transfer(ref, collection, slug):
            time.sleep(random.uniform(0, 0.01))
            return TransferResult(ref.original_url, _cdn(ref, collection, slug), True, 1)

        worker.transfer.side_effect = slow_transfer
        context = make_context("events", config=config, upload_images=True)

        _migrator(context, mock_source, destination, worker).run()

        gallery = destination.created[0].data["imageGallery"]
        assert [g["url"] for g in gallery] == [
            f"https://cdn.example.com/website/collection/events/gala/image-gallery-{i + 1}.webp"
            for i in range(10)
        ]

    def test_preserve_mode_never_transfers(self, mock_source, destination):
        mock_source.enumerate_items.return_value = [make_item(hero_image=HERO, thumbnail=THUMB)]
        worker = _succeeding_worker()

        ledger = _migrator(make_context(upload_images=False), mock_source, destination, worker).run()

        worker.transfer.assert_not_called()
        data = destination.created[0].data
        assert data["heroImage"]["url"] == HERO
        assert data["thumbnail"]["url"] == THUMB
        assert "imageMigration" not in data
        counts = ledger.results[0].image_counts
        assert (counts.found, counts.preserved, counts.failed) == (2, 2, 0)

    def test_missing_images_counted(self, mock_source, destination):
        mock_source.enumerate_items.return_value = [make_item(hero_image=None, thumbnail="")]
        ledger = _migrator(make_context(upload_images=True), mock_source, destination).run()
        assert ledger.results[0].image_counts.missing == 2
        assert destination.created[0].data["heroImage"] is None

    def test_existence_check_failure_fails_item_only(self, mock_source, destination):
        mock_source.enumerate_items.return_value = _news_items(2)
        original_find = destination.find

        def flaky_find(record_type, slug, source_id=None):
            if slug == "story-0":
                raise requests.ConnectionError("destination down")
            return original_find(record_type, slug, source_id)

        destination.find = flaky_find
        ledger = _migrator(make_context(), mock_source, destination).run()

        statuses = {r.slug: r.status for r in ledger.results}
        assert statuses == {"story-0": ItemStatus.FAILED, "story-1": ItemStatus.CREATED}

    def test_destination_error_fails_item_only(self, mock_source, destination):
        mock_source.enumerate_items.return_value = _news_items(2)
        original_create = destination.create

        def failing_create(record):
            if record.slug == "story-1":
                raise DestinationError("422 invalid")
            return original_create(record)

        destination.create = failing_create
        ledger = _migrator(make_context(), mock_source, destination).run()

        failed = [r for r in ledger.results if r.status is ItemStatus.FAILED]
        assert [r.slug for r in failed] == ["story-1"]
        assert "422" in failed[0].error
        assert ledger.build_report()["successRate"] == 50.0

    def test_duplicate_on_create_is_skipped(self, mock_source, destination):
        mock_source.enumerate_items.return_value = _news_items(1)
        destination.find = MagicMock(return_value=None)
        destination.records.append({"id": "rec-0", "type": "news", "slug": "story-0"})

        ledger = _migrator(make_context(), mock_source, destination).run()

        assert ledger.results[0].status is ItemStatus.SKIPPED

    def test_same_slug_twice_in_one_run_creates_once(self, mock_source, destination):
        twins = [make_item(item_id="wf-a", slug="same"), make_item(item_id="wf-b", slug="same")]
        mock_source.enumerate_items.return_value = twins

        ledger = _migrator(make_context(), mock_source, destination).run()

        assert len(destination.created) == 1
        assert sorted(r.status.value for r in ledger.results) == ["created", "skipped"]

    def test_unexpected_item_error_is_recorded(self, mock_source, destination):
        mock_source.enumerate_items.return_value = _news_items(2)
        migrator = _migrator(make_context(), mock_source, destination)
        original_extract = migrator.extractor.extract

        def broken_extract(item):
            if item.slug == "story-0":
                raise KeyError("field")
            return original_extract(item)

        migrator.extractor.extract = broken_extract
        ledger = migrator.run()

        statuses = {r.slug: r.status for r in ledger.results}
        assert statuses["story-0"] is ItemStatus.FAILED
        assert statuses["story-1"] is ItemStatus.CREATED

    def test_unreadable_source_entry_is_failed_without_destination_calls(
        self, mock_source, destination
    ):
        good = make_item(item_id="wf-0", slug="s-0")
        mock_source.enumerate_items.return_value = [good, SourceItem.unreadable(1, None)]

        ledger = _migrator(make_context(), mock_source, destination).run()

        report = ledger.build_report()
        assert report["total"] == 2
        assert report["created"] == 1
        assert report["failed"] == 1
        failed = report["perItemResults"][1]
        assert failed["sourceId"] == "unreadable-1"
        assert "expected an object" in failed["error"]
        assert [r.slug for r in destination.created] == ["s-0"]
        assert destination.find_calls == 1

    def test_report_keeps_source_order_when_first_item_is_slow(
        self, mock_source, destination
    ):
        config = make_config(items_batch=BatchConfig(concurrency=2, delay=0))
        mock_source.enumerate_items.return_value = [
            make_item(item_id="wf-0", slug="s-0"),
            make_item(item_id="wf-1", slug="s-1"),
        ]
        finished = []
        original_create = destination.create

        def slow_first_create(record):
            if record.slug == "s-0":
                time.sleep(0.2)
            record_id = original_create(record)
            finished.append(record.slug)
            return record_id

        destination.create = slow_first_create
        ledger = _migrator(make_context(config=config), mock_source, destination).run()

        assert finished == ["s-1", "s-0"]
        report = ledger.build_report()
        assert [r["slug"] for r in report["perItemResults"]] == ["s-0", "s-1"]

    def test_cancel_stops_after_current_batch(self, mock_source, destination):
        config = make_config(items_batch=BatchConfig(concurrency=2, delay=0))
        mock_source.enumerate_items.return_value = _news_items(6)
        token = CancellationToken()
        original_create = destination.create

        def create_then_cancel(record):
            token.cancel()
            return original_create(record)

        destination.create = create_then_cancel
        context = make_context(config=config)

        ledger = _migrator(context, mock_source, destination, cancel_token=token).run()

        report = ledger.build_report()
        assert report["cancelled"] is True
        assert report["total"] == 6
        assert report["processed"] == 2

    def test_preload_failure_falls_back_to_per_item_checks(self, mock_source, destination):
        config = make_config()
        config.destination.preload_existing = True
        mock_source.enumerate_items.return_value = _news_items(1)
        destination.list_records = MagicMock(side_effect=requests.ConnectionError("down"))
        destination.find = MagicMock(return_value=None)
        ledger = _migrator(make_context(config=config), mock_source, destination).run()

        assert ledger.results[0].status is ItemStatus.CREATED
        destination.find.assert_called_once()

    def test_preload_answers_existence(self, mock_source):
        config = make_config()
        config.destination.preload_existing = True
        destination = InMemoryDestination([{"id": "rec-1", "type": "news", "slug": "story-0"}])
        mock_source.enumerate_items.return_value = _news_items(1)

        ledger = _migrator(make_context(config=config), mock_source, destination).run()

        assert ledger.results[0].status is ItemStatus.SKIPPED
        assert destination.find_calls == 0


class TestDryRun:
    def test_dry_run_writes_nothing(self, mock_source):
        context = make_context(dry_run=True, upload_images=True)
        api = MagicMock()
        api.get.return_value = {"items": []}
        destination = DryRunDestinationClient(
            context.config.destination, context.config.retry, api=api
        )
        mock_source.enumerate_items.return_value = [
            make_item(slug="a", hero_image=HERO, thumbnail=THUMB)
        ]
        migrator = CollectionMigrator(
            context,
            source=mock_source,
            transfer_worker=build_transfer_worker(context),
            destination=destination,
            show_progress=False,
        )

        ledger = migrator.run()

        api.post.assert_not_called()
        api.put.assert_not_called()
        result = ledger.results[0]
        assert result.status is ItemStatus.CREATED
        assert result.destination_id == "dry-run-record-1"
        assert [t.new_url for t in result.images] == [
            "https://cdn.example.com/website/collection/news/a/hero-image.webp",
            "https://cdn.example.com/website/collection/news/a/thumbnail.webp",
        ]
        assert ledger.build_report()["dryRun"] is True
