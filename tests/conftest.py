"""Shared test fixtures for the cms_migrator test suite."""

import io
import json

import pytest
from PIL import Image


@pytest.fixture()
def sample_raw_items():
    """Return a list of raw collection-API item dicts."""
    return [
        {
            "id": "wf-001",
            "cmsLocaleId": "loc-en",
            "lastPublished": "2024-01-02T00:00:00Z",
            "lastUpdated": "2024-01-02T00:00:00Z",
            "createdOn": "2023-12-01T00:00:00Z",
            "isArchived": False,
            "isDraft": False,
            "fieldData": {
                "name": "Opening Night",
                "slug": "opening-night",
                "summary": "A night to remember",
                "hero-image": {
                    "fileId": "f1",
                    "url": "https://cdn.legacy.example/hero.jpg",
                    "alt": "Stage",
                },
                "thumbnail": "https://cdn.legacy.example/thumb.png",
            },
        },
        {
            "id": "wf-002",
            "isArchived": False,
            "isDraft": True,
            "fieldData": {
                "name": "Draft Piece",
                "slug": "draft-piece",
                "hero-image": None,
            },
        },
    ]


@pytest.fixture()
def sample_config_dict():
    """Return a raw config dict with zero delays and one configured collection."""
    return {
        "source": {
            "base_url": "https://source.example/v2",
            "token": "source-token",
            "page_size": 2,
            "page_delay": 0,
        },
        "destination": {"base_url": "https://dest.example", "api_key": "dest-key"},
        "storage": {
            "bucket": "bucket",
            "cdn_base_url": "https://cdn.example.com",
        },
        "batches": {
            "items": {"concurrency": 2, "delay": 0},
            "images": {"concurrency": 3, "delay": 0},
        },
        "retry": {"max_attempts": 3, "base_delay": 0, "max_delay": 0},
        "collections": {"news": {"collection_id": "col-news"}},
    }


@pytest.fixture()
def png_bytes():
    """A small real PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), (255, 0, 0)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture()
def report_file(tmp_path):
    """Write a previous run's report with one failed and one created item."""
    path = tmp_path / "previous-report.json"
    path.write_text(
        json.dumps(
            {
                "schemaVersion": 1,
                "collection": "news",
                "perItemResults": [
                    {"status": "failed", "sourceId": "wf-001", "slug": "a"},
                    {"status": "created", "sourceId": "wf-002", "slug": "b"},
                ],
            }
        )
    )
    return path
