"""Integration test configuration.

These tests require a real storage bucket and API credentials and are
skipped by default. Set GOOGLE_APPLICATION_CREDENTIALS, SOURCE_API_TOKEN
and DESTINATION_API_KEY to enable them.
"""

import os

import pytest

skip_no_creds = pytest.mark.skipif(
    not (
        os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
        and os.environ.get("SOURCE_API_TOKEN")
        and os.environ.get("DESTINATION_API_KEY")
    ),
    reason="Integration tests require storage and API credentials in the environment",
)
