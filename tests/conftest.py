from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest


def pytest_configure():
    # Ensure project root is on sys.path for absolute imports like 'pipelines.workflow'
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))
    # Set test environment knobs
    os.environ.setdefault("RUN_ENV", "test")


@pytest.fixture(autouse=True)
def _fresh_settings():
    # Settings are cached per process; tests change env between runs
    from config.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def conn(tmp_path):
    from db import schema
    from db.connection import get_connection

    c = get_connection(str(tmp_path / "test.db"))
    schema.bootstrap(c)
    try:
        yield c
    finally:
        c.close()


@pytest.fixture
def fast_settings():
    """Settings for in-process runs: no spacing, no pauses, immediate stage retries."""
    from config.settings import Settings

    return Settings(
        run_env="test",
        profile_accounts=["acct-1"],
        call_spacing_min_seconds=0.0,
        call_spacing_max_seconds=0.0,
        call_backoff_base_seconds=0.0,
        call_backoff_cap_seconds=0.0,
        stage_retry_delay_seconds=0,
        sub_batch_pause_seconds=0.0,
        concurrency=2,
    )


def make_post(natural_key: str, **overrides):
    """Raw scraped post as the producer delivers it."""
    item = {
        "urn": natural_key,
        "url": f"https://www.linkedin.com/feed/update/{natural_key}",
        "text": "We are hiring a Backend Engineer to join our team",
        "authorName": "Jane Doe",
        "authorProfileUrl": "https://www.linkedin.com/in/jane-doe",
        "authorHeadline": "CTO at Acme",
    }
    item.update(overrides)
    return item
