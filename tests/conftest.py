"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from chutor.cache import SummaryCache
from chutor.config import Config
from chutor.log import setup_logging


@pytest.fixture(autouse=True)
def _setup_logging():
    setup_logging(verbose=False)


@pytest.fixture
def cache(tmp_path: Path) -> SummaryCache:
    return SummaryCache(tmp_path / "cache", max_memory_items=2, max_disk_bytes=1_000_000)


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(cache_dir=str(tmp_path / "cache"), workers=1)
