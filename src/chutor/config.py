"""Configuration dataclass with CLI defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_MAX_DISK_BYTES = 2 * 1024 * 1024 * 1024  # 2 GiB


@dataclass(frozen=True)
class Config:
    """Frozen configuration for an analysis service."""

    cache_dir: str = "cache"
    max_memory_items: int = 100
    max_disk_bytes: int = DEFAULT_MAX_DISK_BYTES
    max_workers: int = 8
    workers: int | None = None  # explicit override, still capped by max_workers
    prefilter_bootstrap_opening: bool = True
    auto_detect_username: bool = False

    def worker_count(self, n_games: int, bootstrap: bool) -> int:
        """Number of worker units for a batch of n_games.

        Bootstrapping needs one global view of every game, so it always
        runs on a single worker.
        """
        if bootstrap:
            return 1
        count = min(os.cpu_count() or 1, self.max_workers)
        if self.workers is not None:
            count = min(count, self.workers)
        return max(1, min(count, n_games))
