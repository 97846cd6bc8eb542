"""Batch orchestrator: cache fast path, worker fan-out, merge, bootstrap, cache write."""

from __future__ import annotations

import time

from .analyze import partition, run_workers
from .bootstrap import bootstrap_opening
from .cache import SummaryCache, compute_key
from .config import Config
from .details import MistakeDetails, prepare_mistake_details
from .log import get_logger
from .models import AnalysisOptions, AnalysisResponse, CacheEntry, GameRecord, Summary
from .normalize import derive_username, normalize_games


class AnalysisService:
    """Long-lived owner of the summary cache; entry point for analysis requests."""

    def __init__(self, config: Config | None = None, cache: SummaryCache | None = None):
        self.config = config or Config()
        if cache is None:
            cache = SummaryCache(
                self.config.cache_dir,
                max_memory_items=self.config.max_memory_items,
                max_disk_bytes=self.config.max_disk_bytes,
            )
        self.cache = cache

    def _resolve_options(
        self, games: list[GameRecord], options: AnalysisOptions | None,
    ) -> tuple[AnalysisOptions, str | None]:
        options = (options or AnalysisOptions()).normalized()
        detected = None
        if options.only_for_username is None and self.config.auto_detect_username:
            detected = derive_username(games)
            if detected:
                options = AnalysisOptions(
                    only_for_username=detected,
                    bootstrap_opening=options.bootstrap_opening,
                )
        return options, detected

    def analyze(
        self,
        games: list,
        options: AnalysisOptions | None = None,
        force: bool = False,
    ) -> AnalysisResponse:
        """Analyze a batch of games, serving from cache unless force is set.

        Raises InvalidInputError before any work starts on bad input and
        WorkerError if any worker fails. No partial summary is returned.
        """
        logger = get_logger()
        start_time = time.time()

        records = normalize_games(games)
        options, detected = self._resolve_options(records, options)
        key = compute_key(records, options)

        if not force:
            hit = self.cache.try_get(key)
            if hit is not None:
                logger.info("Cache hit for %s (v%d)", key[:8], hit.version)
                return AnalysisResponse(
                    summary=hit.summary,
                    processing_time_ms=(time.time() - start_time) * 1000,
                    game_count=len(records),
                    worker_count=0,
                    meta=hit,
                    cached=True,
                    detected_username=detected,
                )
            logger.info("Cache miss for %s, analyzing %d games", key[:8], len(records))
        else:
            logger.info("Forced recompute for %s (%d games)", key[:8], len(records))

        opening = options.bootstrap_opening
        work = records
        if opening is not None and self.config.prefilter_bootstrap_opening:
            work = [g for g in records if g.opening == opening]
            logger.info("Bootstrap %r: %d/%d games in opening", opening, len(work), len(records))

        workers = self.config.worker_count(len(work), bootstrap=opening is not None)
        chunks = partition(work, workers)
        summary = run_workers(chunks, options, workers)

        if opening is not None:
            username = options.only_for_username
            bootstrap_opening(
                summary, work, opening,
                target_side_for=(lambda g: g.side_of(username)) if username else None,
            )

        entry = self._save(key, summary)
        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Analysis complete in %.0fms: %d blunders, %d mistakes, %d inaccuracies",
            duration_ms, summary.blunders, summary.mistakes, summary.inaccuracies,
        )
        return AnalysisResponse(
            summary=summary,
            processing_time_ms=duration_ms,
            game_count=len(records),
            worker_count=max(1, len(chunks)),
            meta=entry,
            cached=False,
            detected_username=detected,
        )

    def _save(self, key: str, summary: Summary) -> CacheEntry:
        logger = get_logger()
        try:
            return self.cache.save(key, summary)
        except OSError as e:
            logger.warning("Cache write failed for %s: %s", key[:8], e)
            return CacheEntry(
                key=key,
                summary=summary,
                created_at=int(time.time() * 1000),
                version=self.cache.version_of(key),
            )

    def mistake_details(
        self, games: list, summary: Summary, limit: int | None = None,
    ) -> MistakeDetails:
        """Played/best moves, positions and recurring patterns for summary's mistakes."""
        return prepare_mistake_details(normalize_games(games), summary.top_mistakes, limit=limit)
