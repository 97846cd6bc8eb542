"""Worker fan-out: partition games and classify chunks in parallel processes."""

from __future__ import annotations

import multiprocessing
from concurrent.futures import ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from multiprocessing.context import BaseContext

from .aggregate import merge_summaries
from .classify import classify_games
from .errors import WorkerError
from .log import get_logger
from .models import AnalysisOptions, GameRecord, Summary

# Per-worker state set by _pool_initializer
_worker_id: int = 0


def partition(games: list[GameRecord], n: int) -> list[list[GameRecord]]:
    """Split games into n contiguous chunks whose sizes differ by at most one."""
    if n <= 1 or len(games) <= 1:
        return [list(games)] if games else []
    n = min(n, len(games))
    base, extra = divmod(len(games), n)
    chunks = []
    start = 0
    for i in range(n):
        size = base + (1 if i < extra else 0)
        chunks.append(games[start:start + size])
        start += size
    return chunks


def _pool_initializer(counter) -> None:
    """Assign a worker ID and set up per-worker logging."""
    global _worker_id
    from .log import setup_logging
    setup_logging()

    with counter.get_lock():
        _worker_id = counter.value
        counter.value += 1


def _worker_classify_chunk(args: tuple) -> dict:
    """Classify one chunk in a worker process. Data crosses as plain dicts."""
    game_dicts, options_dict, chunk_index, total_chunks = args
    logger = get_logger()
    games = [GameRecord.from_dict(gd) for gd in game_dicts]
    options = AnalysisOptions.from_dict(options_dict)

    logger.debug("[w%d] Classifying chunk %d/%d (%d games)",
                 _worker_id, chunk_index + 1, total_chunks, len(games))
    return classify_games(games, options).to_dict()


def run_workers(
    chunks: list[list[GameRecord]],
    options: AnalysisOptions,
    workers: int,
    mp_context: BaseContext | None = None,
) -> Summary:
    """Classify every chunk and merge the partial summaries.

    All-or-nothing: if any worker raises or dies the whole batch raises
    WorkerError. mp_context selects the process start method (default:
    the platform's).
    """
    logger = get_logger()
    if not chunks:
        return Summary()

    if workers <= 1 or len(chunks) == 1:
        # Single-worker mode, in-process
        games = [g for chunk in chunks for g in chunk]
        try:
            return merge_summaries([classify_games(games, options)])
        except Exception as e:
            raise WorkerError(f"Analysis worker failed: {e}") from e

    logger.info("Using %d workers for classification", len(chunks))
    options_dict = options.to_dict()
    total = len(chunks)
    worker_args = [
        ([g.to_dict() for g in chunk], options_dict, i, total)
        for i, chunk in enumerate(chunks)
    ]
    ctx = mp_context or multiprocessing.get_context()
    counter = ctx.Value("i", 0)

    try:
        with ProcessPoolExecutor(
            max_workers=len(chunks),
            mp_context=ctx,
            initializer=_pool_initializer,
            initargs=(counter,),
        ) as pool:
            # map keeps chunk order, so merged top lists match a single pass
            results = list(pool.map(_worker_classify_chunk, worker_args))
    except BrokenProcessPool as e:
        raise WorkerError(f"Analysis worker died: {e}") from e
    except Exception as e:
        raise WorkerError(f"Analysis worker failed: {e}") from e

    return merge_summaries(Summary.from_dict(d) for d in results)
