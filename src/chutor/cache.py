"""Content-addressed summary cache: LRU memory tier over a gzip'd append-only log."""

from __future__ import annotations

import gzip
import hashlib
import json
import os
import time
from collections import OrderedDict
from collections.abc import Iterable
from pathlib import Path

from .config import DEFAULT_MAX_DISK_BYTES
from .errors import CacheError
from .log import get_logger
from .models import AnalysisOptions, CacheEntry, CacheMetrics, GameRecord, Summary

DATA_FILE = "data.ndjson.gz"
INDEX_FILE = "index.json"


def compute_key(games: Iterable[GameRecord], options: AnalysisOptions | None = None) -> str:
    """Deterministic key for a dataset and its options.

    Games are reduced to (id, opening, analyzed move count) and sorted by id,
    so the key does not depend on input order.
    """
    options = (options or AnalysisOptions()).normalized()
    rows = sorted(
        ([g.game_id, g.opening, len(g.moves)] for g in games),
        key=lambda row: (row[0], row[1], row[2]),
    )
    payload = {
        "g": rows,
        "o": {
            "only_for_username": options.only_for_username or "",
            "bootstrap_opening": options.bootstrap_opening or "",
        },
    }
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(raw.encode()).hexdigest()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _checked_entry(key: str, ent) -> dict:
    """Index entry with its numeric fields coerced, or raise on a malformed one."""
    if not isinstance(ent, dict):
        raise TypeError(f"entry is {type(ent).__name__}, not an object")
    checked = dict(ent)
    for name in ("offset", "length", "created_at", "version"):
        checked[name] = int(ent[name])
        if checked[name] < 0:
            raise ValueError(f"negative {name}")
    checked["key"] = key
    return checked


def _detached(entry: CacheEntry) -> CacheEntry:
    """Copy of entry whose summary shares no mutable state with the original."""
    return CacheEntry(
        key=entry.key,
        summary=Summary.from_dict(entry.summary.to_dict()),
        created_at=entry.created_at,
        version=entry.version,
    )


class SummaryCache:
    """Two-tier summary cache owned by a single process.

    Writes append one independently gzip'd JSON line to the data log and
    rewrite the JSON index in full. Bytes in the log that no index entry
    points to (superseded versions, evicted entries, a torn tail after a
    crash) are never read. Reclaiming them is left to an external
    compaction pass.
    """

    def __init__(
        self,
        base_dir: str | Path,
        max_memory_items: int = 100,
        max_disk_bytes: int = DEFAULT_MAX_DISK_BYTES,
    ):
        self.base_dir = Path(base_dir)
        self.data_path = self.base_dir / DATA_FILE
        self.index_path = self.base_dir / INDEX_FILE
        self.max_memory_items = max(1, max_memory_items)
        self.max_disk_bytes = max_disk_bytes

        self._memory: OrderedDict[str, CacheEntry] = OrderedDict()
        self._index: dict[str, dict] = {}
        self._versions: dict[str, int] = {}
        self._metrics = CacheMetrics()

        self.base_dir.mkdir(parents=True, exist_ok=True)
        if not self.data_path.exists():
            self.data_path.touch()
        self._load_index()

    # -- index persistence -------------------------------------------------

    def _load_index(self) -> None:
        logger = get_logger()
        if not self.index_path.exists():
            return
        try:
            data = json.loads(self.index_path.read_text())
            index = data.get("index", {})
            versions = data.get("versions", {})
            if not isinstance(index, dict) or not isinstance(versions, dict):
                raise ValueError("index and versions must be objects")
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Cache index %s unreadable, starting empty: %s", self.index_path, e)
            return

        for key, value in versions.items():
            try:
                self._versions[key] = int(value)
            except (TypeError, ValueError):
                logger.warning("Ignoring bad cache version for %s: %r", key[:8], value)
        for key, ent in index.items():
            if isinstance(ent, dict) and ent.get("deleted"):
                continue
            try:
                ent = _checked_entry(key, ent)
            except (TypeError, ValueError, KeyError) as e:
                logger.warning("Dropping bad cache index entry %s: %s", key[:8], e)
                continue
            self._index[key] = ent
            self._versions[key] = max(self._versions.get(key, 0), ent["version"])
        logger.debug("Loaded cache index with %d entries", len(self._index))

    def _persist_index(self) -> None:
        disk_size = self.data_path.stat().st_size if self.data_path.exists() else 0
        data = {
            "index": self._index,
            "versions": self._versions,
            "disk_size": disk_size,
        }
        tmp_path = self.index_path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(data, indent=2))
        os.replace(tmp_path, self.index_path)

    # -- memory tier -------------------------------------------------------

    def _remember(self, entry: CacheEntry) -> None:
        self._memory[entry.key] = entry
        self._memory.move_to_end(entry.key)
        while len(self._memory) > self.max_memory_items:
            self._memory.popitem(last=False)

    # -- public API --------------------------------------------------------

    def version_of(self, key: str) -> int:
        """Latest version saved for key, 0 if never saved."""
        return self._versions.get(key, 0)

    def live_bytes(self) -> int:
        """Bytes of the log still referenced by the index."""
        return sum(int(ent.get("length", 0)) for ent in self._index.values())

    def _read_disk(self, key: str, ent: dict) -> CacheEntry:
        try:
            offset, length = int(ent["offset"]), int(ent["length"])
            with open(self.data_path, "rb") as f:
                f.seek(offset)
                blob = f.read(length)
            if len(blob) != length:
                raise CacheError(f"short read ({len(blob)}/{length} bytes)")
            record = json.loads(gzip.decompress(blob).decode("utf-8"))
            if record.get("key") != key:
                raise CacheError("entry key mismatch")
            return CacheEntry(
                key=key,
                summary=Summary.from_dict(record["summary"]),
                created_at=int(ent["created_at"]),
                version=int(ent["version"]),
            )
        except CacheError:
            raise
        except (OSError, EOFError, KeyError, TypeError, ValueError) as e:
            raise CacheError(f"{type(e).__name__}: {e}") from e

    def try_get(self, key: str) -> CacheEntry | None:
        """Look up key in memory, then on disk. Any disk fault counts as a miss."""
        logger = get_logger()
        entry = self._memory.get(key)
        if entry is not None:
            self._memory.move_to_end(key)
            self._metrics.hits += 1
            return _detached(entry)

        ent = self._index.get(key)
        if ent is None:
            self._metrics.misses += 1
            return None

        start = time.time()
        try:
            entry = self._read_disk(key, ent)
        except CacheError as e:
            logger.warning("Cache read failed for %s, treating as miss: %s", key[:8], e)
            self._metrics.misses += 1
            return None

        self._remember(entry)
        self._metrics.hits += 1
        self._metrics.reads += 1
        logger.debug("Cache read: %.1fms (key=%s)", (time.time() - start) * 1000, key[:8])
        return _detached(entry)

    def save(self, key: str, summary: Summary) -> CacheEntry:
        """Append a new version of key to the log and index it."""
        logger = get_logger()
        created_at = _now_ms()
        version = self.version_of(key) + 1
        line = json.dumps({
            "key": key,
            "created_at": created_at,
            "version": version,
            "summary": summary.to_dict(),
        }) + "\n"
        blob = gzip.compress(line.encode("utf-8"))

        with open(self.data_path, "ab") as f:
            offset = f.seek(0, os.SEEK_END)
            f.write(blob)

        self._versions[key] = version
        self._index[key] = {
            "key": key,
            "offset": offset,
            "length": len(blob),
            "created_at": created_at,
            "version": version,
            "size": len(blob),
        }
        entry = CacheEntry(key=key, summary=summary, created_at=created_at, version=version)
        self._remember(_detached(entry))
        self._persist_index()
        self._metrics.writes += 1
        logger.debug("Cache write: %dB @%d (key=%s, v%d)", len(blob), offset, key[:8], version)

        self._evict_if_needed()
        return entry

    def _evict_if_needed(self) -> None:
        logger = get_logger()
        if self.live_bytes() <= self.max_disk_bytes:
            return
        oldest_first = sorted(
            self._index.values(),
            key=lambda ent: (int(ent.get("created_at", 0)), int(ent.get("offset", 0))),
        )
        evicted = 0
        for ent in oldest_first:
            if self.live_bytes() <= self.max_disk_bytes:
                break
            ent["deleted"] = True
            self._index.pop(ent["key"], None)
            self._memory.pop(ent["key"], None)
            evicted += 1
        self._persist_index()
        logger.info("Evicted %d cache entries (live %dB, budget %dB)",
                    evicted, self.live_bytes(), self.max_disk_bytes)

    def metrics(self) -> CacheMetrics:
        m = self._metrics
        return CacheMetrics(
            memory_items=len(self._memory),
            disk_entries=len(self._index),
            disk_size=self.data_path.stat().st_size if self.data_path.exists() else 0,
            hits=m.hits,
            misses=m.misses,
            reads=m.reads,
            writes=m.writes,
        )
