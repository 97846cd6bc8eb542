"""Data models for Chutor."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field


class Color(enum.Enum):
    WHITE = "white"
    BLACK = "black"

    @classmethod
    def for_ply(cls, ply: int) -> Color:
        """Side that made the given 1-based ply (odd = white)."""
        return cls.WHITE if ply % 2 == 1 else cls.BLACK


class Severity(enum.Enum):
    INACCURACY = "inaccuracy"
    MISTAKE = "mistake"
    BLUNDER = "blunder"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def from_label(cls, label: str | None) -> Severity | None:
        """Map a judgment label ("Blunder", "mistake", ...) to a severity."""
        if not label:
            return None
        try:
            return cls(label.strip().lower())
        except ValueError:
            return None


_SEVERITY_RANK = {
    Severity.INACCURACY: 1,
    Severity.MISTAKE: 2,
    Severity.BLUNDER: 3,
}


@dataclass
class Eval:
    """Annotation evaluation from white's perspective: centipawns or mate distance."""

    cp: int | None = None
    mate: int | None = None

    @property
    def is_mate(self) -> bool:
        return self.mate is not None

    def to_dict(self) -> dict:
        if self.mate is not None:
            return {"mate": self.mate}
        return {"cp": self.cp}

    @classmethod
    def from_dict(cls, d: dict) -> Eval:
        if d.get("mate") is not None:
            return cls(mate=d["mate"])
        return cls(cp=d.get("cp"))


@dataclass
class AnalyzedMove:
    """One ply of a game with its annotation, if any."""

    ply: int  # 1-indexed
    eval: Eval | None = None
    judgment: str | None = None  # label from the annotation source
    judgment_cp: int | None = None
    best: str | None = None  # best move in UCI, when annotated
    comment: str | None = None  # annotation text, may name the best move

    @property
    def has_evaluation(self) -> bool:
        if self.judgment:
            return True
        return self.eval is not None and (self.eval.cp is not None or self.eval.mate is not None)

    def to_dict(self) -> dict:
        d: dict = {"ply": self.ply}
        if self.eval is not None:
            d["eval"] = self.eval.to_dict()
        if self.judgment is not None:
            d["judgment"] = {"name": self.judgment, "cp": self.judgment_cp}
        if self.best is not None:
            d["best"] = self.best
        if self.comment is not None:
            d["comment"] = self.comment
        return d

    @classmethod
    def from_dict(cls, d: dict) -> AnalyzedMove:
        judgment = d.get("judgment") or {}
        return cls(
            ply=d["ply"],
            eval=Eval.from_dict(d["eval"]) if d.get("eval") is not None else None,
            judgment=judgment.get("name"),
            judgment_cp=judgment.get("cp"),
            best=d.get("best"),
            comment=d.get("comment"),
        )


@dataclass
class GameRecord:
    """A normalized game: identity, opening, players, move text and annotations."""

    game_id: str
    opening: str = "Unknown"
    white: str = ""
    black: str = ""
    pgn: str = ""  # portable move text, may be empty
    moves: list[AnalyzedMove] = field(default_factory=list)

    @property
    def is_evaluated(self) -> bool:
        return any(m.has_evaluation for m in self.moves)

    def side_of(self, username: str | None) -> Color | None:
        """Color played by username in this game, or None if absent."""
        if not username:
            return None
        target = username.strip().lower()
        if not target:
            return None
        if self.white.strip().lower() == target:
            return Color.WHITE
        if self.black.strip().lower() == target:
            return Color.BLACK
        return None

    def to_dict(self) -> dict:
        return {
            "game_id": self.game_id,
            "opening": self.opening,
            "white": self.white,
            "black": self.black,
            "pgn": self.pgn,
            "moves": [m.to_dict() for m in self.moves],
        }

    @classmethod
    def from_dict(cls, d: dict) -> GameRecord:
        return cls(
            game_id=d["game_id"],
            opening=d.get("opening", "Unknown"),
            white=d.get("white", ""),
            black=d.get("black", ""),
            pgn=d.get("pgn", ""),
            moves=[AnalyzedMove.from_dict(m) for m in d.get("moves", [])],
        )


@dataclass(frozen=True)
class MistakeEvent:
    """A classified (or bootstrapped) mistake at one ply of one game."""

    game_id: str
    ply: int
    severity: Severity
    opening: str
    centipawn_loss: int | None = None
    bootstrapped: bool = False

    @property
    def move_number(self) -> int:
        return math.ceil(self.ply / 2)

    @property
    def side(self) -> Color:
        return Color.for_ply(self.ply)

    def to_dict(self) -> dict:
        d = {
            "game_id": self.game_id,
            "move_number": self.move_number,
            "ply": self.ply,
            "side": self.side.value,
            "severity": self.severity.value,
            "opening": self.opening,
            "bootstrapped": self.bootstrapped,
        }
        if self.centipawn_loss is not None:
            d["centipawn_loss"] = self.centipawn_loss
        return d

    @classmethod
    def from_dict(cls, d: dict) -> MistakeEvent:
        return cls(
            game_id=d["game_id"],
            ply=d["ply"],
            severity=Severity(d["severity"]),
            opening=d.get("opening", "Unknown"),
            centipawn_loss=d.get("centipawn_loss"),
            bootstrapped=d.get("bootstrapped", False),
        )


@dataclass
class AggregatedJudgment:
    """Most severe judgment seen at one position signature."""

    severity: Severity
    move_number: int
    ply: int
    opening: str
    centipawn_loss: int | None = None
    frequency: int = 1

    def outranks(self, event: MistakeEvent) -> bool:
        """True if this judgment is at least as severe as event (ties by cp loss)."""
        if self.severity.rank != event.severity.rank:
            return self.severity.rank > event.severity.rank
        return (self.centipawn_loss or 0) >= (event.centipawn_loss or 0)


@dataclass
class Summary:
    """Aggregated mistake counts and ranked mistake lists for a batch of games."""

    inaccuracies: int = 0
    mistakes: int = 0
    blunders: int = 0
    mistakes_by_opening: dict[str, int] = field(default_factory=dict)
    blunders_by_opening: dict[str, int] = field(default_factory=dict)
    top_blunders: list[MistakeEvent] = field(default_factory=list)
    top_mistakes: list[MistakeEvent] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.inaccuracies + self.mistakes + self.blunders

    def to_dict(self) -> dict:
        return {
            "total": {
                "inaccuracies": self.inaccuracies,
                "mistakes": self.mistakes,
                "blunders": self.blunders,
            },
            "mistakes_by_opening": dict(self.mistakes_by_opening),
            "blunders_by_opening": dict(self.blunders_by_opening),
            "top_blunders": [e.to_dict() for e in self.top_blunders],
            "top_mistakes": [e.to_dict() for e in self.top_mistakes],
        }

    @classmethod
    def from_dict(cls, d: dict) -> Summary:
        total = d.get("total", {})
        return cls(
            inaccuracies=total.get("inaccuracies", 0),
            mistakes=total.get("mistakes", 0),
            blunders=total.get("blunders", 0),
            mistakes_by_opening=dict(d.get("mistakes_by_opening", {})),
            blunders_by_opening=dict(d.get("blunders_by_opening", {})),
            top_blunders=[MistakeEvent.from_dict(e) for e in d.get("top_blunders", [])],
            top_mistakes=[MistakeEvent.from_dict(e) for e in d.get("top_mistakes", [])],
        )


@dataclass(frozen=True)
class AnalysisOptions:
    """Request options: focus player and bootstrap opening."""

    only_for_username: str | None = None
    bootstrap_opening: str | None = None

    def normalized(self) -> AnalysisOptions:
        """Trimmed copy with empty strings mapped to None."""
        username = (self.only_for_username or "").strip() or None
        opening = (self.bootstrap_opening or "").strip() or None
        return AnalysisOptions(only_for_username=username, bootstrap_opening=opening)

    def to_dict(self) -> dict:
        return {
            "only_for_username": self.only_for_username,
            "bootstrap_opening": self.bootstrap_opening,
        }

    @classmethod
    def from_dict(cls, d: dict) -> AnalysisOptions:
        return cls(
            only_for_username=d.get("only_for_username"),
            bootstrap_opening=d.get("bootstrap_opening"),
        )


@dataclass
class CacheEntry:
    """A cached summary with its content key and version."""

    key: str
    summary: Summary
    created_at: int  # epoch milliseconds
    version: int

    def meta_dict(self) -> dict:
        return {
            "key": self.key,
            "created_at": self.created_at,
            "version": self.version,
        }


@dataclass
class CacheMetrics:
    """Counters maintained by the summary cache."""

    memory_items: int = 0
    disk_entries: int = 0
    disk_size: int = 0
    hits: int = 0
    misses: int = 0
    reads: int = 0
    writes: int = 0

    def to_dict(self) -> dict:
        return {
            "memory_items": self.memory_items,
            "disk_entries": self.disk_entries,
            "disk_size": self.disk_size,
            "hits": self.hits,
            "misses": self.misses,
            "reads": self.reads,
            "writes": self.writes,
        }


@dataclass
class AnalysisResponse:
    """Result of one orchestrated analysis run."""

    summary: Summary
    processing_time_ms: float
    game_count: int
    worker_count: int
    meta: CacheEntry
    cached: bool = False
    detected_username: str | None = None

    def to_dict(self) -> dict:
        d = {
            "summary": self.summary.to_dict(),
            "processing_time_ms": round(self.processing_time_ms, 1),
            "game_count": self.game_count,
            "worker_count": self.worker_count,
            "cached": self.cached,
            "meta": self.meta.meta_dict(),
        }
        if self.detected_username is not None:
            d["detected_username"] = self.detected_username
        return d
