"""Mistake details: played and best moves, positions, and recurring patterns.

Each mistake event is replayed against its game's move text to recover the
move that was played (SAN), the engine's preferred move (SAN, from the
annotation's UCI ``best`` field or a move named in its comment) and the
position after the mistake. Events are then grouped into recurring
(opening, played move) patterns.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

import chess

from .bootstrap import replay_moves
from .log import get_logger
from .models import AnalyzedMove, GameRecord, MistakeEvent, Severity

SAN_CANDIDATE_RE = re.compile(r"O-O-O|O-O|[KQRBN]?[a-h]?[1-8]?x?[a-h][1-8](?:=[QRBN])?[+#]?")


@dataclass
class MistakeDetail:
    """One mistake with the moves and position needed to display it."""

    game_id: str
    ply: int
    move_number: int
    severity: Severity
    opening: str
    fen: str  # position after the mistake
    centipawn_loss: int | None = None
    played_san: str | None = None
    best_san: str | None = None
    bootstrapped: bool = False

    def to_dict(self) -> dict:
        return {
            "game_id": self.game_id,
            "ply": self.ply,
            "move_number": self.move_number,
            "severity": self.severity.value,
            "opening": self.opening,
            "fen": self.fen,
            "centipawn_loss": self.centipawn_loss,
            "played_san": self.played_san,
            "best_san": self.best_san,
            "bootstrapped": self.bootstrapped,
        }


@dataclass
class RecurringPattern:
    """The same move played as a mistake in the same opening, with one sample."""

    opening: str
    move: str | None
    count: int
    sample_game_id: str
    sample_move_number: int
    sample_fen: str

    def to_dict(self) -> dict:
        return {
            "opening": self.opening,
            "move": self.move,
            "count": self.count,
            "sample": {
                "game_id": self.sample_game_id,
                "move_number": self.sample_move_number,
                "fen": self.sample_fen,
            },
        }


@dataclass
class MistakeDetails:
    items: list[MistakeDetail] = field(default_factory=list)
    recurring_patterns: list[RecurringPattern] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "items": [i.to_dict() for i in self.items],
            "recurring_patterns": [p.to_dict() for p in self.recurring_patterns],
        }


def san_from_uci(board: chess.Board, uci: str) -> str | None:
    """SAN for a UCI move in board's position, or None if it is not legal there."""
    try:
        move = chess.Move.from_uci(uci.strip())
    except ValueError:
        return None
    if not board.is_legal(move):
        return None
    return board.san(move)


def san_from_comment(board: chess.Board, comment: str | None) -> str | None:
    """First move named in an annotation comment that is legal in board's position."""
    if not comment:
        return None
    for candidate in SAN_CANDIDATE_RE.findall(comment):
        try:
            move = board.parse_san(candidate)
        except ValueError:
            continue
        return board.san(move)
    return None


def _best_san(board: chess.Board, annotated: AnalyzedMove | None) -> str | None:
    if annotated is None:
        return None
    best = san_from_uci(board, annotated.best) if annotated.best else None
    return best or san_from_comment(board, annotated.comment)


def describe_game(game: GameRecord, events: Iterable[MistakeEvent]) -> list[MistakeDetail]:
    """Details for every event of one game, in the order given.

    Plies past the end of the replayable move text keep the last known
    position and have no played move.
    """
    start, moves = replay_moves(game)
    boards = [start.copy()]
    board = start.copy()
    for move in moves:
        board.push(move)
        boards.append(board.copy(stack=False))
    annotated_by_ply = {m.ply: m for m in game.moves}

    details = []
    for event in events:
        ply = max(1, event.ply)
        played = before = None
        if ply <= len(moves):
            before = boards[ply - 1]
            played = before.san(moves[ply - 1])
        after = boards[min(ply, len(boards) - 1)]
        details.append(MistakeDetail(
            game_id=game.game_id,
            ply=event.ply,
            move_number=event.move_number,
            severity=event.severity,
            opening=game.opening,
            fen=after.fen(),
            centipawn_loss=event.centipawn_loss,
            played_san=played,
            best_san=_best_san(before, annotated_by_ply.get(ply)) if before is not None else None,
            bootstrapped=event.bootstrapped,
        ))
    return details


def recurring_patterns(items: Iterable[MistakeDetail]) -> list[RecurringPattern]:
    """Group details by (opening, played move), most frequent first.

    The first detail seen for a pattern is its sample. Ties keep first-seen
    order.
    """
    patterns: dict[tuple[str, str | None], RecurringPattern] = {}
    for item in items:
        key = (item.opening, item.played_san)
        pattern = patterns.get(key)
        if pattern is None:
            patterns[key] = RecurringPattern(
                opening=item.opening,
                move=item.played_san,
                count=1,
                sample_game_id=item.game_id,
                sample_move_number=item.move_number,
                sample_fen=item.fen,
            )
        else:
            pattern.count += 1
    return sorted(patterns.values(), key=lambda p: -p.count)


def prepare_mistake_details(
    games: Iterable[GameRecord],
    events: Iterable[MistakeEvent],
    limit: int | None = None,
) -> MistakeDetails:
    """Details and recurring patterns for events (at most limit of them).

    Events whose game is not in games are skipped. Items come out grouped
    by game, in the order each game first appears among the events.
    """
    logger = get_logger()
    events = list(events)
    if limit is not None:
        events = events[:max(0, limit)]
    by_id = {g.game_id: g for g in games}

    grouped: dict[str, list[MistakeEvent]] = {}
    skipped = 0
    for event in events:
        if event.game_id not in by_id:
            skipped += 1
            continue
        grouped.setdefault(event.game_id, []).append(event)
    if skipped:
        logger.warning("Skipped %d mistakes whose game is not in the batch", skipped)

    items: list[MistakeDetail] = []
    for game_id, group in grouped.items():
        items.extend(describe_game(by_id[game_id], group))

    logger.info("Prepared details for %d mistakes across %d games", len(items), len(grouped))
    return MistakeDetails(items=items, recurring_patterns=recurring_patterns(items))
