"""Position bootstrap: infer judgments for unevaluated games from evaluated ones.

An evaluated game that reaches a position also reached by an unevaluated
game of the same opening lends its judgment to the unevaluated game's move
at that position. Positions are matched by a signature that keeps only
piece placement and side to move.
"""

from __future__ import annotations

import io
from collections.abc import Callable, Iterable

import chess
import chess.pgn

from .aggregate import add_event, finalize_summary
from .log import get_logger
from .models import (
    AggregatedJudgment,
    Color,
    GameRecord,
    MistakeEvent,
    Summary,
)


def position_signature(fen: str) -> str:
    """Piece placement and side to move from a FEN.

    Castling rights, en-passant square and move clocks are dropped on
    purpose, so positions differing only in those fields share a signature.
    """
    fields = fen.split()
    placement = fields[0] if fields else ""
    turn = fields[1] if len(fields) > 1 else "w"
    return f"{placement} {turn}"


def replay_moves(game: GameRecord) -> tuple[chess.Board, list[chess.Move]]:
    """Starting board and the legal mainline moves of a game's move text.

    Missing or unreadable move text yields the default starting position
    and no moves. Replay stops at the first move that cannot be applied.
    """
    logger = get_logger()
    if not game.pgn.strip():
        return chess.Board(), []
    try:
        parsed = chess.pgn.read_game(io.StringIO(game.pgn))
        board = parsed.board() if parsed is not None else None
    except (ValueError, IndexError) as e:
        logger.warning("Cannot replay game %s: %s", game.game_id or "?", e)
        return chess.Board(), []
    if parsed is None or board is None:
        return chess.Board(), []
    if parsed.errors:
        logger.debug("Game %s replay stopped early: %s", game.game_id or "?", parsed.errors[0])

    start = board.copy()
    moves = []
    for move in parsed.mainline_moves():
        if not board.is_legal(move):
            logger.debug("Game %s: illegal move at ply %d: %s", game.game_id or "?", len(moves) + 1, move)
            break
        board.push(move)
        moves.append(move)
    return start, moves


def replay_positions(game: GameRecord) -> list[str]:
    """FEN after each ply; index 0 is the starting position."""
    board, moves = replay_moves(game)
    fens = [board.fen()]
    for move in moves:
        board.push(move)
        fens.append(board.fen())
    return fens


def build_position_index(
    games: Iterable[GameRecord],
    events: Iterable[MistakeEvent],
    opening: str | None = None,
) -> dict[str, AggregatedJudgment]:
    """Map position signatures to the most severe observed judgment there."""
    logger = get_logger()
    by_game: dict[str, list[MistakeEvent]] = {}
    for event in events:
        if event.bootstrapped:
            continue
        by_game.setdefault(event.game_id, []).append(event)

    index: dict[str, AggregatedJudgment] = {}
    for game in games:
        if opening is not None and game.opening != opening:
            continue
        group = by_game.get(game.game_id)
        if not group or not game.is_evaluated:
            continue
        fens = replay_positions(game)
        for event in group:
            if event.ply >= len(fens):
                continue
            signature = position_signature(fens[event.ply])
            existing = index.get(signature)
            if existing is None:
                index[signature] = AggregatedJudgment(
                    severity=event.severity,
                    move_number=event.move_number,
                    ply=event.ply,
                    opening=event.opening,
                    centipawn_loss=event.centipawn_loss,
                )
                continue
            existing.frequency += 1
            if not existing.outranks(event):
                existing.severity = event.severity
                existing.move_number = event.move_number
                existing.ply = event.ply
                existing.opening = event.opening
                existing.centipawn_loss = event.centipawn_loss

    logger.debug("Position index: %d signatures", len(index))
    return index


def match_game(
    game: GameRecord,
    index: dict[str, AggregatedJudgment],
    target_side: Color | None = None,
) -> list[MistakeEvent]:
    """Bootstrapped events for one unevaluated game against the index."""
    events = []
    fens = replay_positions(game)
    for ply in range(1, len(fens)):
        if target_side is not None and Color.for_ply(ply) != target_side:
            continue
        judgment = index.get(position_signature(fens[ply]))
        if judgment is None:
            continue
        if judgment.opening != game.opening:
            continue
        # Guards against signature collisions from encoding shortcuts
        if judgment.ply % 2 != ply % 2:
            continue
        events.append(MistakeEvent(
            game_id=game.game_id,
            ply=ply,
            severity=judgment.severity,
            opening=game.opening,
            centipawn_loss=judgment.centipawn_loss,
            bootstrapped=True,
        ))
    return events


def bootstrap_opening(
    summary: Summary,
    games: list[GameRecord],
    opening: str,
    target_side_for: Callable[[GameRecord], Color | None] | None = None,
) -> list[MistakeEvent]:
    """Extend summary with judgments inferred for unevaluated games of opening.

    Returns the bootstrapped events that were added.
    """
    logger = get_logger()
    index = build_position_index(games, summary.top_mistakes, opening=opening)
    if not index:
        logger.info("Bootstrap %r: no evaluated positions to borrow from", opening)
        return []

    added: list[MistakeEvent] = []
    candidates = [g for g in games if g.opening == opening and not g.is_evaluated]
    for game in candidates:
        target_side = target_side_for(game) if target_side_for else None
        for event in match_game(game, index, target_side):
            add_event(summary, event)
            added.append(event)

    finalize_summary(summary)
    logger.info(
        "Bootstrap %r: %d signatures, %d unevaluated games, %d inferred judgments",
        opening, len(index), len(candidates), len(added),
    )
    return added
