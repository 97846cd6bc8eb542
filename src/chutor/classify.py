"""Per-move mistake classification from judgments or raw evaluations."""

from __future__ import annotations

from .aggregate import add_event, finalize_summary
from .log import get_logger
from .models import AnalysisOptions, AnalyzedMove, Color, GameRecord, MistakeEvent, Severity, Summary

# Centipawn loss thresholds for the mover of a ply
BLUNDER_THRESHOLD = 250
MISTAKE_THRESHOLD = 150
INACCURACY_THRESHOLD = 60


def severity_for_loss(loss: int) -> Severity | None:
    """Classify a mover-centric centipawn loss. None means no event."""
    if loss >= BLUNDER_THRESHOLD:
        return Severity.BLUNDER
    if loss >= MISTAKE_THRESHOLD:
        return Severity.MISTAKE
    if loss >= INACCURACY_THRESHOLD:
        return Severity.INACCURACY
    return None


def mover_loss(prev: AnalyzedMove, curr: AnalyzedMove) -> int | None:
    """Centipawns lost by whoever played curr, or None if not computable.

    Evaluations are white-relative, so a white move loses when the score
    drops and a black move loses when it rises.
    """
    if prev.eval is None or curr.eval is None:
        return None
    if prev.eval.is_mate or curr.eval.is_mate:
        return None
    if prev.eval.cp is None or curr.eval.cp is None:
        return None
    delta = curr.eval.cp - prev.eval.cp
    if Color.for_ply(curr.ply) == Color.WHITE:
        return max(0, -delta)
    return max(0, delta)


def resolve_target_side(game: GameRecord, username: str | None) -> Color | None:
    """Side to restrict classification to, or None for both sides."""
    return game.side_of(username)


def _from_judgments(game: GameRecord, target_side: Color | None) -> list[MistakeEvent]:
    events = []
    for move in game.moves:
        severity = Severity.from_label(move.judgment)
        if severity is None:
            continue
        if target_side is not None and Color.for_ply(move.ply) != target_side:
            continue
        events.append(MistakeEvent(
            game_id=game.game_id,
            ply=move.ply,
            severity=severity,
            opening=game.opening,
            centipawn_loss=move.judgment_cp,
        ))
    return events


def _from_evaluations(game: GameRecord, target_side: Color | None) -> list[MistakeEvent]:
    events = []
    for prev, curr in zip(game.moves, game.moves[1:]):
        if target_side is not None and Color.for_ply(curr.ply) != target_side:
            continue
        loss = mover_loss(prev, curr)
        if loss is None:
            continue
        severity = severity_for_loss(loss)
        if severity is None:
            continue
        events.append(MistakeEvent(
            game_id=game.game_id,
            ply=curr.ply,
            severity=severity,
            opening=game.opening,
            centipawn_loss=loss,
        ))
    return events


def classify_game(game: GameRecord, target_side: Color | None = None) -> list[MistakeEvent]:
    """Mistake events for one game.

    Annotation judgments are trusted as-is when any move carries one;
    otherwise judgments are derived from consecutive evaluations. The first
    ply has no predecessor and is never classified from evaluations.
    """
    if any(m.judgment for m in game.moves):
        return _from_judgments(game, target_side)
    return _from_evaluations(game, target_side)


def classify_games(games: list[GameRecord], options: AnalysisOptions | None = None) -> Summary:
    """Classify a chunk of games into a finalized summary (worker body)."""
    logger = get_logger()
    options = (options or AnalysisOptions()).normalized()
    summary = Summary()
    for game in games:
        try:
            target_side = resolve_target_side(game, options.only_for_username)
            events = classify_game(game, target_side)
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning("Skipping game %s: %s", game.game_id or "?", e)
            continue
        for event in events:
            add_event(summary, event)
    return finalize_summary(summary)
