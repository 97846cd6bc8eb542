"""Aggregation: severity totals, per-opening counts, ranked mistake lists."""

from __future__ import annotations

from collections.abc import Iterable

from .models import MistakeEvent, Severity, Summary


def _loss_key(event: MistakeEvent) -> int:
    return -(event.centipawn_loss or 0)


def add_event(summary: Summary, event: MistakeEvent) -> None:
    """Record one event into summary totals, opening counts and top lists.

    Bootstrapped events go to top_mistakes only; top_blunders and
    blunders_by_opening hold observed blunders.
    """
    if event.severity == Severity.INACCURACY:
        summary.inaccuracies += 1
    elif event.severity == Severity.MISTAKE:
        summary.mistakes += 1
    else:
        summary.blunders += 1

    opening = event.opening
    summary.mistakes_by_opening[opening] = summary.mistakes_by_opening.get(opening, 0) + 1
    if event.severity == Severity.BLUNDER and not event.bootstrapped:
        summary.blunders_by_opening[opening] = summary.blunders_by_opening.get(opening, 0) + 1
        summary.top_blunders.append(event)
    summary.top_mistakes.append(event)


def finalize_summary(summary: Summary) -> Summary:
    """Sort top lists by centipawn loss, descending. Stable: ties keep emission order."""
    summary.top_blunders.sort(key=_loss_key)
    summary.top_mistakes.sort(key=_loss_key)
    return summary


def merge_summaries(parts: Iterable[Summary]) -> Summary:
    """Merge partial summaries from workers, in chunk order."""
    merged = Summary()
    for part in parts:
        merged.inaccuracies += part.inaccuracies
        merged.mistakes += part.mistakes
        merged.blunders += part.blunders
        for opening, count in part.mistakes_by_opening.items():
            merged.mistakes_by_opening[opening] = merged.mistakes_by_opening.get(opening, 0) + count
        for opening, count in part.blunders_by_opening.items():
            merged.blunders_by_opening[opening] = merged.blunders_by_opening.get(opening, 0) + count
        merged.top_blunders.extend(part.top_blunders)
        merged.top_mistakes.extend(part.top_mistakes)
    return finalize_summary(merged)


def summary_of(events: Iterable[MistakeEvent]) -> Summary:
    """Build a finalized summary from a flat sequence of events."""
    summary = Summary()
    for event in events:
        add_event(summary, event)
    return finalize_summary(summary)
