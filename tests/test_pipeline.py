"""Tests for the analysis service end to end."""

from __future__ import annotations

import pytest
from factories import SIMPLE_PGN, raw_game

from chutor import analyze
from chutor.config import Config
from chutor.errors import InvalidInputError, WorkerError
from chutor.models import AnalysisOptions
from chutor.pipeline import AnalysisService


def _evals(*cps):
    return [{"ply": i + 1, "eval": cp} for i, cp in enumerate(cps)]


def _batch():
    return [
        raw_game("A", "Ruy Lopez", _evals(0, 0, 0, 300), pgn=SIMPLE_PGN, white="alice", black="bob"),
        raw_game("B", "Ruy Lopez", [{"ply": p} for p in range(1, 5)], pgn=SIMPLE_PGN,
                 white="carol", black="alice"),
        raw_game("C", "French Defense", _evals(0, 200, 200, 190), white="alice", black="dave"),
    ]


def test_miss_then_hit(config: Config):
    service = AnalysisService(config)
    first = service.analyze(_batch())
    assert not first.cached
    assert first.game_count == 3
    assert first.worker_count >= 1
    assert first.meta.version == 1
    assert first.summary.blunders == 1
    assert first.summary.mistakes == 1

    second = service.analyze(list(reversed(_batch())))
    assert second.cached
    assert second.worker_count == 0
    assert second.meta.key == first.meta.key
    assert second.meta.version == 1
    assert second.summary.to_dict() == first.summary.to_dict()


def test_hit_across_service_instances(config: Config):
    AnalysisService(config).analyze(_batch())
    again = AnalysisService(config).analyze(_batch())
    assert again.cached
    assert again.summary.blunders == 1


def test_force_bumps_version(config: Config):
    service = AnalysisService(config)
    service.analyze(_batch())
    forced = service.analyze(_batch(), force=True)
    assert not forced.cached
    assert forced.meta.version == 2
    assert service.analyze(_batch()).meta.version == 2


def test_options_change_key(config: Config):
    service = AnalysisService(config)
    plain = service.analyze(_batch())
    focused = service.analyze(_batch(), AnalysisOptions(only_for_username="alice"))
    assert focused.meta.key != plain.meta.key
    assert not focused.cached


def test_username_filter(config: Config):
    response = AnalysisService(config).analyze(_batch(), AnalysisOptions(only_for_username="BOB"))
    # Only bob's moves in A, no filter in games bob is absent from
    assert response.summary.blunders == 1
    assert response.summary.mistakes == 1

    response = AnalysisService(config).analyze(_batch(), AnalysisOptions(only_for_username="alice"))
    # alice is white in A and C, so black's ply 4 blunder and ply 2 mistake drop out
    assert response.summary.blunders == 0
    assert response.summary.mistakes == 0


def test_auto_detect_username(tmp_path):
    config = Config(cache_dir=str(tmp_path / "c"), workers=1, auto_detect_username=True)
    response = AnalysisService(config).analyze(_batch())
    assert response.detected_username == "alice"
    assert response.to_dict()["detected_username"] == "alice"


def test_bootstrap_flow(config: Config):
    response = AnalysisService(config).analyze(
        _batch(), AnalysisOptions(bootstrap_opening="Ruy Lopez"))
    s = response.summary
    assert response.worker_count == 1
    # Prefiltered to the opening: C's mistake is not counted
    assert s.mistakes == 0
    assert s.blunders == 2
    inferred = [e for e in s.top_mistakes if e.bootstrapped]
    assert [(e.game_id, e.ply) for e in inferred] == [("B", 4)]
    assert [e.game_id for e in s.top_blunders] == ["A"]
    assert s.blunders_by_opening == {"Ruy Lopez": 1}
    assert s.mistakes_by_opening == {"Ruy Lopez": 2}


def test_bootstrap_honors_username_side(config: Config):
    # bob is absent from B, so all of B is eligible
    response = AnalysisService(config).analyze(
        _batch(), AnalysisOptions(only_for_username="bob", bootstrap_opening="Ruy Lopez"))
    assert [e.game_id for e in response.summary.top_mistakes if e.bootstrapped] == ["B"]

    response = AnalysisService(config).analyze(
        _batch(), AnalysisOptions(only_for_username="carol", bootstrap_opening="Ruy Lopez"))
    # carol is white in B and the inferred blunder is a black move
    assert not any(e.bootstrapped for e in response.summary.top_mistakes)


def test_without_prefilter_counts_other_openings(tmp_path):
    config = Config(cache_dir=str(tmp_path / "c"), workers=1, prefilter_bootstrap_opening=False)
    response = AnalysisService(config).analyze(
        _batch(), AnalysisOptions(bootstrap_opening="Ruy Lopez"))
    assert response.summary.mistakes == 1
    assert response.summary.blunders == 2


def test_empty_batch_rejected(config: Config):
    with pytest.raises(InvalidInputError):
        AnalysisService(config).analyze([])


def test_malformed_batch_rejected_before_work(config: Config, monkeypatch):
    calls = []
    monkeypatch.setattr(analyze, "classify_games", lambda *a, **k: calls.append(a))
    with pytest.raises(InvalidInputError):
        AnalysisService(config).analyze([{"id": "x", "analysis": "nope"}])
    assert calls == []


def test_worker_failure_is_not_cached(config: Config, monkeypatch):
    def boom(games, options=None):
        raise RuntimeError("crash")

    service = AnalysisService(config)
    monkeypatch.setattr(analyze, "classify_games", boom)
    with pytest.raises(WorkerError):
        service.analyze(_batch())
    assert service.cache.metrics().writes == 0

    monkeypatch.undo()
    assert not service.analyze(_batch()).cached


def test_response_dict_shape(config: Config):
    d = AnalysisService(config).analyze(_batch()).to_dict()
    assert set(d) >= {"summary", "processing_time_ms", "game_count", "worker_count", "cached", "meta"}
    assert set(d["meta"]) == {"key", "created_at", "version"}
    assert d["summary"]["total"] == {"inaccuracies": 0, "mistakes": 1, "blunders": 1}


def test_mistake_details_for_summary(config: Config):
    service = AnalysisService(config)
    response = service.analyze(_batch(), AnalysisOptions(bootstrap_opening="Ruy Lopez"))
    details = service.mistake_details(_batch(), response.summary)
    assert [(d.game_id, d.played_san, d.bootstrapped) for d in details.items] == [
        ("A", "Nc6", False), ("B", "Nc6", True),
    ]
    [pattern] = details.recurring_patterns
    assert (pattern.opening, pattern.move, pattern.count) == ("Ruy Lopez", "Nc6", 2)


def test_cached_summary_is_not_shared(config: Config):
    service = AnalysisService(config)
    first = service.analyze(_batch())
    first.summary.blunders = 0
    first.summary.top_blunders.clear()
    second = service.analyze(_batch())
    assert second.cached
    assert second.summary.blunders == 1
    assert len(second.summary.top_blunders) == 1
