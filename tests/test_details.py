"""Tests for mistake details and recurring patterns."""

from __future__ import annotations

import chess
from factories import ITALIAN_PGN, SIMPLE_PGN, make_game

from chutor.details import (
    describe_game,
    prepare_mistake_details,
    recurring_patterns,
    san_from_comment,
    san_from_uci,
)
from chutor.models import AnalyzedMove, Eval, GameRecord, MistakeEvent, Severity


def _board_after(*sans: str) -> chess.Board:
    board = chess.Board()
    for san in sans:
        board.push_san(san)
    return board


def _annotated_game(game_id="A", opening="Ruy Lopez", pgn=SIMPLE_PGN, **annotations) -> GameRecord:
    """Game whose plies 1-4 carry evals, with extra fields per ply (ply3={"best": ...})."""
    moves = []
    for ply in range(1, 5):
        extra = annotations.get(f"ply{ply}", {})
        moves.append(AnalyzedMove(ply=ply, eval=Eval(cp=0), **extra))
    return GameRecord(game_id=game_id, opening=opening, white="w", black="b", pgn=pgn, moves=moves)


def _event(game_id="A", ply=3, severity=Severity.BLUNDER, loss=300, **kw) -> MistakeEvent:
    return MistakeEvent(game_id, ply, severity, "Ruy Lopez", loss, **kw)


def test_san_from_uci():
    board = _board_after("e4", "e5")
    assert san_from_uci(board, "f1c4") == "Bc4"
    assert san_from_uci(board, "g1f3") == "Nf3"
    assert san_from_uci(board, "e2e5") is None
    assert san_from_uci(board, "zz99") is None


def test_san_from_comment():
    board = _board_after("e4", "e5", "Nf3")
    assert san_from_comment(board, "Blunder. d6 was best.") == "d6"
    assert san_from_comment(board, "(0.3 -> -2.1) Mistake. Nc6 was best.") == "Nc6"
    # First candidate is illegal for black here, the second is legal
    assert san_from_comment(board, "Bc4 or Nf6") == "Nf6"
    assert san_from_comment(board, "no moves here") is None
    assert san_from_comment(board, None) is None


def test_played_and_best_from_uci():
    game = _annotated_game(ply3={"best": "f1c4"})
    [detail] = describe_game(game, [_event(ply=3)])
    assert detail.played_san == "Nf3"
    assert detail.best_san == "Bc4"
    assert detail.fen == _board_after("e4", "e5", "Nf3").fen()
    assert detail.move_number == 2
    assert detail.opening == "Ruy Lopez"
    assert detail.centipawn_loss == 300


def test_best_falls_back_to_comment():
    game = _annotated_game(ply4={"best": "e2e5", "comment": "Mistake. d6 was best."})
    [detail] = describe_game(game, [_event(ply=4, severity=Severity.MISTAKE, loss=180)])
    assert detail.played_san == "Nc6"
    assert detail.best_san == "d6"
    assert detail.severity == Severity.MISTAKE


def test_without_move_text_uses_start_position():
    game = make_game("A", cps=[0, 0, 0, 300])
    [detail] = describe_game(game, [_event(ply=4)])
    assert detail.fen == chess.STARTING_FEN
    assert detail.played_san is None
    assert detail.best_san is None


def test_ply_past_end_keeps_last_position():
    game = _annotated_game(pgn=ITALIAN_PGN)
    [detail] = describe_game(game, [_event(ply=9)])
    assert detail.played_san is None
    assert detail.fen == _board_after("e4", "e5", "Nf3", "Nc6", "Bc4", "Bc5").fen()


def test_bootstrapped_flag_is_kept():
    game = _annotated_game()
    [detail] = describe_game(game, [_event(ply=4, bootstrapped=True)])
    assert detail.bootstrapped
    assert detail.to_dict()["bootstrapped"] is True


def test_recurring_patterns_group_by_opening_and_move():
    games = [
        _annotated_game("A", pgn=SIMPLE_PGN),
        _annotated_game("B", pgn=ITALIAN_PGN),
        _annotated_game("C", opening="Italian Game", pgn=ITALIAN_PGN),
    ]
    events = [
        _event("A", ply=5),  # Bb5
        _event("A", ply=3),  # Nf3
        _event("B", ply=3),  # Nf3
        MistakeEvent("C", 3, Severity.MISTAKE, "Italian Game", 200),  # Nf3, other opening
    ]
    details = prepare_mistake_details(games, events)
    assert [(d.game_id, d.played_san) for d in details.items] == [
        ("A", "Bb5"), ("A", "Nf3"), ("B", "Nf3"), ("C", "Nf3"),
    ]

    patterns = details.recurring_patterns
    assert [(p.opening, p.move, p.count) for p in patterns] == [
        ("Ruy Lopez", "Nf3", 2),
        ("Ruy Lopez", "Bb5", 1),
        ("Italian Game", "Nf3", 1),
    ]
    assert patterns[0].sample_game_id == "A"
    assert patterns[0].sample_fen == _board_after("e4", "e5", "Nf3").fen()


def test_patterns_without_move_text_share_a_bucket():
    items = describe_game(make_game("X", opening="Pirc"), [_event("X", ply=2), _event("X", ply=6)])
    [pattern] = recurring_patterns(items)
    assert pattern.move is None
    assert pattern.count == 2


def test_limit_and_unknown_games():
    games = [_annotated_game("A")]
    events = [_event("A", ply=3), _event("ghost", ply=2), _event("A", ply=4)]
    assert len(prepare_mistake_details(games, events).items) == 2
    assert len(prepare_mistake_details(games, events, limit=1).items) == 1
    assert prepare_mistake_details(games, events, limit=0).items == []


def test_to_dict_shape():
    game = _annotated_game(ply3={"best": "f1c4"})
    d = prepare_mistake_details([game], [_event(ply=3)]).to_dict()
    item = d["items"][0]
    assert item["played_san"] == "Nf3"
    assert item["best_san"] == "Bc4"
    assert item["severity"] == "blunder"
    pattern = d["recurring_patterns"][0]
    assert pattern["count"] == 1
    assert pattern["sample"]["game_id"] == "A"
    assert pattern["sample"]["move_number"] == 2
