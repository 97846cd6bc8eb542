"""Builders for test games."""

from __future__ import annotations

from chutor.models import AnalyzedMove, Eval, GameRecord

SIMPLE_PGN = """[Event "?"]
[Site "?"]
[White "w"]
[Black "b"]

1. e4 e5 2. Nf3 Nc6 3. Bb5 a6 4. Ba4 Nf6 5. O-O Be7 *
"""

# Same first four plies as SIMPLE_PGN, then diverges
ITALIAN_PGN = """[Event "?"]
[Site "?"]
[White "w"]
[Black "b"]

1. e4 e5 2. Nf3 Nc6 3. Bc4 Bc5 *
"""


def make_game(
    game_id: str,
    opening: str = "Test Opening",
    cps: list[int | None] | None = None,
    pgn: str = "",
    white: str = "w",
    black: str = "b",
) -> GameRecord:
    """GameRecord with one analyzed move per cp value (None = no eval)."""
    moves = [
        AnalyzedMove(ply=i + 1, eval=Eval(cp=cp) if cp is not None else None)
        for i, cp in enumerate(cps or [])
    ]
    return GameRecord(game_id=game_id, opening=opening, white=white, black=black, pgn=pgn, moves=moves)


def raw_game(game_id: str, opening: str, analysis: list[dict], pgn: str | None = None, **players) -> dict:
    """Lichess-shaped raw game dict."""
    d = {"id": game_id, "opening": {"name": opening}, "analysis": analysis}
    if pgn is not None:
        d["pgn"] = {"raw": pgn}
    if players:
        d["players"] = {
            color: {"user": {"name": name}} for color, name in players.items()
        }
    return d
