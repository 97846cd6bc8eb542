"""Game normalization: loose API/PGN game dicts into strict GameRecords."""

from __future__ import annotations

import io
import json
import re
from collections import Counter
from collections.abc import Iterable, Mapping
from pathlib import Path

import chess.pgn

from .errors import InvalidInputError
from .log import get_logger
from .models import AnalyzedMove, Eval, GameRecord

LICHESS_ID_RE = re.compile(r"lichess\.org/([A-Za-z0-9]{8})")
CHESSCOM_ID_RE = re.compile(r"chess\.com/game/(?:live|daily)/(\d+)")
CHESSCOM_OPENING_RE = re.compile(r"chess\.com/openings/([^?#]+)")


def _header(pgn_text: str, tag: str) -> str | None:
    """Read a single PGN header value without parsing the whole game."""
    match = re.search(rf'\[{tag}\s+"([^"]+)"\]', pgn_text)
    return match.group(1) if match else None


def _dig(d: Mapping, *path: str):
    """Walk nested mappings, returning None on any missing step."""
    node = d
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def _first_str(*values) -> str:
    for v in values:
        if isinstance(v, str) and v.strip():
            return v
    return ""


def _pgn_text(raw: Mapping) -> str:
    pgn = raw.get("pgn")
    if isinstance(pgn, Mapping):
        return _first_str(pgn.get("raw"))
    if isinstance(pgn, str):
        return pgn
    # Lichess exports without pgnInJson carry SAN moves only
    return _first_str(raw.get("moves"))


def _player_name(raw: Mapping, color: str, pgn_text: str) -> str:
    return _first_str(
        _dig(raw, "players", color, "user", "name"),
        _dig(raw, "players", color, "userId"),
        _dig(raw, "players", color, "name"),
        _dig(raw, color, "user", "name"),
        _dig(raw, color, "name"),
        _header(pgn_text, color.capitalize()),
    )


def _game_id(raw: Mapping, pgn_text: str) -> str:
    for key in ("id", "game_id", "gameId"):
        value = raw.get(key)
        if value is not None and str(value):
            return str(value)
    site = _header(pgn_text, "Site") or ""
    match = LICHESS_ID_RE.search(site)
    return match.group(1) if match else ""


def _opening_name(raw: Mapping, pgn_text: str) -> str:
    opening = raw.get("opening")
    if isinstance(opening, Mapping):
        name = opening.get("name")
    else:
        name = opening
    return _first_str(name, _header(pgn_text, "Opening")) or "Unknown"


def _as_int(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _parse_eval(entry: Mapping) -> Eval | None:
    ev = entry.get("eval")
    if isinstance(ev, Mapping):
        cp, mate = _as_int(ev.get("cp")), _as_int(ev.get("mate"))
    else:
        # Lichess API shape: {"eval": 31} or {"mate": 4}
        cp, mate = _as_int(ev), _as_int(entry.get("mate"))
        if cp is None:
            cp = _as_int(entry.get("cp"))
    if cp is None and mate is None:
        return None
    if mate is not None:
        return Eval(mate=mate)
    return Eval(cp=cp)


def _parse_move(entry, index: int) -> AnalyzedMove:
    if not isinstance(entry, Mapping):
        return AnalyzedMove(ply=index + 1)
    ply = _as_int(entry.get("ply"))
    judgment = entry.get("judgment")
    name = cp = comment = None
    if isinstance(judgment, Mapping):
        name = _first_str(judgment.get("name")) or None
        cp = _as_int(judgment.get("cp"))
        comment = _first_str(judgment.get("comment")) or None
    best = _first_str(entry.get("best"), entry.get("uciBest")) or None
    return AnalyzedMove(
        ply=ply if ply and ply > 0 else index + 1,
        eval=_parse_eval(entry),
        judgment=name,
        judgment_cp=cp,
        best=best,
        comment=comment or _first_str(entry.get("comment")) or None,
    )


def normalize_game(raw) -> GameRecord:
    """Normalize one loosely-shaped game dict into a GameRecord."""
    if isinstance(raw, GameRecord):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidInputError(f"Game record must be an object, got {type(raw).__name__}")

    analysis = raw.get("analysis", raw.get("moves_analysis"))
    if analysis is None:
        analysis = []
    if not isinstance(analysis, list):
        raise InvalidInputError(
            f"Game {raw.get('id', '?')!r}: 'analysis' must be a list, got {type(analysis).__name__}"
        )

    pgn_text = _pgn_text(raw)
    return GameRecord(
        game_id=_game_id(raw, pgn_text),
        opening=_opening_name(raw, pgn_text),
        white=_player_name(raw, "white", pgn_text),
        black=_player_name(raw, "black", pgn_text),
        pgn=pgn_text,
        moves=[_parse_move(entry, i) for i, entry in enumerate(analysis)],
    )


def normalize_games(raws) -> list[GameRecord]:
    """Normalize a request's game list. Rejects empty or malformed input."""
    if not isinstance(raws, (list, tuple)):
        raise InvalidInputError("Games must be a list of game records")
    if not raws:
        raise InvalidInputError("Games list is empty")
    return [normalize_game(raw) for raw in raws]


def derive_username(games: Iterable[GameRecord]) -> str | None:
    """Most frequent player name across games (lowercased), or None."""
    counts: Counter[str] = Counter()
    for game in games:
        names = {n.strip().lower() for n in (game.white, game.black) if n and n.strip()}
        counts.update(names)
    if not counts:
        return None
    name, _ = counts.most_common(1)[0]
    return name


def _moves_from_pgn_game(game: chess.pgn.Game) -> list[AnalyzedMove]:
    """One AnalyzedMove per mainline ply, carrying [%eval] when present."""
    moves: list[AnalyzedMove] = []
    seen_eval = False
    for node in game.mainline():
        score = node.eval()
        ev = None
        if score is not None:
            seen_eval = True
            white = score.white()
            if white.is_mate():
                ev = Eval(mate=white.mate())
            else:
                ev = Eval(cp=white.score())
        moves.append(AnalyzedMove(ply=node.ply(), eval=ev))
    return moves if seen_eval else []


def _pgn_game_id(headers, index: int) -> str:
    """Lichess id from Site, Chess.com id from Link/Site, else a local index id."""
    lichess = LICHESS_ID_RE.search(headers.get("Site", ""))
    if lichess:
        return lichess.group(1)
    for tag in ("Link", "Site"):
        chesscom = CHESSCOM_ID_RE.search(headers.get(tag, ""))
        if chesscom:
            return f"chesscom-{chesscom.group(1)}"
    return f"local-{index}"


def _pgn_opening(headers) -> str:
    if headers.get("Opening"):
        return headers["Opening"]
    # Chess.com exports name the opening only in the ECOUrl slug
    match = CHESSCOM_OPENING_RE.search(headers.get("ECOUrl", ""))
    if match:
        return match.group(1).replace("-", " ").strip() or "Unknown"
    return "Unknown"


def parse_pgn_text(text: str, max_games: int | None = None) -> list[GameRecord]:
    """Parse a multi-game PGN export (optionally with [%eval] comments)."""
    logger = get_logger()
    records: list[GameRecord] = []
    stream = io.StringIO(text)
    exporter_args = {"headers": True, "variations": False, "comments": False}
    while max_games is None or len(records) < max_games:
        game = chess.pgn.read_game(stream)
        if game is None:
            break
        index = len(records)
        if game.errors:
            logger.warning("PGN game #%d has errors: %s", index + 1, game.errors[0])

        headers = game.headers
        records.append(GameRecord(
            game_id=_pgn_game_id(headers, index),
            opening=_pgn_opening(headers),
            white=headers.get("White", ""),
            black=headers.get("Black", ""),
            pgn=game.accept(chess.pgn.StringExporter(**exporter_args)),
            moves=_moves_from_pgn_game(game),
        ))

    logger.info("Parsed %d games from PGN", len(records))
    return records


def load_games_file(path: Path) -> list:
    """Read raw games from a .pgn, .ndjson/.jsonl or .json file."""
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix == ".pgn":
        return parse_pgn_text(text)
    try:
        if suffix in (".ndjson", ".jsonl"):
            return [json.loads(line) for line in text.splitlines() if line.strip()]
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidInputError(f"{path}: invalid JSON: {e}") from e
    if isinstance(data, Mapping):
        data = data.get("games")
    if not isinstance(data, list):
        raise InvalidInputError(f"{path}: expected a list of games or {{\"games\": [...]}}")
    return data
