"""Lichess and Chess.com API clients with retry and backoff. Produce raw games for analysis."""

from __future__ import annotations

import json
import time

import requests

from .errors import InvalidInputError, NetworkError
from .log import get_logger

BASE_URL = "https://lichess.org/api"
CHESSCOM_BASE_URL = "https://api.chess.com/pub"
USER_AGENT = "Chutor/0.1"
MAX_RETRIES = 3
BACKOFF_BASE = 2.0


def _session() -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": USER_AGENT})
    return s


def _clean_username(username: str) -> str:
    if not username or not username.strip():
        raise InvalidInputError("Username is required")
    return username.strip()


def _get(
    session: requests.Session,
    url: str,
    not_found: str,
    **kwargs,
) -> requests.Response:
    """GET with retries on transport errors and 429. 404 raises NetworkError(not_found)."""
    logger = get_logger()
    last_error = None
    for attempt in range(MAX_RETRIES):
        try:
            resp = session.get(url, timeout=60, **kwargs)
            if resp.status_code == 404:
                raise NetworkError(not_found)
            if resp.status_code == 429:
                wait = BACKOFF_BASE ** (attempt + 1)
                logger.warning("Rate limited, waiting %.1fs", wait)
                time.sleep(wait)
                continue
            resp.raise_for_status()
            return resp
        except requests.RequestException as e:
            last_error = e
            if attempt < MAX_RETRIES - 1:
                wait = BACKOFF_BASE ** (attempt + 1)
                logger.warning("Request failed (%s), retrying in %.1fs", e, wait)
                time.sleep(wait)
    raise NetworkError(f"Request to {url} failed after {MAX_RETRIES} attempts: {last_error}")


def _parse_ndjson_lines(lines) -> list[dict]:
    games = []
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        line = line.strip()
        if not line:
            continue
        try:
            games.append(json.loads(line))
        except json.JSONDecodeError as e:
            raise NetworkError(f"Malformed NDJSON line from Lichess: {e}") from e
    return games


def fetch_lichess_games(
    username: str,
    max_games: int | None = None,
    session: requests.Session | None = None,
) -> list[dict]:
    """Fetch a user's games with evaluations and openings as raw dicts."""
    logger = get_logger()
    username = _clean_username(username)
    session = session or _session()
    params = {"evals": "true", "opening": "true", "pgnInJson": "true"}
    if max_games is not None:
        params["max"] = str(max_games)

    resp = _get(
        session, f"{BASE_URL}/games/user/{username}", "Lichess user not found",
        params=params, stream=True, headers={"Accept": "application/x-ndjson"},
    )
    try:
        games = _parse_ndjson_lines(resp.iter_lines())
    except requests.RequestException as e:
        raise NetworkError(f"Lichess stream interrupted: {e}") from e
    logger.info("Fetched %d games for %s", len(games), username)
    return games


def fetch_chesscom_pgn(
    username: str,
    max_months: int | None = None,
    session: requests.Session | None = None,
) -> str:
    """Concatenated PGN of a Chess.com user's monthly archives, newest months last.

    Chess.com games carry no evaluations, so they are useful as bootstrap
    targets. A month that fails to download is logged and skipped.
    """
    logger = get_logger()
    username = _clean_username(username).lower()
    session = session or _session()

    resp = _get(session, f"{CHESSCOM_BASE_URL}/player/{username}/games/archives",
                "Chess.com user not found")
    try:
        archives = resp.json().get("archives", [])
    except (ValueError, AttributeError) as e:
        raise NetworkError(f"Malformed archive list from Chess.com: {e}") from e
    if max_months is not None:
        archives = archives[-max_months:] if max_months > 0 else []

    chunks = []
    for url in archives:
        try:
            chunks.append(_get(session, f"{url}/pgn", f"Archive not found: {url}").text)
        except NetworkError as e:
            logger.warning("Skipping archive %s: %s", url, e)
    logger.info("Fetched %d/%d monthly archives for %s", len(chunks), len(archives), username)
    text = "\n\n".join(c.strip() for c in chunks if c.strip())
    return text + "\n" if text else ""
