"""CLI entry point using Click."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from .cache import SummaryCache
from .config import DEFAULT_MAX_DISK_BYTES, Config
from .errors import ChutorError
from .fetch import fetch_chesscom_pgn, fetch_lichess_games
from .log import setup_logging
from .models import AnalysisOptions
from .normalize import load_games_file
from .pipeline import AnalysisService

cache_dir_option = click.option(
    "--cache-dir", default="cache", envvar="CHUTOR_CACHE_DIR", show_default=True,
    help="Directory holding the summary cache log and index.")


def _run(fn) -> None:
    """Map the error hierarchy onto exit codes."""
    try:
        fn()
    except ChutorError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(e.exit_code)
    except KeyboardInterrupt:
        click.echo("\nAborted.", err=True)
        sys.exit(1)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        sys.exit(5)


@click.group()
@click.option("--verbose", is_flag=True, default=False, help="Enable debug logging.")
def main(verbose: bool) -> None:
    """Classify mistakes across a batch of annotated chess games."""
    setup_logging(verbose)


@main.command()
@click.argument("input_path", metavar="INPUT", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--username", default="", help="Only count moves made by this player.")
@click.option("--bootstrap-opening", default="",
    help="Infer judgments for unevaluated games of this opening.")
@click.option("--force", is_flag=True, default=False,
    help="Skip the cache lookup and recompute (bumps the cached version).")
@cache_dir_option
@click.option("--memory-items", default=100, type=int, show_default=True,
    help="Capacity of the in-memory cache tier.")
@click.option("--disk-budget", default=DEFAULT_MAX_DISK_BYTES, type=int, show_default=True,
    help="Byte budget for live entries in the disk cache.")
@click.option("--workers", default=None, type=int,
    help="Maximum number of parallel classification workers.")
@click.option("--detect-username", is_flag=True, default=False,
    help="Focus on the most frequent player when --username is not given.")
@click.option("--details", is_flag=True, default=False,
    help="Add played/best moves, positions and recurring patterns for each mistake.")
@click.option("--details-limit", default=None, type=int,
    help="Only describe the first N mistakes (worst first).")
@click.option("--output", "output_path", default=None, type=click.Path(dir_okay=False, path_type=Path),
    help="Write the JSON response here instead of stdout.")
def analyze(
    input_path: Path,
    username: str,
    bootstrap_opening: str,
    force: bool,
    cache_dir: str,
    memory_items: int,
    disk_budget: int,
    workers: int | None,
    detect_username: bool,
    details: bool,
    details_limit: int | None,
    output_path: Path | None,
) -> None:
    """Analyze games from INPUT (.pgn, .json or .ndjson)."""
    config = Config(
        cache_dir=cache_dir,
        max_memory_items=memory_items,
        max_disk_bytes=disk_budget,
        workers=workers,
        auto_detect_username=detect_username,
    )
    options = AnalysisOptions(
        only_for_username=username or None,
        bootstrap_opening=bootstrap_opening or None,
    )

    def _analyze() -> None:
        games = load_games_file(input_path)
        service = AnalysisService(config)
        response = service.analyze(games, options, force=force)
        s = response.summary
        click.echo(
            f"{response.game_count} games: {s.blunders} blunders, {s.mistakes} mistakes, "
            f"{s.inaccuracies} inaccuracies ({'cached' if response.cached else 'computed'}, "
            f"v{response.meta.version})",
            err=True,
        )
        data = response.to_dict()
        if details:
            data["details"] = service.mistake_details(games, s, limit=details_limit).to_dict()
        text = json.dumps(data, indent=2)
        if output_path is not None:
            output_path.write_text(text)
            click.echo(f"Response written to: {output_path}", err=True)
        else:
            click.echo(text)

    _run(_analyze)


@main.command()
@click.argument("username")
@click.option("--source", type=click.Choice(["lichess", "chesscom"]), default="lichess", show_default=True,
    help="Site to download from.")
@click.option("--max-games", default=None, type=int, help="Maximum number of Lichess games to fetch.")
@click.option("--max-months", default=None, type=int, help="Only the most recent N Chess.com monthly archives.")
@click.option("--output", "output_path", default=None, type=click.Path(dir_okay=False, path_type=Path),
    help="Output file (default: <username>.ndjson for Lichess, <username>.pgn for Chess.com).")
def fetch(
    username: str,
    source: str,
    max_games: int | None,
    max_months: int | None,
    output_path: Path | None,
) -> None:
    """Download USERNAME's games: Lichess with evaluations as NDJSON, Chess.com as PGN."""
    def _fetch() -> None:
        stem = username.strip().lower()
        if source == "chesscom":
            text = fetch_chesscom_pgn(username, max_months=max_months)
            path = output_path or Path(f"{stem}.pgn")
            path.write_text(text)
            click.echo(f"Wrote Chess.com games to: {path}")
            return

        games = fetch_lichess_games(username, max_games=max_games)
        path = output_path or Path(f"{stem}.ndjson")
        with open(path, "w") as f:
            for game in games:
                f.write(json.dumps(game) + "\n")
        click.echo(f"Wrote {len(games)} games to: {path}")

    _run(_fetch)


@main.command("cache-stats")
@cache_dir_option
def cache_stats(cache_dir: str) -> None:
    """Print summary cache counters as JSON."""
    cache = SummaryCache(cache_dir)
    click.echo(json.dumps(cache.metrics().to_dict(), indent=2))


if __name__ == "__main__":
    main()
