import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.prompt import Prompt
from rich.table import Table

from .catalog import AppleMusicCatalog, CachedCatalog, SpotifyCatalog, open_session
from .config import CONFIG_FILE, DEFAULTS, config, get_token, save_config
from .errors import Failure
from .executor import BatchProgress
from .matcher import PROFILES, get_profile
from .matching import ResolutionEngine
from .models import TrackDescriptor
from .playlist import JsonFileCommitter, load_playlist
from .session import SessionService, SessionStatus

app = typer.Typer(help="Move playlists between streaming catalogs.")

transfer_app = typer.Typer(help="Resolve a playlist against another catalog and commit it")
config_app = typer.Typer(help="Show or change configuration")

console = Console()

CATALOGS = ("apple_music", "spotify")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    level = logging.DEBUG if verbose else getattr(logging, config["LOG_LEVEL"], logging.WARNING)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _check_catalog(name: str) -> str:
    if name not in CATALOGS:
        raise typer.BadParameter(f"Unknown catalog {name!r}; choose from {', '.join(CATALOGS)}")
    return name


def build_catalog(name: str, http):
    """Destination client from stored tokens; exits when a token is missing."""
    if name == "apple_music":
        dev = get_token("apple_developer")
        if not dev:
            console.print(
                "[bold red]No Apple Music developer token.[/bold red] "
                "Set BRIDGE_APPLE_DEVELOPER_TOKEN or run: keyring set songbridge apple_developer"
            )
            raise typer.Exit(1)
        catalog = AppleMusicCatalog(http, dev, user_token=get_token("apple_user"))
    else:
        token = get_token("spotify")
        if not token:
            console.print(
                "[bold red]No Spotify token.[/bold red] "
                "Set BRIDGE_SPOTIFY_TOKEN or run: keyring set songbridge spotify"
            )
            raise typer.Exit(1)
        catalog = SpotifyCatalog(http, token)
    return CachedCatalog(catalog)


def review_uncertain_matches(needs_review: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Walk the reviewer through each ambiguous track; returns decision dicts."""
    decisions = []
    for entry in needs_review:
        src = entry["source_track"]
        console.print(f"\n[bold yellow]REVIEW:[/] {src['name']} - {', '.join(src['artists'])}")
        candidates = entry["candidates"]
        for i, c in enumerate(candidates, 1):
            console.print(
                f"  {i}) [{c['score']:.0f}] {c['name']} - {c['artist']} "
                f"[dim]({c['album']}, {c['match_method']})[/dim]"
            )
        console.print("  s) Skip")
        choice = Prompt.ask("Choice", choices=[str(i) for i in range(1, len(candidates) + 1)] + ["s"], default="1")
        if choice == "s":
            decisions.append({"track_index": entry["track_index"], "action": "ignore"})
        else:
            decisions.append(
                {
                    "track_index": entry["track_index"],
                    "action": "select",
                    "selected_variant_id": candidates[int(choice) - 1]["id"],
                }
            )
    return decisions


def accept_top_candidates(needs_review: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {"track_index": e["track_index"], "action": "select", "selected_variant_id": e["candidates"][0]["id"]}
        for e in needs_review
        if e["candidates"]
    ]


def print_summary(snapshot: Dict[str, Any]) -> None:
    table = Table(title=snapshot.get("playlist_name") or "Transfer")
    table.add_column("Outcome")
    table.add_column("Tracks", justify="right")
    table.add_row("[green]Matched[/green]", str(len(snapshot["auto_matched"])))
    table.add_row("[yellow]Needs review[/yellow]", str(len(snapshot["needs_review"])))
    table.add_row("[red]Unavailable[/red]", str(len(snapshot["unavailable"])))
    console.print(table)
    for entry in snapshot["unavailable"]:
        src = entry["source_track"]
        note = f" [dim]({entry['error']})[/dim]" if entry.get("error") else ""
        console.print(f"  [red]✗[/red] {src['name']} - {', '.join(src['artists'])}{note}")


async def _run_transfer(
    playlist: Path,
    source: str,
    destination: str,
    out: Path,
    report: Optional[Path],
    yes: bool,
    profile: Optional[str],
    batch_size: Optional[int],
) -> None:
    name, tracks = await load_playlist(playlist)
    if not tracks:
        console.print("[red]No tracks loaded from playlist.[/red]")
        raise typer.Exit(1)

    async with open_session() as http:
        catalog = build_catalog(destination, http)
        scoring = get_profile(profile) if profile else None
        service = SessionService(
            lambda src, dst: ResolutionEngine(catalog, profile=scoring, source_catalog=src),
            JsonFileCommitter(out),
            batch_size=batch_size,
        )
        prepared = await service.prepare(
            {"source_service": source, "destination_service": destination, "playlist_name": name, "tracks": tracks}
        )
        if isinstance(prepared, Failure):
            console.print(f"[red]{prepared.message}[/red]")
            raise typer.Exit(1)
        session_id = prepared["session_id"]
        session = service.store.get(session_id)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Resolving", total=len(tracks))
            async for event in session.events:
                if isinstance(event, BatchProgress):
                    progress.update(
                        task,
                        completed=event.processed_items,
                        description=f"Batch {event.current_batch}/{event.total_batches}",
                    )
                else:
                    progress.update(task, completed=event.current, description=event.item.name[:40])
        await service.wait(session_id)

        snapshot = service.status(session_id)
        if snapshot["status"] == SessionStatus.ERROR.value:
            console.print(f"[bold red]Resolution failed:[/bold red] {snapshot['error']}")
            raise typer.Exit(1)
        print_summary(snapshot)

        if snapshot["status"] == SessionStatus.NEEDS_REVIEW.value:
            if yes:
                decisions = accept_top_candidates(snapshot["needs_review"])
            else:
                decisions = review_uncertain_matches(snapshot["needs_review"])
            reviewed = service.submit_review(session_id, {"decisions": decisions})
            if isinstance(reviewed, Failure):
                console.print(f"[red]{reviewed.message}[/red]")
                raise typer.Exit(1)

        result = await service.execute(session_id)
        if report:
            async with aiofiles.open(report, "w", encoding="utf-8") as f:
                await f.write(json.dumps(service.status(session_id), indent=2))
        if isinstance(result, Failure):
            console.print(f"[bold red]Commit failed:[/bold red] {result.message}")
            raise typer.Exit(1)
        console.print(
            f"[bold green]✓ {result['stats']['committed']} track ids written to {out}[/bold green]"
        )


@transfer_app.command(name="run")
def transfer_run(
    playlist: Path = typer.Argument(..., exists=True, dir_okay=False, help="Playlist JSON export"),
    source: str = typer.Option("spotify", "--from", help="Catalog the playlist came from"),
    destination: str = typer.Option("apple_music", "--to", help="Catalog to resolve against"),
    out: Path = typer.Option(Path("transfer.json"), "--out", "-o", help="Where to write the committed ids"),
    report: Optional[Path] = typer.Option(None, "--report", help="Also write the full session snapshot"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Accept the top candidate for every ambiguous track"),
    profile: Optional[str] = typer.Option(None, "--profile", help=f"Scoring profile: {', '.join(PROFILES)}"),
    batch_size: Optional[int] = typer.Option(
        None, "--batch-size", help="Resolve in throttled batches of this size (config BATCH_SIZE if 0)"
    ),
):
    """Resolve every track, review the ambiguous ones, write the id list."""
    _check_catalog(source)
    _check_catalog(destination)
    if profile and profile not in PROFILES:
        raise typer.BadParameter(f"Unknown profile {profile!r}")
    if batch_size == 0:
        batch_size = config["BATCH_SIZE"]
    asyncio.run(_run_transfer(playlist, source, destination, out, report, yes, profile, batch_size))


async def _run_lookup(track: TrackDescriptor, destination: str) -> None:
    async with open_session() as http:
        engine = ResolutionEngine(build_catalog(destination, http))
        result = await engine.resolve(track)
    for a in result.search_attempts:
        err = f" [red]{a.error}[/red]" if a.error else ""
        console.print(f"[dim]tier {a.tier} {a.method}: {a.query!r} -> {a.results_count}{err}[/dim]")
    if result.unavailable:
        console.print("[red]Not available in the destination catalog.[/red]")
        return
    table = Table(title=f"{track.name} ({result.outcome})")
    for col in ("id", "name", "artist", "album", "score", "confidence", "method"):
        table.add_column(col)
    for c in result.review_candidates:
        table.add_row(
            c.id, c.track.name, c.track.artist_line, c.track.album,
            f"{c.score.total:.1f}", c.confidence.value, c.match_method,
        )
    console.print(table)


@app.command(name="lookup")
def lookup(
    title: str = typer.Argument(..., help="Track title"),
    artist: str = typer.Option("", "--artist", "-a"),
    album: str = typer.Option("", "--album"),
    isrc: Optional[str] = typer.Option(None, "--isrc"),
    duration_ms: Optional[int] = typer.Option(None, "--duration-ms"),
    destination: str = typer.Option("apple_music", "--to"),
):
    """Resolve a single track and show every candidate considered."""
    _check_catalog(destination)
    track = TrackDescriptor(name=title, artists=[artist] if artist else [], album=album, isrc=isrc, duration_ms=duration_ms)
    asyncio.run(_run_lookup(track, destination))


@config_app.command(name="show")
def config_show():
    """Show current configuration values."""
    console.print(f"[dim]{CONFIG_FILE}[/dim]")
    for k, v in config.items():
        console.print(f"[cyan]{k}[/cyan]=[white]{v}[/white]")


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(..., help="Setting name, e.g. THRESHOLD_HIGH"),
    value: str = typer.Argument(...),
):
    """Persist one setting to the user config file."""
    key = key.upper()
    if key not in DEFAULTS:
        console.print(f"[red]Unknown setting {key}[/red]")
        raise typer.Exit(1)
    values = dict(config)
    values[key] = value
    path = save_config(values)
    console.print(f"[bold green]Saved {key}={value} to {path}[/bold green]")


app.add_typer(transfer_app, name="transfer")
app.add_typer(config_app, name="config")


if __name__ == "__main__":
    app()
