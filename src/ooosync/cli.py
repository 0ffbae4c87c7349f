"""CLI entrypoint for ooosync.

Commands
- sync:       mirror OOO events from the source calendar onto team calendars
- calendars:  list calendars visible to the authorized account (to pick targets)
- ooo-events: list OOO events detected on the source calendar
- status:     show the stored sync state

Notes
- Configuration precedence: CLI > ENV (OOOSYNC__) > YAML file, see config loader.
- When env OOOSYNC_DEV_SCAFFOLD=1 is set, `sync` prints the resolved settings and
  exits 0 without touching Google (useful for unit tests).
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import typer

from .config import AppConfig, load_config
from .errors import ProviderError
from .logging import setup_logging
from .state import StateStore
from .sync.classifier import OOOClassifier
from .sync.orchestrator import Orchestrator, build_calendar_client

app = typer.Typer(add_completion=False, help="Mirror out-of-office events onto team calendars")


def _cli_overrides_from_args(
    *,
    targets: list[str] | None,
    display_name: str | None,
    dry_run: bool | None,
    lookahead_days: int | None,
    verbose: bool,
) -> dict[str, Any]:
    overrides: dict[str, Any] = {}

    sync_over: dict[str, Any] = {}
    if targets:
        # Accept repeated --target and comma-separated values alike
        sync_over["target_calendar_ids"] = [
            t.strip() for raw in targets for t in raw.split(",") if t.strip()
        ]
    if display_name is not None:
        sync_over["display_name"] = display_name
    if dry_run is not None:
        sync_over["dry_run"] = dry_run
    if lookahead_days is not None:
        sync_over["lookahead_days"] = lookahead_days
    if sync_over:
        overrides["sync"] = sync_over

    if verbose:
        overrides.setdefault("logging", {})["level"] = "DEBUG"

    return overrides


def _load(config: Path | None, overrides: dict[str, Any]) -> AppConfig:
    try:
        cfg = load_config(file_path=str(config) if config else None, cli_overrides=overrides)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=3) from exc
    setup_logging(level=cfg.logging.level, json=cfg.logging.as_json)
    return cfg


@app.command(help="Mirror OOO events onto the configured team calendars.")
def sync(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to YAML config file.", show_default=False
    ),
    target: list[str] | None = typer.Option(
        None,
        "--target",
        "-t",
        help="Team calendar id (repeatable or comma-separated). Overrides config.",
        show_default=False,
    ),
    display_name: str | None = typer.Option(
        None,
        "--display-name",
        help="Name used in mirrored titles: '<name> - OOO: <title>'.",
        show_default=False,
    ),
    full: bool = typer.Option(
        False,
        "--full",
        help="Ignore the last sync instant and reconcile the whole window.",
        show_default=False,
    ),
    dry_run: bool | None = typer.Option(
        None,
        "--dry-run/--no-dry-run",
        help="Do not write to team calendars; log intended actions.",
        show_default=False,
    ),
    lookahead_days: int | None = typer.Option(
        None, "--lookahead-days", min=1, help="Days ahead to scan.", show_default=False
    ),
    as_json: bool = typer.Option(
        False, "--json", help="Print the run outcome as one JSON line.", show_default=False
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Set log level to DEBUG (overrides config.logging.level)."
    ),
) -> None:
    """Sync command."""
    overrides = _cli_overrides_from_args(
        targets=target,
        display_name=display_name,
        dry_run=dry_run,
        lookahead_days=lookahead_days,
        verbose=verbose,
    )
    cfg = _load(config, overrides)

    if os.getenv("OOOSYNC_DEV_SCAFFOLD", "").lower() in {"1", "true", "yes"}:
        typer.echo("ooosync sync scaffold")
        typer.echo(f"  display_name: {cfg.sync.display_name}")
        typer.echo(f"  targets: {cfg.sync.target_calendar_ids}")
        policy = cfg.sync.lookup_failure_policy
        typer.echo(f"  dry_run: {cfg.sync.dry_run} | full: {full} | policy: {policy}")
        typer.echo(f"  config file: {config or '(none)'}")
        raise typer.Exit(code=0)

    exit_code, processed = Orchestrator(cfg).run(force_full=full)
    if processed is None:
        typer.echo("ooosync sync failed; see logs", err=True)
        raise typer.Exit(code=exit_code)

    if as_json:
        payload = {
            **processed.result.to_dict(),
            "events": processed.event_count,
            "type": processed.sync_type,
        }
        typer.echo(json.dumps(payload))
        raise typer.Exit(code=exit_code)

    counts = processed.result.counts()
    typer.echo(
        "ooosync sync summary: "
        f"created={counts['created']} skipped={counts['skipped']} "
        f"deleted={counts['deleted']} failed={counts['failed']} "
        f"events={processed.event_count} type={processed.sync_type}"
    )
    for entry in processed.failed:
        typer.echo(f"  failed [{entry.calendar_id}] {entry.summary}: {entry.error}", err=True)
    raise typer.Exit(code=exit_code)


@app.command(help="List calendars visible to the authorized account.")
def calendars(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to YAML config file.", show_default=False
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Set log level to DEBUG."),
) -> None:
    cfg = _load(config, {"logging": {"level": "DEBUG"}} if verbose else {})
    try:
        items = build_calendar_client(cfg).list_calendars()
    except ProviderError as exc:
        typer.echo(f"Failed to fetch calendars: {exc.message}", err=True)
        raise typer.Exit(code=3) from exc
    for cal in items:
        marker = "*" if cal.primary else " "
        typer.echo(f"{marker} {cal.id}\t{cal.summary}\t{cal.access_role or '-'}")
    raise typer.Exit(code=0)


@app.command("ooo-events", help="List OOO events detected on the source calendar.")
def ooo_events(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to YAML config file.", show_default=False
    ),
    days: int | None = typer.Option(
        None, "--days", min=1, help="Window length in days (default: lookahead_days)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Set log level to DEBUG."),
) -> None:
    cfg = _load(config, {"logging": {"level": "DEBUG"}} if verbose else {})
    now = datetime.now(tz=UTC)
    horizon = now + timedelta(days=days or cfg.sync.lookahead_days)
    try:
        events = build_calendar_client(cfg).list_events(
            cfg.google.source_calendar_id, now, horizon
        )
    except ProviderError as exc:
        typer.echo(f"Failed to fetch OOO events: {exc.message}", err=True)
        raise typer.Exit(code=3) from exc
    for ev in OOOClassifier(cfg.sync.ooo_keywords).filter(events):
        start = ev.start.get("dateTime") or ev.start.get("date")
        end = ev.end.get("dateTime") or ev.end.get("date")
        kind = "all day" if ev.is_all_day else "timed"
        typer.echo(f"{start} - {end}\t{ev.summary}\t[{ev.status}, {kind}]")
    raise typer.Exit(code=0)


@app.command(help="Show the stored sync state for the configured display name.")
def status(
    config: Path | None = typer.Option(
        None, "--config", "-c", help="Path to YAML config file.", show_default=False
    ),
    reset: bool = typer.Option(
        False, "--reset", help="Forget the last sync instant (next run is a full sync)."
    ),
) -> None:
    cfg = _load(config, {})
    owner = cfg.sync.display_name
    if not owner:
        typer.echo("sync.display_name is not configured", err=True)
        raise typer.Exit(code=3)
    with StateStore(cfg.state.db_path) as store:
        if reset:
            store.reset_last_sync(owner)
        state = store.get(owner)
    if state is None:
        typer.echo(f"No sync state stored for {owner!r}")
        raise typer.Exit(code=0)
    last = state.last_sync.isoformat() if state.last_sync else "never"
    typer.echo(f"owner: {state.display_name}")
    typer.echo(f"targets: {', '.join(state.target_calendar_ids)}")
    typer.echo(f"last sync: {last}")
    raise typer.Exit(code=0)


if __name__ == "__main__":  # pragma: no cover
    app()
