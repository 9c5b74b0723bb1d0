"""Replay mode: run a saved notification body through the parser and the engine."""

import asyncio
from pathlib import Path

import typer

from src.config import SyncSettings
from src.errors import MalformedPayloadError
from src.sync.outcomes import NotificationResult
from src.webhook.envelope import parse_notification_body
from src.webhook.models import ChangeNotification
from src.webhook.server import build_engine, build_http_client

from .shared import console, load_settings_or_exit, logger, print_result


async def _replay(settings: SyncSettings, notification: ChangeNotification, dry_run: bool) -> NotificationResult:
    async with build_http_client(settings) as http_client:
        engine = build_engine(settings, http_client, dry_run=dry_run)
        return await engine.process(notification)


def replay(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON notification body (as POSTed by Graph)"),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="List accounts but do not create or delete anything",
    ),
) -> None:
    """Reconcile a notification stored on disk, e.g. one captured from a failed delivery."""
    log = logger.bind(command="replay", path=str(path), dry_run=dry_run)
    log.info("replay.start")

    settings = load_settings_or_exit()
    try:
        notification = parse_notification_body(path.read_bytes())
    except MalformedPayloadError as e:
        console.print(f"[red]Malformed notification: {e}[/red]")
        log.error("replay.malformed", error=str(e))
        raise typer.Exit(1) from e

    result = asyncio.run(_replay(settings, notification, dry_run))

    print_result(result)
    log.info("replay.done", state=result.state.value, **result.counts())
    if not result.ok:
        raise typer.Exit(1)
