"""Shared CLI helpers: console, logger, settings loading, result formatting."""

from rich.console import Console
from rich.table import Table

from src.config import ConfigurationError, SyncSettings, load_sync_settings
from src.sync.outcomes import NotificationResult, SyncOutcome
from src.utils.logger import get_logger

console = Console()
logger = get_logger("membership_sync.cli")

_OUTCOME_STYLES = {
    SyncOutcome.CREATED: "green",
    SyncOutcome.DELETED: "yellow",
    SyncOutcome.ALREADY_PRESENT: "dim",
    SyncOutcome.ALREADY_ABSENT: "dim",
    SyncOutcome.FAILED: "red",
}


def load_settings_or_exit() -> SyncSettings:
    """Load settings from the environment; print the problem and exit 1 if invalid."""
    try:
        return load_sync_settings()
    except ConfigurationError as e:
        console.print(f"[red]Config error: {e}[/red]")
        logger.error("cli.config_error", error=str(e))
        raise SystemExit(1) from e


def print_result(result: NotificationResult) -> None:
    """Print the terminal state and a per (member, region) outcome table."""
    style = "green" if result.ok else "red"
    suffix = " (dry run)" if result.dry_run else ""
    console.print(f"\n[bold]Notification[/bold] {result.resource_id or '-'}: [{style}]{result.state.value}[/{style}]{suffix}")
    if result.error:
        console.print(f"  Error: {result.error}")

    if result.results:
        table = Table(title="Region outcomes")
        table.add_column("Member", style="cyan")
        table.add_column("Email")
        table.add_column("Region")
        table.add_column("Change")
        table.add_column("Outcome")
        table.add_column("Reason", overflow="fold")
        for r in result.results:
            outcome_style = _OUTCOME_STYLES.get(r.outcome, "")
            table.add_row(
                r.member_id,
                r.email,
                r.region,
                "removed" if r.removed else "added",
                f"[{outcome_style}]{r.outcome.value}[/{outcome_style}]" if outcome_style else r.outcome.value,
                r.reason or "",
            )
        console.print(table)

    for s in result.skipped:
        console.print(f"  [yellow]Skipped[/yellow] {s.member_id}: {s.reason}")

    counts = ", ".join(f"{k}={v}" for k, v in result.counts().items() if v)
    if counts:
        console.print(f"[dim]{counts}[/dim]")
