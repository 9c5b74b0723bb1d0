"""CLI commands: one module per mode (serve, replay, validate-config)."""

from typer import Typer

from src.cli import replay_mode, serve_mode, validate_config as validate_config_module
from src.utils.tracing import init_tracing

init_tracing()

app = Typer(help="Group membership sync: Graph change notifications to regional directories")


def register_commands() -> None:
    """Register all CLI commands on the global app."""
    app.command()(serve_mode.serve)
    app.command()(replay_mode.replay)
    app.command(name="validate-config")(validate_config_module.validate_config)


register_commands()
