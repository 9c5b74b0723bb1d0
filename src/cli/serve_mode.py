"""Serve mode: run the FastAPI listener for Microsoft Graph group change notifications."""

import sys

import typer
import uvicorn

from src.config import WEBHOOK_PORT
from src.webhook.server import create_app

from .shared import console, load_settings_or_exit, logger


def serve(
    port: int = typer.Option(WEBHOOK_PORT, "--port", "-p", help="Port for the webhook server"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Bind host"),
) -> None:
    """Start the webhook listener that reconciles group membership changes."""
    log = logger.bind(command="serve", port=port)
    log.info("serve.start")

    settings = load_settings_or_exit()
    app = create_app(settings=settings)

    regions = ", ".join(r.value for r in settings.regions)
    console.print(f"[green]Starting webhook server on http://{host}:{port}[/green]")
    console.print(f"[dim]Org domain: {settings.org_domain}; regions: {regions}[/dim]")
    console.print("[dim]Endpoints: GET/POST /webhook/notifications, GET /health[/dim]")
    try:
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level="info",
            timeout_graceful_shutdown=15,
        )
    except KeyboardInterrupt:
        console.print("\n[dim]Shutting down...[/dim]")
        sys.exit(0)
