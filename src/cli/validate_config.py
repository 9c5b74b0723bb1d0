"""Validate settings: load from environment, print summary table with secrets masked."""

from rich.table import Table

from src.utils.logger import mask_secret

from .shared import console, load_settings_or_exit, logger


def validate_config() -> None:
    """Load settings from the environment and print them; exit 1 when anything is missing."""
    log = logger.bind(command="validate-config")
    log.info("validate_config.start")

    settings = load_settings_or_exit()

    table = Table(title="Membership sync settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Tenant ID", mask_secret(settings.tenant_id))
    table.add_row("Client ID", mask_secret(settings.client_id))
    table.add_row("Client secret", "set")
    table.add_row("Webhook client state", "set")
    table.add_row("Org domain", settings.org_domain)
    table.add_row("Directory user", settings.directory_user)
    table.add_row("Directory password", "set")
    table.add_row("Regions", ", ".join(r.value for r in settings.regions))
    table.add_row("Account type", settings.account_type)
    table.add_row("Request timeout (s)", str(settings.request_timeout))
    table.add_row("Max concurrency", str(settings.max_concurrency))

    console.print(table)
    for region in settings.regions:
        console.print(f"[dim]{region.value}: {settings.directory_base_url(region)}[/dim]")
    console.print(f"[green]Config valid. {len(settings.regions)} region(s).[/green]")
    log.info("validate_config.ok", regions=[r.value for r in settings.regions])
