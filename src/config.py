"""Configuration and settings."""

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

# Paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
OUTPUT_DIR = PROJECT_ROOT / "output"

# Logging
LOG_DIR = OUTPUT_DIR / "logs"
LOG_FILE = LOG_DIR / "app.jsonl"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
VERBOSE_LOGGING = os.getenv("VERBOSE_LOGGING", "false").lower() == "true"

# Ensure log directory exists
LOG_DIR.mkdir(parents=True, exist_ok=True)

# OpenTelemetry
TRACING_ENABLED = os.getenv("TRACING_ENABLED", "false").lower() == "true"
OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT", "http://localhost:4318/v1/traces")
SERVICE_NAME = os.getenv("SERVICE_NAME", "membership-sync")
DEPLOYMENT_ENVIRONMENT = os.getenv("DEPLOYMENT_ENVIRONMENT", "development")

# Webhook server
WEBHOOK_PORT = int(os.getenv("WEBHOOK_PORT", "8000"))

# Outbound HTTP: one timeout per request, never retried
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))

# Upper bound on concurrent identity/directory calls per notification
SYNC_MAX_CONCURRENCY = int(os.getenv("SYNC_MAX_CONCURRENCY", "4"))

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
DIRECTORY_HOST_TEMPLATE = "https://{region}.proofpointessentials.com/api/v1"


class ConfigurationError(ValueError):
    """Raised when required settings are missing or invalid."""


class Region(str, Enum):
    """Deployment regions of the external directory. Each one is a separate host."""

    US1 = "us1"
    US2 = "us2"
    US3 = "us3"
    US4 = "us4"
    US5 = "us5"
    EU1 = "eu1"


ACCOUNT_TYPES = ("end_user", "channel_admin")


class SyncSettings(BaseModel):
    """Everything the reconciliation pipeline needs, built once and passed in explicitly."""

    tenant_id: str
    client_id: str
    client_secret: str
    org_domain: str
    directory_user: str
    directory_password: str
    client_state: str
    regions: list[Region] = Field(default_factory=lambda: [Region.US1])
    account_type: str = "channel_admin"
    graph_base_url: str = GRAPH_BASE_URL
    directory_host_template: str = DIRECTORY_HOST_TEMPLATE
    request_timeout: float = HTTP_TIMEOUT_SECONDS
    max_concurrency: int = SYNC_MAX_CONCURRENCY

    model_config = {"frozen": True}

    def directory_base_url(self, region: Region) -> str:
        return self.directory_host_template.format(region=region.value).rstrip("/")


# env var -> SyncSettings field
_REQUIRED_ENV = {
    "AZURE_TENANT_ID": "tenant_id",
    "AZURE_CLIENT_ID": "client_id",
    "AZURE_CLIENT_SECRET": "client_secret",
    "PPE_ORG_DOMAIN": "org_domain",
    "PPE_USER": "directory_user",
    "PPE_PASSWORD": "directory_password",
    "WEBHOOK_CLIENT_STATE": "client_state",
}


def parse_regions(raw: str) -> list[Region]:
    """Parse a comma separated region list (e.g. "us1, eu1"). Order is kept, duplicates dropped."""
    regions: list[Region] = []
    for part in raw.split(","):
        name = part.strip().lower()
        if not name:
            continue
        try:
            region = Region(name)
        except ValueError as e:
            valid = ", ".join(r.value for r in Region)
            raise ConfigurationError(f"Unknown region {name!r} (expected one of: {valid})") from e
        if region not in regions:
            regions.append(region)
    if not regions:
        raise ConfigurationError("PPE_REGIONS must name at least one region")
    return regions


def load_sync_settings(environ: Mapping[str, str] | None = None) -> SyncSettings:
    """Build SyncSettings from the environment (or the given mapping).

    Raises ConfigurationError listing every missing variable at once.
    """
    env = os.environ if environ is None else environ
    missing = [key for key in _REQUIRED_ENV if not (env.get(key) or "").strip()]
    if missing:
        raise ConfigurationError(f"Missing environment variables: {', '.join(missing)}")

    account_type = (env.get("PPE_ACCOUNT_TYPE") or "channel_admin").strip()
    if account_type not in ACCOUNT_TYPES:
        raise ConfigurationError(
            f"PPE_ACCOUNT_TYPE must be one of {', '.join(ACCOUNT_TYPES)}, got {account_type!r}"
        )
    try:
        max_concurrency = int(env.get("SYNC_MAX_CONCURRENCY") or SYNC_MAX_CONCURRENCY)
        request_timeout = float(env.get("HTTP_TIMEOUT_SECONDS") or HTTP_TIMEOUT_SECONDS)
    except ValueError as e:
        raise ConfigurationError(f"Invalid numeric setting: {e}") from e

    # Secrets are taken verbatim; client_state is compared byte-for-byte
    values = {field: env[key] for key, field in _REQUIRED_ENV.items()}
    return SyncSettings(
        **values,
        regions=parse_regions(env.get("PPE_REGIONS") or Region.US1.value),
        account_type=account_type,
        request_timeout=request_timeout,
        max_concurrency=max(1, max_concurrency),
    )
