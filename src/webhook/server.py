"""FastAPI webhook server for Microsoft Graph group change notifications."""

from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from src.auth.client_credentials import ClientCredentialsTokenProvider
from src.config import SyncSettings
from src.directory.client import RegionalDirectoryClient
from src.errors import MalformedPayloadError
from src.identity_provider.graph_users import GraphUserResolver
from src.sync.engine import ReconciliationEngine
from src.sync.outcomes import ProcessingState
from src.utils.logger import get_logger, mask_secret
from src.webhook.envelope import parse_notification_body, parse_validation_token

logger = get_logger("membership_sync.webhook.server")


def build_http_client(settings: SyncSettings) -> httpx.AsyncClient:
    """Shared outbound client: one request timeout, no retries, bounded pool."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.request_timeout),
        limits=httpx.Limits(
            max_keepalive_connections=settings.max_concurrency,
            max_connections=max(settings.max_concurrency * 2, 4),
        ),
    )


def build_engine(
    settings: SyncSettings,
    http_client: httpx.AsyncClient,
    dry_run: bool = False,
) -> ReconciliationEngine:
    """Wire the production collaborators into a ReconciliationEngine."""
    token_provider = ClientCredentialsTokenProvider(
        tenant_id=settings.tenant_id,
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        timeout=settings.request_timeout,
    )
    resolver = GraphUserResolver(http_client, base_url=settings.graph_base_url)
    directory = RegionalDirectoryClient(
        http_client,
        username=settings.directory_user,
        password=settings.directory_password,
        host_template=settings.directory_host_template,
    )
    return ReconciliationEngine(settings, token_provider, resolver, directory, dry_run=dry_run)


@asynccontextmanager
async def _lifespan(app: FastAPI, settings: SyncSettings | None):
    """Create the shared HTTP client and engine in the server's event loop."""
    if getattr(app.state, "engine", None) is None and settings is not None:
        http_client = build_http_client(settings)
        app.state._http_client = http_client
        app.state.engine = build_engine(settings, http_client)
        logger.info(
            "webhook.lifespan.engine_ready",
            tenant_id=mask_secret(settings.tenant_id),
            org_domain=settings.org_domain,
            regions=[r.value for r in settings.regions],
        )

    yield

    http_client = getattr(app.state, "_http_client", None)
    if http_client is not None:
        try:
            await http_client.aclose()
        except Exception as e:
            logger.debug("webhook.lifespan.http_client_close_error", error=str(e))
        app.state._http_client = None


def create_app(
    settings: SyncSettings | None = None,
    engine: Any = None,
) -> FastAPI:
    """
    Create the FastAPI app. If engine is passed it is used as-is (tests, replay);
    otherwise the lifespan builds one from settings.
    """
    app = FastAPI(
        title="Group Membership Sync Webhook",
        version="0.1.0",
        lifespan=lambda app: _lifespan(app, settings),
    )
    app.state.engine = engine
    app.state._http_client = None

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.api_route("/webhook/notifications", methods=["GET", "POST"], response_model=None)
    async def notifications(request: Request) -> Response:
        # Subscription validation: Graph sends validationToken as query param
        validation_token = parse_validation_token(request.url.query)
        if validation_token is not None:
            logger.info("webhook.notifications.validation_handshake")
            return PlainTextResponse(content=validation_token, status_code=200, media_type="text/plain")

        try:
            notification = parse_notification_body(await request.body())
        except MalformedPayloadError as e:
            logger.warning("webhook.notifications.parse_error", error=str(e))
            return JSONResponse(status_code=400, content={"status": "malformed", "detail": str(e)})

        engine = getattr(request.app.state, "engine", None)
        if engine is None:
            logger.error("webhook.notifications.no_engine")
            return JSONResponse(status_code=500, content={"status": "error", "detail": "engine not configured"})

        try:
            result = await engine.process(notification)
        except Exception as e:
            logger.exception("webhook.notifications.process_error", error=str(e))
            return JSONResponse(status_code=500, content={"status": "error"})

        if result.state == ProcessingState.REJECTED:
            return JSONResponse(status_code=401, content={"status": "unauthorized"})
        if result.state != ProcessingState.COMPLETED:
            return JSONResponse(status_code=500, content={"status": "error"})
        return JSONResponse(status_code=200, content={"status": "processed"})

    return app
