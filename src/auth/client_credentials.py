"""Client-credentials (app-only) token acquisition for Microsoft Graph via MSAL."""

import asyncio
import threading
from collections.abc import Callable
from typing import Any

import msal

from src.errors import CredentialAcquisitionError
from src.utils.logger import get_logger, mask_secret

logger = get_logger("membership_sync.auth")

AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}"
# App-only access uses whatever application permissions were consented for the app
DEFAULT_SCOPES = ["https://graph.microsoft.com/.default"]


def _default_app_factory(
    tenant_id: str,
    client_id: str,
    client_secret: str,
    timeout: float | None,
) -> Any:
    return msal.ConfidentialClientApplication(
        client_id=client_id,
        client_credential=client_secret,
        authority=AUTHORITY_TEMPLATE.format(tenant_id=tenant_id),
        timeout=timeout,
    )


class ClientCredentialsTokenProvider:
    """Exchanges the service principal's client id/secret for a Graph bearer token.

    The MSAL application is created lazily on first use (its constructor performs
    authority discovery over the network) and the blocking MSAL calls run in a thread.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        scopes: list[str] | None = None,
        timeout: float | None = None,
        app_factory: Callable[..., Any] | None = None,
    ):
        self._tenant_id = tenant_id
        self._client_id = client_id
        self._client_secret = client_secret
        self._scopes = list(scopes) if scopes else list(DEFAULT_SCOPES)
        self._timeout = timeout
        self._app_factory = app_factory or _default_app_factory
        self._app: Any = None
        self._app_lock = threading.Lock()

    def _get_app(self) -> Any:
        # concurrent notifications share one MSAL app and its token cache
        with self._app_lock:
            if self._app is None:
                self._app = self._app_factory(
                    self._tenant_id,
                    self._client_id,
                    self._client_secret,
                    self._timeout,
                )
            return self._app

    def _acquire_blocking(self) -> dict[str, Any]:
        return self._get_app().acquire_token_for_client(scopes=self._scopes)

    async def acquire_token(self) -> str:
        """Return an access token or raise CredentialAcquisitionError."""
        log = logger.bind(tenant_id=mask_secret(self._tenant_id), client_id=mask_secret(self._client_id))
        try:
            result = await asyncio.to_thread(self._acquire_blocking)
        except Exception as e:
            log.error("auth.token.error", error=str(e), error_type=type(e).__name__)
            raise CredentialAcquisitionError(f"Token request failed: {e}") from e

        if not isinstance(result, dict):
            result = {}
        if "access_token" not in result:
            reason = result.get("error_description") or result.get("error") or "no access_token in response"
            log.error("auth.token.rejected", error=result.get("error"), reason=reason)
            raise CredentialAcquisitionError(f"Token request rejected: {reason}")

        log.debug("auth.token.acquired", expires_in=result.get("expires_in"))
        return result["access_token"]
