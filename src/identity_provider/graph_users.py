"""Resolve group member ids to Microsoft Graph user profiles (async, httpx)."""

from urllib.parse import quote

import httpx
from pydantic import ValidationError

from src.config import GRAPH_BASE_URL
from src.errors import IdentityResolutionError
from src.identity_provider.models import DirectoryUser
from src.utils.logger import get_logger

logger = get_logger("membership_sync.identity_provider")

USER_SELECT = "id,displayName,userPrincipalName,givenName,surname"


class GraphUserResolver:
    """Looks up one user per call via GET /users/{id}. Results are never cached."""

    def __init__(self, http_client: httpx.AsyncClient, base_url: str = GRAPH_BASE_URL):
        self._http = http_client
        self._base_url = base_url.rstrip("/")

    async def resolve_user(self, token: str, member_id: str) -> DirectoryUser:
        url = f"{self._base_url}/users/{quote(member_id, safe='')}"
        try:
            response = await self._http.get(
                url,
                params={"$select": USER_SELECT},
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning(
                "identity_provider.resolve_user.transport_error",
                member_id=member_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise IdentityResolutionError(member_id, f"{type(e).__name__}: {e}") from e

        if response.status_code == 404:
            raise IdentityResolutionError(member_id, "user not found")
        if not response.is_success:
            raise IdentityResolutionError(member_id, f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            user = DirectoryUser.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise IdentityResolutionError(member_id, f"unexpected user payload: {e}") from e

        logger.debug(
            "identity_provider.resolve_user.hit",
            member_id=member_id,
            user_principal_name=user.user_principal_name,
        )
        return user
