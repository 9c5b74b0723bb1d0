"""HTTP client for the regional user directory (Proofpoint Essentials style API).

Every region is a separate host; nothing is shared between regions. Calls are not
retried and not deduplicated: any transport failure or non-2xx response is raised as
RegionalDirectoryError and the caller decides what to do with it.
"""

from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from src.config import DIRECTORY_HOST_TEMPLATE, Region
from src.directory.models import NewAccount, RegionalAccount
from src.errors import RegionalDirectoryError
from src.utils.logger import get_logger

logger = get_logger("membership_sync.directory")

OP_LIST = "list_users"
OP_CREATE = "create_user"
OP_DELETE = "delete_user"


class RegionalDirectoryClient:
    """Directory API client. One instance serves all regions over a shared httpx client."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        username: str,
        password: str,
        host_template: str = DIRECTORY_HOST_TEMPLATE,
    ):
        self._http = http_client
        self._host_template = host_template
        self._auth_headers = {
            "X-User": username,
            "X-Password": password,
            "Accept": "application/json",
        }

    def _users_url(self, org_domain: str, region: Region) -> str:
        base = self._host_template.format(region=region.value).rstrip("/")
        return f"{base}/orgs/{quote(org_domain, safe='')}/users"

    async def _request(
        self,
        operation: str,
        region: Region,
        email: str | None,
        method: str,
        url: str,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._http.request(method, url, headers=self._auth_headers, json=json_body)
        except httpx.HTTPError as e:
            logger.warning(
                "directory.request.transport_error",
                operation=operation,
                region=region.value,
                email=email,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RegionalDirectoryError(operation, region.value, email, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise RegionalDirectoryError(
                operation,
                region.value,
                email,
                f"HTTP {response.status_code}: {response.text[:200]}",
            )
        return response

    async def list_users(self, org_domain: str, region: Region) -> list[RegionalAccount]:
        """Return every account of the org in this region (single call, no pagination)."""
        response = await self._request(OP_LIST, region, None, "GET", self._users_url(org_domain, region))
        try:
            payload = response.json()
            if isinstance(payload, dict):
                if "users" not in payload:
                    raise ValueError(f"no 'users' key in listing (keys: {sorted(payload)[:5]})")
                records = payload["users"]
            else:
                records = payload
            if not isinstance(records, list):
                raise ValueError(f"expected a list of users, got {type(records).__name__}")
            accounts = [RegionalAccount.model_validate(r) for r in records]
        except (ValueError, ValidationError) as e:
            raise RegionalDirectoryError(OP_LIST, region.value, None, f"unexpected listing payload: {e}") from e
        logger.debug("directory.list_users", region=region.value, count=len(accounts))
        return accounts

    async def create_user(
        self,
        org_domain: str,
        region: Region,
        first_name: str,
        last_name: str,
        email: str,
        user_type: str = "channel_admin",
    ) -> None:
        try:
            body = NewAccount(firstname=first_name, surname=last_name, primary_email=email, type=user_type)
        except ValidationError as e:
            raise RegionalDirectoryError(OP_CREATE, region.value, email, f"invalid account: {e}") from e
        await self._request(
            OP_CREATE,
            region,
            email,
            "POST",
            self._users_url(org_domain, region),
            json_body=body.model_dump(),
        )
        logger.info("directory.create_user", region=region.value, email=email, type=user_type)

    async def delete_user(self, org_domain: str, region: Region, email: str) -> None:
        url = f"{self._users_url(org_domain, region)}/{quote(email, safe='@')}"
        await self._request(OP_DELETE, region, email, "DELETE", url)
        logger.info("directory.delete_user", region=region.value, email=email)
