"""Regional directory protocol."""

from typing import Protocol

from src.config import Region
from src.directory.models import RegionalAccount


class DirectoryClient(Protocol):
    """List/create/delete against one region at a time. Callers own idempotency."""

    async def list_users(self, org_domain: str, region: Region) -> list[RegionalAccount]:
        ...

    async def create_user(
        self,
        org_domain: str,
        region: Region,
        first_name: str,
        last_name: str,
        email: str,
        user_type: str = "channel_admin",
    ) -> None:
        ...

    async def delete_user(self, org_domain: str, region: Region, email: str) -> None:
        ...
