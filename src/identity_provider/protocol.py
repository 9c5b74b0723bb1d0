"""Identity provider protocols (Graph-like interface)."""

from typing import Protocol

from src.identity_provider.models import DirectoryUser


class TokenProvider(Protocol):
    """Source of bearer tokens for the identity provider."""

    async def acquire_token(self) -> str:
        """Return a bearer token; raises CredentialAcquisitionError on failure."""
        ...


class UserResolver(Protocol):
    """Looks up a user profile by opaque member id."""

    async def resolve_user(self, token: str, member_id: str) -> DirectoryUser:
        """Return the user; raises IdentityResolutionError on failure."""
        ...
