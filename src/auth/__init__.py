"""Authentication for app-only Graph API access."""

from src.auth.client_credentials import (
    ClientCredentialsTokenProvider,
    DEFAULT_SCOPES,
)

__all__ = [
    "ClientCredentialsTokenProvider",
    "DEFAULT_SCOPES",
]
