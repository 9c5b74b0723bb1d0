"""Identity provider: Graph user lookup and the interfaces the engine depends on."""

from src.identity_provider.graph_users import GraphUserResolver
from src.identity_provider.models import DirectoryUser
from src.identity_provider.protocol import TokenProvider, UserResolver

__all__ = [
    "DirectoryUser",
    "GraphUserResolver",
    "TokenProvider",
    "UserResolver",
]
