"""Regional user directory: client, models and protocol."""

from src.directory.client import RegionalDirectoryClient
from src.directory.models import NewAccount, RegionalAccount
from src.directory.protocol import DirectoryClient

__all__ = [
    "DirectoryClient",
    "NewAccount",
    "RegionalAccount",
    "RegionalDirectoryClient",
]
