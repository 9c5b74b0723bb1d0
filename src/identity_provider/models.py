"""Pydantic models for the Microsoft Graph user resource (subset we need)."""

from typing import Optional

from pydantic import BaseModel, Field


class DirectoryUser(BaseModel):
    """Graph user as resolved from a group member id."""

    id: str
    display_name: Optional[str] = Field(None, alias="displayName")
    user_principal_name: str = Field(..., alias="userPrincipalName", min_length=1)
    given_name: Optional[str] = Field(None, alias="givenName")
    surname: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "ignore", "frozen": True}

    @property
    def email(self) -> str:
        """Key used for regional accounts (userPrincipalName)."""
        return self.user_principal_name
