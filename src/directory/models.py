"""Pydantic models for regional directory accounts."""

from typing import Literal

from pydantic import BaseModel

AccountType = Literal["end_user", "channel_admin"]


class RegionalAccount(BaseModel):
    """A user record in one directory region, keyed by (region, primary_email)."""

    primary_email: str
    firstname: str | None = None
    surname: str | None = None
    type: str = "channel_admin"

    model_config = {"extra": "ignore"}

    def matches(self, email: str) -> bool:
        return self.primary_email.strip().lower() == email.strip().lower()


class NewAccount(BaseModel):
    """Body of a create-user request."""

    firstname: str
    surname: str
    primary_email: str
    type: AccountType = "channel_admin"
