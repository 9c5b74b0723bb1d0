"""Pydantic models for Microsoft Graph group change notification payloads."""

from typing import Any

from pydantic import BaseModel, Field


class MemberDeltaItem(BaseModel):
    """One entry of resourceData['members@delta'] as sent by Graph."""

    id: str = Field(..., min_length=1)
    removed: dict[str, Any] | None = Field(None, alias="@removed")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class ResourceData(BaseModel):
    """Resource data of a group change notification (group id plus member delta)."""

    odata_type: str | None = Field(None, alias="@odata.type")
    id: str | None = None
    members_delta: list[MemberDeltaItem] | None = Field(None, alias="members@delta")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class RawChangeNotification(BaseModel):
    """Single change notification from Microsoft Graph (changeNotification resource type)."""

    change_type: str | None = Field(None, alias="changeType")
    client_state: str | None = Field(None, alias="clientState")
    id: str | None = None
    resource: str | None = None
    resource_data: ResourceData | None = Field(None, alias="resourceData")
    subscription_id: str | None = Field(None, alias="subscriptionId")
    tenant_id: str | None = Field(None, alias="tenantId")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class ChangeNotificationBatch(BaseModel):
    """Request body of a Graph webhook POST: array of change notifications in 'value'."""

    value: list[RawChangeNotification]


class MemberDeltaEntry(BaseModel):
    """A changed group member: removed=True means the member left the group."""

    member_id: str
    removed: bool = False

    model_config = {"frozen": True}


class ChangeNotification(BaseModel):
    """Typed, immutable view of the one notification the engine processes."""

    client_state: str | None
    resource_id: str | None
    member_delta: tuple[MemberDeltaEntry, ...] = ()

    model_config = {"frozen": True}

    @classmethod
    def from_raw(cls, raw: RawChangeNotification) -> "ChangeNotification":
        resource_data = raw.resource_data
        delta = (resource_data.members_delta if resource_data else None) or []
        return cls(
            client_state=raw.client_state,
            resource_id=resource_data.id if resource_data else None,
            member_delta=tuple(
                MemberDeltaEntry(member_id=item.id, removed=item.removed is not None)
                for item in delta
            ),
        )


class ValidationHandshake(BaseModel):
    """Subscription validation request: the token must be echoed back as text/plain."""

    token: str
