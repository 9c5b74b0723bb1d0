"""Error taxonomy for the membership sync pipeline.

Errors are classified by blast radius. AuthenticityError, MalformedPayloadError and
CredentialAcquisitionError end the whole notification. IdentityResolutionError and
RegionalDirectoryError are scoped to one member (or one member/region cell) and are
recorded by the engine without stopping the batch.
"""


class MembershipSyncError(Exception):
    """Base class for all pipeline errors."""


class AuthenticityError(MembershipSyncError):
    """clientState of the notification does not match the configured secret."""


class MalformedPayloadError(MembershipSyncError):
    """Notification body is not valid JSON or does not match the expected schema."""


class CredentialAcquisitionError(MembershipSyncError):
    """Client-credentials token exchange failed."""


class IdentityResolutionError(MembershipSyncError):
    """Looking up a single member in the identity provider failed."""

    def __init__(self, member_id: str, reason: str):
        self.member_id = member_id
        self.reason = reason
        super().__init__(f"Could not resolve member {member_id!r}: {reason}")


class RegionalDirectoryError(MembershipSyncError):
    """A list/create/delete call against one directory region failed."""

    def __init__(self, operation: str, region: str, email: str | None, reason: str):
        self.operation = operation
        self.region = region
        self.email = email
        self.reason = reason
        target = f" for {email}" if email else ""
        super().__init__(f"{operation} in region {region}{target} failed: {reason}")
