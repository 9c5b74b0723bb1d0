"""Webhook service for Microsoft Graph group change notifications."""

from src.webhook.envelope import parse_envelope, parse_notification_body, parse_validation_token
from src.webhook.guard import verify_client_state
from src.webhook.models import (
    ChangeNotification,
    ChangeNotificationBatch,
    MemberDeltaEntry,
    ValidationHandshake,
)

__all__ = [
    "parse_envelope",
    "parse_notification_body",
    "parse_validation_token",
    "verify_client_state",
    "ChangeNotification",
    "ChangeNotificationBatch",
    "MemberDeltaEntry",
    "ValidationHandshake",
]
