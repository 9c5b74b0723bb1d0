"""Decode an inbound webhook request into a validation handshake or a typed notification."""

import json
from urllib.parse import parse_qs

from pydantic import ValidationError

from src.errors import MalformedPayloadError
from src.utils.logger import get_logger
from src.webhook.models import (
    ChangeNotification,
    ChangeNotificationBatch,
    ValidationHandshake,
)

logger = get_logger("membership_sync.webhook.envelope")

VALIDATION_TOKEN_PARAM = "validationToken"


def parse_validation_token(query_string: str | bytes | None) -> str | None:
    """Return the URL-decoded validationToken from a raw query string, or None if absent."""
    if not query_string:
        return None
    if isinstance(query_string, bytes):
        query_string = query_string.decode("latin-1")
    values = parse_qs(query_string, keep_blank_values=True).get(VALIDATION_TOKEN_PARAM)
    if not values:
        return None
    return values[0]


def parse_notification_body(body: bytes | str) -> ChangeNotification:
    """Parse a Graph notification POST body and return the first notification of the batch.

    Only value[0] is processed; any further entries are logged and dropped.
    Raises MalformedPayloadError when the body is not JSON or does not match the schema.
    """
    try:
        payload = json.loads(body)
    except (TypeError, ValueError) as e:
        raise MalformedPayloadError(f"Body is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Body must be a JSON object with a 'value' array")

    try:
        batch = ChangeNotificationBatch.model_validate(payload)
    except ValidationError as e:
        raise MalformedPayloadError(f"Body does not match notification schema: {e}") from e

    if not batch.value:
        raise MalformedPayloadError("Notification batch 'value' is empty")
    if len(batch.value) > 1:
        logger.warning(
            "webhook.envelope.batch_truncated",
            received=len(batch.value),
            dropped=len(batch.value) - 1,
        )

    notification = ChangeNotification.from_raw(batch.value[0])
    logger.debug(
        "webhook.envelope.parsed",
        resource_id=notification.resource_id,
        delta_size=len(notification.member_delta),
    )
    return notification


def parse_envelope(
    body: bytes | str | None,
    query_string: str | bytes | None = None,
) -> ValidationHandshake | ChangeNotification:
    """Entry point of the parser: handshake short-circuits before the body is looked at."""
    token = parse_validation_token(query_string)
    if token is not None:
        return ValidationHandshake(token=token)
    return parse_notification_body(body if body is not None else b"")
