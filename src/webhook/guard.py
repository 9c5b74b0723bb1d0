"""clientState verification for Graph change notifications."""

import hmac


def verify_client_state(client_state: str | None, configured_secret: str | None) -> bool:
    """True only if client_state equals the configured secret exactly.

    No trimming or case folding. Missing values on either side fail closed.
    """
    if not client_state or not configured_secret:
        return False
    return hmac.compare_digest(client_state.encode("utf-8"), configured_secret.encode("utf-8"))
