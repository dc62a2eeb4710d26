"""Webhook error taxonomy.

Maps each failure class to the HTTP status the handler returns:
- MalformedPayload  -> 400 (rejected before verification)
- SignatureRejected -> 401 (no event stored)
- StoreUnavailable  -> 500 (sender is expected to redeliver)
- HandlerFailure    -> logged only; the store write stands
"""

from __future__ import annotations


class WebhookError(Exception):
    """Base class for webhook pipeline errors."""

    status_code = 500
    public_code = "internal_error"


class MalformedPayload(WebhookError):
    """Body is not a JSON object."""

    status_code = 400
    public_code = "malformed_payload"


class SignatureRejected(WebhookError):
    """Signature missing, malformed, expired, or not matching.

    ``reason`` is for logs only and must never be returned to the caller.
    """

    status_code = 401
    public_code = "invalid_signature"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class StoreUnavailable(WebhookError):
    """Durable store write failed for a reason other than a duplicate key."""

    status_code = 500
    public_code = "store_unavailable"


class HandlerFailure(WebhookError):
    """A dispatched side-effect handler raised after the event was stored."""

    def __init__(self, handler: str, cause: BaseException) -> None:
        super().__init__(f"{handler}: {type(cause).__name__}")
        self.handler = handler
        self.cause = cause


class ConfigurationError(Exception):
    """Route or verifier wiring is inconsistent. Raised at startup."""
