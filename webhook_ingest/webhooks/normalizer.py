"""Webhook event normalizer — sender payloads to CanonicalEvent.

Field extraction uses explicit per-sender lists rather than "everything
else" spreading, so a new sender field is kept in the residual payload
and a secret-bearing field is dropped on purpose, never by accident.

Unknown event types are normalized like any other; only bodies that are
not JSON objects are rejected, and that happens before this stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from webhook_ingest.webhooks.models import CanonicalEvent, Sender, body_digest

logger = logging.getLogger(__name__)

UNKNOWN_EVENT_TYPE = "unknown"


@dataclass(frozen=True)
class SenderFields:
    """Top-level fields promoted out of, or denied from, the residual payload."""

    event_type: str
    external_id: str
    denied: frozenset[str] = field(default_factory=frozenset)

    @property
    def excluded(self) -> frozenset[str]:
        return frozenset({self.event_type, self.external_id}) | self.denied


# Figma sends the webhook passcode in every body; it is a shared secret.
FIGMA_FIELDS = SenderFields(
    event_type="event_type",
    external_id="file_key",
    denied=frozenset({"passcode"}),
)

STRIPE_FIELDS = SenderFields(event_type="type", external_id="id")


def _as_id(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _as_type(value: Any) -> str:
    if value is None or value == "":
        return UNKNOWN_EVENT_TYPE
    return str(value)


def _normalize_figma(parsed: dict[str, Any]) -> tuple[str, str | None, dict[str, Any]]:
    event_type = _as_type(parsed.get(FIGMA_FIELDS.event_type))
    external_id = _as_id(parsed.get(FIGMA_FIELDS.external_id))
    residual = {k: v for k, v in parsed.items() if k not in FIGMA_FIELDS.excluded}
    return event_type, external_id, residual


def _normalize_stripe(parsed: dict[str, Any]) -> tuple[str, str | None, dict[str, Any]]:
    event_type = _as_type(parsed.get(STRIPE_FIELDS.event_type))
    data = parsed.get("data")
    data = data if isinstance(data, dict) else {}
    obj = data.get("object")

    # Event id first; a bare session object falls back to its own id.
    external_id = _as_id(parsed.get(STRIPE_FIELDS.external_id))
    if external_id is None and isinstance(obj, dict):
        external_id = _as_id(obj.get("id"))

    if isinstance(obj, dict):
        payload = dict(obj)
    else:
        payload = dict(data)
    return event_type, external_id, payload


_NORMALIZERS = {
    Sender.FIGMA: _normalize_figma,
    Sender.STRIPE: _normalize_stripe,
}


def normalize(
    sender: Sender,
    parsed: dict[str, Any],
    raw_body: bytes,
    *,
    verified: bool,
    received_at: datetime | None = None,
) -> CanonicalEvent:
    """Build a CanonicalEvent from a verified sender payload.

    Args:
        sender: Sender the request was routed to
        parsed: JSON object parsed from raw_body
        raw_body: Exact request bytes (hashed for the fallback dedupe key)
        verified: Whether the signature was checked and matched
        received_at: Ingestion time; defaults to now (UTC)

    Returns:
        CanonicalEvent; never None, unknown types included
    """
    event_type, external_id, payload = _NORMALIZERS[sender](parsed)
    if external_id is None:
        logger.info(
            "No external id in %s/%s payload — deduping on body hash", sender.value, event_type
        )
    return CanonicalEvent(
        sender=sender,
        event_type=event_type,
        external_id=external_id,
        payload=payload,
        body_digest=body_digest(raw_body),
        verified=verified,
        received_at=received_at or datetime.now(timezone.utc),
    )
