"""Webhook data models — sender identities and the canonical event record."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Sender(str, Enum):
    """Third-party systems allowed to push notifications.

    The value is the URL segment in POST /webhooks/{sender}.
    """
    FIGMA = "figma"    # design-tool
    STRIPE = "stripe"  # payment-processor

    @classmethod
    def from_path(cls, value: str) -> Sender | None:
        """Resolve a URL segment to a Sender. Case-sensitive."""
        try:
            return cls(value)
        except ValueError:
            return None


class PutResult(str, Enum):
    """Outcome of an idempotent store write."""
    INSERTED = "inserted"
    DUPLICATE = "duplicate"


def body_digest(raw_body: bytes) -> str:
    """SHA-256 hex digest of the raw request body."""
    return hashlib.sha256(raw_body).hexdigest()


@dataclass(frozen=True)
class CanonicalEvent:
    """Normalized webhook event, independent of sender payload shape.

    Never mutated after the normalizer builds it.
    """

    sender: Sender
    event_type: str
    external_id: str | None
    payload: dict[str, Any]
    body_digest: str
    verified: bool
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def dedupe_key(self) -> str:
        """Idempotency key within the sender's stream.

        Falls back to the body hash when the sender gave no id, so two
        byte-different but semantically equal bodies are distinct events.
        """
        if self.external_id:
            return self.external_id
        return f"sha256:{self.body_digest}"
