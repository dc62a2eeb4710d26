"""Raw body capture — byte-exact request bodies for signature checks.

Re-serializing parsed JSON does not reproduce the wire bytes (key order,
whitespace, number formatting), so any sender that signs the raw body must
have its bytes captured before JSON parsing. Each sender route declares a
BodyMode up front; assert_body_modes() refuses to start the app if a
raw-body verifier is wired to a parsed route.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from fastapi import Request

from webhook_ingest.webhooks.errors import ConfigurationError, MalformedPayload
from webhook_ingest.webhooks.models import Sender


class BodyMode(str, Enum):
    """How a route hands its body to the pipeline."""
    RAW = "raw"        # wire bytes first, JSON parsed from those bytes
    PARSED = "parsed"  # JSON only; raw is a canonical re-serialization


# Resolved before any route is registered.
SENDER_BODY_MODES: dict[Sender, BodyMode] = {
    Sender.FIGMA: BodyMode.RAW,
    Sender.STRIPE: BodyMode.RAW,
}


@dataclass(frozen=True)
class CapturedBody:
    """Raw bytes plus the parsed JSON object view of the same body."""

    raw: bytes
    parsed: dict[str, Any]


def _reject_constant(name: str) -> Any:
    # NaN and Infinity are not JSON (RFC 8259) and jsonb refuses them.
    raise ValueError(f"non-standard JSON constant {name}")


def parse_json_object(raw: bytes) -> dict[str, Any]:
    """Parse raw bytes as a strict JSON object. Raises MalformedPayload."""
    try:
        parsed = json.loads(raw.decode("utf-8"), parse_constant=_reject_constant)
    except ValueError as e:
        raise MalformedPayload("body is not valid UTF-8 JSON") from e
    if not isinstance(parsed, dict):
        raise MalformedPayload("body is not a JSON object")
    return parsed


def _canonical_bytes(parsed: dict[str, Any]) -> bytes:
    return json.dumps(parsed, sort_keys=True, separators=(",", ":")).encode("utf-8")


async def capture_body(request: Request, mode: BodyMode) -> CapturedBody:
    """Read the request body according to the route's BodyMode."""
    if mode is BodyMode.RAW:
        raw = await request.body()
        return CapturedBody(raw=raw, parsed=parse_json_object(raw))

    parsed = parse_json_object(await request.body())
    return CapturedBody(raw=_canonical_bytes(parsed), parsed=parsed)


def assert_body_modes(
    verifiers: Mapping[Sender, Any],
    modes: Mapping[Sender, BodyMode] = SENDER_BODY_MODES,
) -> None:
    """Fail startup if any sender's wiring contradicts its verifier.

    Every sender with a verifier needs a declared mode, and a verifier
    with requires_raw_body must be on a RAW route.
    """
    for sender, verifier in verifiers.items():
        mode = modes.get(sender)
        if mode is None:
            raise ConfigurationError(f"No body mode declared for sender {sender.value}")
        if getattr(verifier, "requires_raw_body", False) and mode is not BodyMode.RAW:
            raise ConfigurationError(
                f"Sender {sender.value} verifies over raw bytes but its route is {mode.value}"
            )
