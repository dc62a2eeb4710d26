"""Webhook signature verification — one verifier per sender.

Security contract:
- Verification runs over the raw request bytes, never re-serialized JSON
- Digest comparison is constant-time (hmac.compare_digest)
- Figma with no FIGMA_SECRET -> unsigned mode: accepted, verified=False,
  warned at startup and on every request
- Stripe with no secret -> always rejected (fail-closed)
- Stripe timestamp tolerance: 300s by default, in both directions
  (stale replays and far-future timestamps are rejected)
- Secrets and signature values are never logged; only a short fingerprint
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import stripe

from webhook_ingest.webhooks.models import Sender

logger = logging.getLogger(__name__)

FIGMA_SIGNATURE_HEADER = "x-figma-signature"
STRIPE_SIGNATURE_HEADER = "stripe-signature"

DEFAULT_STRIPE_TOLERANCE = 300


@dataclass(frozen=True)
class VerificationResult:
    """Verdict for one request.

    accepted: request may proceed.
    verified: a signature was actually checked and matched.
    reason: short machine code for logs (never returned to the caller).
    """

    accepted: bool
    reason: str
    verified: bool = False


def fingerprint(value: str | None) -> str:
    """Short SHA-256 fingerprint of header material, safe to log."""
    if not value:
        return "-"
    return hashlib.sha256(value.encode("utf-8", "replace")).hexdigest()[:12]


@runtime_checkable
class SignatureVerifier(Protocol):
    """Protocol for sender-specific signature schemes."""

    @property
    def sender(self) -> Sender:
        ...

    @property
    def enabled(self) -> bool:
        """Whether a secret is configured for this sender."""
        ...

    @property
    def requires_raw_body(self) -> bool:
        """Whether the scheme signs the exact wire bytes."""
        ...

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> VerificationResult:
        """Check a request. Headers must have lowercase keys."""
        ...


class SharedSecretHmac:
    """Hex HMAC-SHA256 of the raw body under a shared secret (Figma).

    With no secret configured every request is accepted unverified.
    That mode is opt-in by omission and deliberately noisy in the logs.
    """

    requires_raw_body = True

    def __init__(
        self,
        secret: str | None,
        *,
        sender: Sender = Sender.FIGMA,
        header: str = FIGMA_SIGNATURE_HEADER,
    ) -> None:
        self._secret = secret.encode("utf-8") if secret else None
        self._sender = sender
        self._header = header
        if self._secret is None:
            logger.warning(
                "No secret configured for %s webhooks — signature verification is OFF. "
                "Anyone can post events. Set a secret before running in production.",
                sender.value,
            )

    @property
    def sender(self) -> Sender:
        return self._sender

    @property
    def enabled(self) -> bool:
        return self._secret is not None

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> VerificationResult:
        if self._secret is None:
            logger.warning(
                "Accepting unsigned %s webhook (verification disabled)", self._sender.value
            )
            return VerificationResult(accepted=True, reason="unsigned_mode", verified=False)

        signature = headers.get(self._header)
        if not signature:
            return VerificationResult(accepted=False, reason="missing_signature")

        expected = hmac.new(self._secret, raw_body, hashlib.sha256).hexdigest().encode("ascii")
        provided = signature.strip().encode("utf-8", "replace")

        # Digest length is public; a wrong-length header never reaches the comparison.
        if len(provided) != len(expected):
            logger.debug(
                "%s signature length mismatch (sig=%s)", self._sender.value, fingerprint(signature)
            )
            return VerificationResult(accepted=False, reason="signature_mismatch")

        if not hmac.compare_digest(expected, provided):
            logger.debug(
                "%s signature mismatch (sig=%s)", self._sender.value, fingerprint(signature)
            )
            return VerificationResult(accepted=False, reason="signature_mismatch")

        return VerificationResult(accepted=True, reason="ok", verified=True)


class ProviderSignedEnvelope:
    """Stripe's timestamped signature scheme, delegated to the stripe SDK.

    Stripe sends: Stripe-Signature: t=<timestamp>,v1=<signature>[,v1=...]
    The SDK checks HMAC-SHA256("{t}.{body}") against every v1 value and
    rejects timestamps older than the tolerance window. Timestamps more
    than the tolerance ahead of the local clock are rejected here.
    """

    requires_raw_body = True

    def __init__(
        self,
        secret: str | None,
        *,
        tolerance: int = DEFAULT_STRIPE_TOLERANCE,
        sender: Sender = Sender.STRIPE,
        header: str = STRIPE_SIGNATURE_HEADER,
    ) -> None:
        self._secret = secret or None
        self._tolerance = tolerance
        self._sender = sender
        self._header = header
        if self._secret is None:
            logger.warning(
                "No secret configured for %s webhooks — all %s deliveries will be rejected",
                sender.value,
                sender.value,
            )

    @property
    def sender(self) -> Sender:
        return self._sender

    @property
    def enabled(self) -> bool:
        return self._secret is not None

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> VerificationResult:
        if self._secret is None:
            return VerificationResult(accepted=False, reason="secret_not_configured")

        signature = headers.get(self._header)
        if not signature:
            return VerificationResult(accepted=False, reason="missing_signature")

        try:
            # The SDK signs text; non-UTF-8 bytes cannot carry a valid signature.
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            return VerificationResult(accepted=False, reason="signature_mismatch")

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature, self._secret, tolerance=self._tolerance
            )
        except (stripe.SignatureVerificationError, ValueError):
            logger.debug(
                "%s signature rejected (sig=%s)", self._sender.value, fingerprint(signature)
            )
            return VerificationResult(accepted=False, reason="signature_mismatch")

        if _header_timestamp(signature) > time.time() + self._tolerance:
            logger.debug(
                "%s signature timestamp in the future (sig=%s)",
                self._sender.value,
                fingerprint(signature),
            )
            return VerificationResult(accepted=False, reason="timestamp_out_of_window")

        return VerificationResult(accepted=True, reason="ok", verified=True)


def _header_timestamp(signature: str) -> int:
    """The t= value of a Stripe-Signature header the SDK has already accepted."""
    for item in signature.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            return int(value)
    raise ValueError("Stripe-Signature header has no timestamp")


def build_verifiers(settings) -> dict[Sender, SignatureVerifier]:
    """Construct one verifier per sender from startup settings."""
    return {
        Sender.FIGMA: SharedSecretHmac(settings.secret_for(Sender.FIGMA)),
        Sender.STRIPE: ProviderSignedEnvelope(
            settings.secret_for(Sender.STRIPE),
            tolerance=settings.stripe_tolerance_seconds,
        ),
    }
