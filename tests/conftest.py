"""Shared fixtures for the webhook ingest test suite."""

from __future__ import annotations

import hashlib
import hmac
import time

import pytest

from webhook_ingest.accounts import GrantResult
from webhook_ingest.webhooks.dispatcher import build_dispatcher
from webhook_ingest.webhooks.models import Sender
from webhook_ingest.webhooks.pipeline import WebhookServices
from webhook_ingest.webhooks.store import InMemoryEventStore
from webhook_ingest.webhooks.verification import ProviderSignedEnvelope, SharedSecretHmac

_FIGMA_SECRET = "figma-test-secret"
_STRIPE_SECRET = "whsec_stripe_test_secret"


class RecordingAccounts:
    """AccountService that records grant calls."""

    def __init__(self, result: GrantResult = GrantResult.OK, fail: bool = False):
        self.result = result
        self.fail = fail
        self.grants: list[str] = []

    def grant_subscription(self, customer_ref: str) -> GrantResult:
        self.grants.append(customer_ref)
        if self.fail:
            raise RuntimeError("account service down")
        return self.result


@pytest.fixture
def figma_secret() -> str:
    return _FIGMA_SECRET


@pytest.fixture
def stripe_secret() -> str:
    return _STRIPE_SECRET


@pytest.fixture
def sign_figma():
    """Compute a valid X-Figma-Signature value."""

    def _sign(body: bytes, secret: str = _FIGMA_SECRET) -> str:
        return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

    return _sign


@pytest.fixture
def sign_stripe():
    """Compute a valid Stripe-Signature header."""

    def _sign(body: bytes, timestamp: int | None = None, secret: str = _STRIPE_SECRET) -> str:
        ts = timestamp or int(time.time())
        sig = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
        return f"t={ts},v1={sig}"

    return _sign


@pytest.fixture
def accounts() -> RecordingAccounts:
    return RecordingAccounts()


@pytest.fixture
def store() -> InMemoryEventStore:
    return InMemoryEventStore()


@pytest.fixture
def make_services(store, accounts):
    """Factory for WebhookServices; pass None to leave a sender's secret unset."""

    def _make(figma_secret: str | None = _FIGMA_SECRET, stripe_secret: str | None = _STRIPE_SECRET):
        return WebhookServices(
            store=store,
            verifiers={
                Sender.FIGMA: SharedSecretHmac(figma_secret),
                Sender.STRIPE: ProviderSignedEnvelope(stripe_secret),
            },
            dispatcher=build_dispatcher(accounts),
        )

    return _make
