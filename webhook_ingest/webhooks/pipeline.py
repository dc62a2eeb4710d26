"""Webhook ingest pipeline — verify, normalize, store, dispatch.

Runs after the body has been captured. Synchronous and free of shared
mutable state; the HTTP layer calls it from a worker thread.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from webhook_ingest.accounts import AccountService
from webhook_ingest.webhooks.capture import CapturedBody
from webhook_ingest.webhooks.dispatcher import Dispatcher, HandlerOutcome
from webhook_ingest.webhooks.errors import SignatureRejected
from webhook_ingest.webhooks.models import CanonicalEvent, PutResult, Sender
from webhook_ingest.webhooks.normalizer import normalize
from webhook_ingest.webhooks.store import EventStore
from webhook_ingest.webhooks.verification import SignatureVerifier

logger = logging.getLogger(__name__)


@dataclass
class WebhookServices:
    """Process-wide collaborators, built once at startup and shared by reference."""

    store: EventStore
    verifiers: dict[Sender, SignatureVerifier]
    dispatcher: Dispatcher
    accounts: AccountService | None = None


@dataclass
class IngestOutcome:
    event: CanonicalEvent
    result: PutResult
    handlers: list[HandlerOutcome] = field(default_factory=list)


def ingest(
    services: WebhookServices,
    sender: Sender,
    body: CapturedBody,
    headers: Mapping[str, str],
) -> IngestOutcome:
    """Run one captured webhook through the pipeline.

    Raises:
        SignatureRejected: verification failed; nothing is stored
        StoreUnavailable: the write failed; the sender should redeliver
    """
    verdict = services.verifiers[sender].verify(body.raw, headers)
    if not verdict.accepted:
        raise SignatureRejected(verdict.reason)

    event = normalize(sender, body.parsed, body.raw, verified=verdict.verified)
    result = services.store.put(event)

    if result is PutResult.DUPLICATE:
        logger.info("Duplicate webhook ignored: %s/%s", sender.value, event.dedupe_key)
        return IngestOutcome(event=event, result=result)

    # Dispatch never raises; failures are logged and the stored event stands.
    return IngestOutcome(event=event, result=result, handlers=services.dispatcher.dispatch(event))
