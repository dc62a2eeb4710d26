"""Webhook event dispatcher — routes stored events to side-effect handlers.

Maps (sender, event_type) to registered handlers and runs them inline
after a successful, non-duplicate store write.

Contract:
- Handler failures are logged (HandlerFailure) and reported, never raised;
  the stored event stands and nothing is retried here
- Handlers run in isolation: one failing handler does not block the others
- With a HandlerGuard, a handler that already ran for an event is skipped
  on replay; handlers must be idempotent regardless
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from webhook_ingest.accounts import AccountService, GrantResult
from webhook_ingest.webhooks.errors import HandlerFailure
from webhook_ingest.webhooks.idempotency import HandlerGuard
from webhook_ingest.webhooks.models import CanonicalEvent, Sender

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
NO_CUSTOMER_REF = "no_customer_ref"


class HandlerStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class HandlerOutcome:
    """Result of running one handler for one event."""
    handler: str
    status: HandlerStatus
    detail: str = ""


# A handler returns a short detail string (or None) and raises on failure.
EventHandler = Callable[[CanonicalEvent], "str | None"]


def _redact(ref: str) -> str:
    """Redact emails for logs — show only the domain."""
    if "@" in ref:
        return "***@" + ref.split("@", 1)[1]
    return ref


def _customer_ref(payload: dict[str, Any]) -> str | None:
    """Pick the customer reference from a checkout session object."""
    for key in ("client_reference_id", "customer"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    details = payload.get("customer_details")
    if isinstance(details, dict):
        email = details.get("email")
        if isinstance(email, str) and email:
            return email
    return None


class GrantSubscriptionHandler:
    """On checkout completion, ask the account subsystem to grant a subscription."""

    name = "grant_subscription"

    def __init__(self, accounts: AccountService) -> None:
        self._accounts = accounts

    def __call__(self, event: CanonicalEvent) -> str | None:
        ref = _customer_ref(event.payload)
        if ref is None:
            logger.warning(
                "Checkout %s has no customer reference — nothing to grant", event.dedupe_key
            )
            return NO_CUSTOMER_REF

        result = self._accounts.grant_subscription(ref)
        if result is GrantResult.NOT_FOUND:
            logger.warning(
                "Account not found for checkout %s (customer %s)", event.dedupe_key, _redact(ref)
            )
        else:
            logger.info(
                "Subscription granted for checkout %s (customer %s)", event.dedupe_key, _redact(ref)
            )
        return result.value


class Dispatcher:
    """Registry of handlers keyed by (sender, event_type)."""

    def __init__(self, guard: HandlerGuard | None = None) -> None:
        self._handlers: dict[tuple[Sender, str], list[tuple[str, EventHandler]]] = {}
        self._guard = guard

    def register(
        self,
        sender: Sender,
        event_type: str,
        handler: EventHandler,
        name: str | None = None,
    ) -> None:
        """Register a handler for one sender event type."""
        handler_name = name or getattr(handler, "name", None) or getattr(handler, "__name__", "handler")
        self._handlers.setdefault((sender, event_type), []).append((handler_name, handler))
        logger.info("Webhook handler registered: %s/%s -> %s", sender.value, event_type, handler_name)

    def handlers_for(self, sender: Sender, event_type: str) -> list[str]:
        return [name for name, _ in self._handlers.get((sender, event_type), [])]

    def dispatch(self, event: CanonicalEvent) -> list[HandlerOutcome]:
        """Run every handler registered for the event. Never raises."""
        outcomes: list[HandlerOutcome] = []
        for name, handler in self._handlers.get((event.sender, event.event_type), []):
            sender = event.sender.value
            if self._guard and not self._guard.claim(sender, event.dedupe_key, name):
                outcomes.append(HandlerOutcome(name, HandlerStatus.SKIPPED, "already_handled"))
                continue
            try:
                detail = handler(event) or ""
            except Exception as e:
                failure = HandlerFailure(name, e)
                logger.exception(
                    "Webhook handler failed: %s for %s/%s (%s)",
                    name,
                    sender,
                    event.dedupe_key,
                    failure,
                )
                if self._guard:
                    self._guard.release(sender, event.dedupe_key, name)
                outcomes.append(HandlerOutcome(name, HandlerStatus.FAILED, type(e).__name__))
                continue
            status = HandlerStatus.SKIPPED if detail == NO_CUSTOMER_REF else HandlerStatus.OK
            outcomes.append(HandlerOutcome(name, status, detail))
        return outcomes


def build_dispatcher(
    accounts: AccountService | None = None,
    guard: HandlerGuard | None = None,
) -> Dispatcher:
    """Create the dispatcher with the handlers available in this process."""
    dispatcher = Dispatcher(guard=guard)
    if accounts is not None:
        dispatcher.register(Sender.STRIPE, CHECKOUT_COMPLETED, GrantSubscriptionHandler(accounts))
    else:
        logger.warning("ACCOUNTS_URL not set — checkout events will be stored but not granted")
    return dispatcher
