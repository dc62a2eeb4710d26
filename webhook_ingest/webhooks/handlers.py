"""Webhook HTTP handlers — FastAPI route handlers for inbound webhooks.

Each handler:
1. Captures the raw body (route BodyMode decides how)
2. Rejects bodies that are not JSON objects (400)
3. Verifies the sender-specific signature (401)
4. Normalizes and stores the event at most once (500 if the store fails)
5. Dispatches newly stored events to handlers
6. Returns 200 {"accepted": true}, duplicates included

Security contract:
- Never return error details to the webhook caller (info disclosure)
- Never log secrets or signature values
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from webhook_ingest.webhooks.capture import SENDER_BODY_MODES, assert_body_modes, capture_body
from webhook_ingest.webhooks.errors import SignatureRejected, WebhookError
from webhook_ingest.webhooks.models import Sender
from webhook_ingest.webhooks.pipeline import WebhookServices, ingest

logger = logging.getLogger(__name__)


def _log_webhook(sender: str, event_type: str, webhook_id: str, status: str) -> None:
    """Audit log for webhook activity."""
    logger.info(
        "WEBHOOK_AUDIT sender=%s event=%s id=%s status=%s",
        sender,
        event_type,
        webhook_id,
        status,
    )


def _error_response(error: WebhookError) -> JSONResponse:
    return JSONResponse(
        {"accepted": False, "error": error.public_code},
        status_code=error.status_code,
    )


async def _handle_webhook(request: Request, services: WebhookServices, sender: Sender) -> JSONResponse:
    """Generic webhook handler for any sender."""
    start = time.time()

    # Lowercase headers dict
    headers = {k.lower(): v for k, v in request.headers.items()}

    try:
        body = await capture_body(request, SENDER_BODY_MODES[sender])
        outcome = await run_in_threadpool(ingest, services, sender, body, headers)
    except SignatureRejected as e:
        _log_webhook(sender.value, "unknown", "unknown", f"signature_failed:{e.reason}")
        return _error_response(e)
    except WebhookError as e:
        _log_webhook(sender.value, "unknown", "unknown", e.public_code)
        return _error_response(e)

    event = outcome.event
    _log_webhook(sender.value, event.event_type, event.dedupe_key, outcome.result.value)
    for handled in outcome.handlers:
        _log_webhook(
            sender.value,
            event.event_type,
            event.dedupe_key,
            f"handler:{handled.handler}:{handled.status.value}",
        )

    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Webhook processed in %.1fms: %s/%s", elapsed_ms, sender.value, event.event_type)

    return JSONResponse({"accepted": True}, status_code=200)


def register_webhook_routes(app: FastAPI, services: WebhookServices) -> None:
    """Register webhook endpoint routes on the FastAPI app.

    Body modes are checked against the verifiers first; a raw-body
    verifier wired to a parsed route stops startup here.
    """
    assert_body_modes(services.verifiers, SENDER_BODY_MODES)

    @app.post("/webhooks/{sender}")
    async def receive_webhook(sender: str, request: Request):
        """Receive a sender's webhook (signature-verified)."""
        resolved = Sender.from_path(sender)
        if resolved is None or resolved not in services.verifiers:
            return JSONResponse({"accepted": False, "error": "unknown_sender"}, status_code=404)
        return await _handle_webhook(request, services, resolved)

    @app.post("/figma-webhook")
    async def figma_webhook_legacy(request: Request):
        """Legacy Figma callback URL."""
        return await _handle_webhook(request, services, Sender.FIGMA)

    logger.info(
        "Webhook routes registered: /webhooks/{%s}",
        ",".join(
            f"{v.sender.value}({'signed' if v.enabled else 'no secret'})"
            for v in services.verifiers.values()
        ),
    )
