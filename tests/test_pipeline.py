"""Tests for the verify -> normalize -> store -> dispatch pipeline."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from webhook_ingest.webhooks.capture import CapturedBody
from webhook_ingest.webhooks.errors import SignatureRejected, StoreUnavailable
from webhook_ingest.webhooks.models import PutResult, Sender
from webhook_ingest.webhooks.pipeline import ingest


def _captured(doc: dict) -> CapturedBody:
    raw = json.dumps(doc).encode()
    return CapturedBody(raw=raw, parsed=doc)


CHECKOUT = {
    "id": "evt_1",
    "type": "checkout.session.completed",
    "data": {"object": {"id": "cs_1", "client_reference_id": "acct_42"}},
}


def test_inserted_event_is_dispatched(make_services, accounts, sign_stripe):
    services = make_services()
    body = _captured(CHECKOUT)
    outcome = ingest(services, Sender.STRIPE, body, {"stripe-signature": sign_stripe(body.raw)})
    assert outcome.result is PutResult.INSERTED
    assert [h.handler for h in outcome.handlers] == ["grant_subscription"]
    assert accounts.grants == ["acct_42"]


def test_duplicate_is_not_dispatched(make_services, accounts, sign_stripe):
    services = make_services()
    body = _captured(CHECKOUT)
    headers = {"stripe-signature": sign_stripe(body.raw)}
    ingest(services, Sender.STRIPE, body, headers)
    outcome = ingest(services, Sender.STRIPE, body, headers)
    assert outcome.result is PutResult.DUPLICATE
    assert outcome.handlers == []
    assert accounts.grants == ["acct_42"]


def test_rejection_leaves_no_state(make_services, store, accounts):
    services = make_services()
    with pytest.raises(SignatureRejected) as exc_info:
        ingest(services, Sender.STRIPE, _captured(CHECKOUT), {"stripe-signature": "t=1,v1=bad"})
    assert exc_info.value.reason == "signature_mismatch"
    assert store.count() == 0
    assert accounts.grants == []


def test_store_failure_skips_dispatch(make_services, accounts, sign_stripe):
    services = make_services()
    services.store = MagicMock()
    services.store.put.side_effect = StoreUnavailable("down")
    body = _captured(CHECKOUT)
    with pytest.raises(StoreUnavailable):
        ingest(services, Sender.STRIPE, body, {"stripe-signature": sign_stripe(body.raw)})
    assert accounts.grants == []


def test_unsigned_mode_marks_event_unverified(make_services, store):
    services = make_services(figma_secret=None)
    ingest(services, Sender.FIGMA, _captured({"event_type": "file_update", "file_key": "k"}), {})
    assert store.get("figma", "k").verified is False
