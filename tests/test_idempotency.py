"""Tests for handler-boundary dedupe (Redis claims)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import redis

from webhook_ingest.webhooks.idempotency import HandlerGuard, claim_key


def test_claim_key_pattern():
    assert claim_key("stripe", "evt_1", "grant_subscription") == (
        "webhook:handled:stripe:evt_1:grant_subscription"
    )


class TestHandlerGuard:
    def test_new_claim_runs(self):
        mock_r = MagicMock()
        mock_r.set.return_value = True  # SET NX succeeded (new key)
        guard = HandlerGuard(mock_r)

        assert guard.claim("stripe", "evt_1", "grant_subscription") is True
        mock_r.set.assert_called_once()
        call_kwargs = mock_r.set.call_args
        assert call_kwargs[1]["nx"] is True
        assert call_kwargs[1]["ex"] == 7 * 86400

    def test_existing_claim_skips(self):
        mock_r = MagicMock()
        mock_r.set.return_value = None  # SET NX failed (key exists)
        assert HandlerGuard(mock_r).claim("stripe", "evt_1", "grant_subscription") is False

    def test_redis_down_fails_open(self):
        """Redis failure -> handler runs anyway."""
        mock_r = MagicMock()
        mock_r.set.side_effect = redis.ConnectionError("Connection refused")
        assert HandlerGuard(mock_r).claim("stripe", "evt_1", "grant_subscription") is True

    def test_release_deletes_claim(self):
        mock_r = MagicMock()
        HandlerGuard(mock_r).release("stripe", "evt_1", "grant_subscription")
        mock_r.delete.assert_called_once_with("webhook:handled:stripe:evt_1:grant_subscription")

    def test_release_tolerates_redis_down(self):
        mock_r = MagicMock()
        mock_r.delete.side_effect = redis.ConnectionError("Connection refused")
        HandlerGuard(mock_r).release("stripe", "evt_1", "grant_subscription")

    @patch("webhook_ingest.webhooks.idempotency.redis.from_url")
    def test_from_url(self, mock_from_url):
        HandlerGuard.from_url("redis://localhost:6381/0")
        mock_from_url.assert_called_once_with("redis://localhost:6381/0", decode_responses=True)
