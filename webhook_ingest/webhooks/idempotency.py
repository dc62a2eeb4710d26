"""Handler-boundary idempotency — Redis claims for side-effect handlers.

Storage dedupe and handler dedupe are separate concerns: the event store
guarantees one record per (sender, external id), while this guard keeps a
replayed event from re-running a side effect that already succeeded.

Security contract:
- Claims use SET NX EX (atomic claim, 7d TTL)
- Key pattern: webhook:handled:{sender}:{dedupe_key}:{handler}
- A failed handler releases its claim so a later replay can retry
- If Redis is down, fail open (handler runs; handlers must be idempotent)
"""

from __future__ import annotations

import logging

import redis

logger = logging.getLogger(__name__)

_CLAIM_TTL_SECONDS = 7 * 86400

_KEY_PREFIX = "webhook:handled"


def claim_key(sender: str, dedupe_key: str, handler: str) -> str:
    return f"{_KEY_PREFIX}:{sender}:{dedupe_key}:{handler}"


class HandlerGuard:
    """Redis-backed at-most-once claims for dispatched handlers."""

    def __init__(self, client: redis.Redis, ttl: int = _CLAIM_TTL_SECONDS):
        self._redis = client
        self._ttl = ttl

    @classmethod
    def from_url(cls, redis_url: str) -> HandlerGuard:
        return cls(redis.from_url(redis_url, decode_responses=True))

    def claim(self, sender: str, dedupe_key: str, handler: str) -> bool:
        """Claim a handler run for this event.

        Returns:
            True if the handler should run (new claim, or Redis unavailable)
        """
        key = claim_key(sender, dedupe_key, handler)
        try:
            # SET NX returns True if the key was set (new), None if it existed
            was_set = self._redis.set(key, "1", nx=True, ex=self._ttl)
        except redis.RedisError:
            logger.warning(
                "Redis unavailable for handler dedupe — running %s for %s/%s",
                handler,
                sender,
                dedupe_key,
                exc_info=True,
            )
            return True
        if not was_set:
            logger.info("Handler %s already ran for %s/%s — skipping", handler, sender, dedupe_key)
            return False
        return True

    def release(self, sender: str, dedupe_key: str, handler: str) -> None:
        """Drop a claim after a handler failure."""
        try:
            self._redis.delete(claim_key(sender, dedupe_key, handler))
        except redis.RedisError:
            logger.warning(
                "Failed to release handler claim: %s/%s/%s", sender, dedupe_key, handler
            )
