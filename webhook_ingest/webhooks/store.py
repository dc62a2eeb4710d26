"""Webhook event store — at-most-once persistence of CanonicalEvents.

Uniqueness of (sender, external_id) is enforced by the store itself
(a unique constraint in Postgres, a locked dict in memory), never by
application-level check-then-insert, so concurrent duplicate deliveries
resolve correctly regardless of arrival order. First writer wins.

A duplicate is a successful no-op: senders redeliver on timeouts and
5xx, and redelivery must be safe. Any other write failure raises
StoreUnavailable and the sender is expected to retry.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol, runtime_checkable

import psycopg
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from webhook_ingest.webhooks.errors import StoreUnavailable
from webhook_ingest.webhooks.models import CanonicalEvent, PutResult

logger = logging.getLogger(__name__)

EVENTS_TABLE = "webhook_events"

_CREATE_TABLE = f"""
    CREATE TABLE IF NOT EXISTS {EVENTS_TABLE} (
        id           BIGSERIAL PRIMARY KEY,
        sender       TEXT NOT NULL,
        external_id  TEXT NOT NULL,
        event_type   TEXT NOT NULL,
        payload      JSONB NOT NULL DEFAULT '{{}}',
        body_digest  TEXT NOT NULL,
        verified     BOOLEAN NOT NULL,
        received_at  TIMESTAMPTZ NOT NULL,
        CONSTRAINT {EVENTS_TABLE}_sender_external_id_key UNIQUE (sender, external_id)
    )
"""

_INSERT_EVENT = f"""
    INSERT INTO {EVENTS_TABLE}
        (sender, external_id, event_type, payload, body_digest, verified, received_at)
    VALUES (%s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (sender, external_id) DO NOTHING
    RETURNING id
"""


def _pg_safe(value: Any) -> Any:
    """Escape NUL characters, which Postgres text and jsonb cannot hold.

    The escaped form is the literal six characters \\u0000, so the stored
    value still shows where the NUL was.
    """
    if isinstance(value, str):
        return value.replace("\x00", "\\u0000")
    if isinstance(value, dict):
        return {_pg_safe(k): _pg_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_pg_safe(v) for v in value]
    return value


@runtime_checkable
class EventStore(Protocol):
    """Protocol for idempotent event stores."""

    def open(self) -> None:
        ...

    def close(self) -> None:
        ...

    def put(self, event: CanonicalEvent) -> PutResult:
        """Insert unless (sender, dedupe_key) exists. Raises StoreUnavailable."""
        ...


class PostgresEventStore:
    """Postgres-backed store with a long-lived psycopg connection pool."""

    def __init__(self, conninfo: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self._pool = ConnectionPool(
            conninfo,
            min_size=min_size,
            max_size=max_size,
            kwargs={"autocommit": True},
            open=False,
        )

    def open(self) -> None:
        """Open the pool and create the events table.  Idempotent."""
        self._pool.open()
        self.init_tables()

    def close(self) -> None:
        self._pool.close()

    def init_tables(self) -> None:
        with self._pool.connection() as conn:
            conn.execute(_CREATE_TABLE)
        logger.info("Webhook event table initialized: %s", EVENTS_TABLE)

    def put(self, event: CanonicalEvent) -> PutResult:
        try:
            with self._pool.connection() as conn:
                row = conn.execute(
                    _INSERT_EVENT,
                    (
                        event.sender.value,
                        _pg_safe(event.dedupe_key),
                        _pg_safe(event.event_type),
                        Jsonb(_pg_safe(event.payload)),
                        event.body_digest,
                        event.verified,
                        event.received_at,
                    ),
                ).fetchone()
        except psycopg.Error as e:
            logger.exception(
                "Failed to store webhook event %s/%s", event.sender.value, event.dedupe_key
            )
            raise StoreUnavailable("event store write failed") from e

        if row is None:
            return PutResult.DUPLICATE
        return PutResult.INSERTED


class InMemoryEventStore:
    """Process-local store for development (EVENT_STORE=memory) and tests.

    Not durable: contents are lost on restart.
    """

    def __init__(self) -> None:
        self._events: dict[tuple[str, str], CanonicalEvent] = {}
        self._lock = threading.Lock()

    def open(self) -> None:
        logger.warning("Using in-memory webhook event store — events are not durable")

    def close(self) -> None:
        pass

    def put(self, event: CanonicalEvent) -> PutResult:
        key = (event.sender.value, event.dedupe_key)
        with self._lock:
            if key in self._events:
                return PutResult.DUPLICATE
            self._events[key] = event
        return PutResult.INSERTED

    def get(self, sender: str, external_id: str) -> CanonicalEvent | None:
        return self._events.get((sender, external_id))

    def count(self, sender: str | None = None) -> int:
        with self._lock:
            if sender is None:
                return len(self._events)
            return sum(1 for s, _ in self._events if s == sender)
