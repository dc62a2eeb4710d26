"""Webhook ingest backend — signed inbound notifications, stored exactly once."""

__version__ = "0.3.0"
