"""Account subsystem client — the only collaborator webhook handlers call.

The account service owns subscription state. grant_subscription must be
idempotent on its side: a grant for an already-subscribed customer is ok.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol, runtime_checkable
from urllib.parse import quote

import httpx


class GrantResult(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"


@runtime_checkable
class AccountService(Protocol):
    """Protocol for the account subsystem."""

    def grant_subscription(self, customer_ref: str) -> GrantResult:
        """Mark a customer as subscribed. Idempotent."""
        ...


class HttpAccountClient:
    """AccountService over HTTP.

    PUT {base_url}/customers/{ref}/subscription
    2xx -> ok, 404 -> not_found, anything else raises httpx.HTTPStatusError.
    """

    def __init__(self, base_url: str, *, timeout: float = 5.0, client: httpx.Client | None = None):
        self._client = client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def grant_subscription(self, customer_ref: str) -> GrantResult:
        path = f"/customers/{quote(customer_ref, safe='')}/subscription"
        resp = self._client.put(path, json={"status": "active"})
        if resp.status_code == 404:
            return GrantResult.NOT_FOUND
        resp.raise_for_status()
        return GrantResult.OK

    def close(self) -> None:
        self._client.close()
