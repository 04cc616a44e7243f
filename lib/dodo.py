import logging
from os import environ
from typing import Any

import httpx

from lib.utils import dig

logger = logging.getLogger(__name__)

# test.dodopayments.com for test mode, live.dodopayments.com for production.
DEFAULT_API_BASE = "https://test.dodopayments.com"

PAID_STATUSES = frozenset({"succeeded", "completed", "paid"})


class DodoError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class Dodo:
    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else environ.get("DODO_API_KEY", "")
        self.api_base = api_base or environ.get("DODO_API_BASE", DEFAULT_API_BASE)
        self.timeout = timeout
        self.transport = transport

    # Returns true if an API key is configured. Payment verification is unavailable otherwise.
    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_base,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=self.transport,
        )

    async def list_payments(self, limit: int = 10) -> list[dict[str, Any]]:
        async with self._client() as client:
            response = await client.get("/payments", params={"limit": limit})

        if response.status_code != 200:
            logger.error(
                "Failed to fetch payments from Dodo",
                extra={"status_code": response.status_code, "body": response.text[:500]},
            )
            raise DodoError("Failed to fetch payments from Dodo", response.status_code)

        data = response.json()
        # The list endpoint has returned both a bare list and an `items` envelope.
        if isinstance(data, dict):
            data = data.get("items") or []
        if not isinstance(data, list):
            raise DodoError("Unexpected payments response from Dodo", response.status_code)
        return [p for p in data if isinstance(p, dict)]

    # Returns the most recent successful payment made with the given email, if any.
    async def find_paid_payment(self, email: str, limit: int = 10) -> dict[str, Any] | None:
        wanted = email.strip().lower()
        if not wanted:
            return None
        for payment in await self.list_payments(limit=limit):
            emails = {str(dig(payment, path) or "").lower() for path in ("customer.email", "metadata.email")}
            if wanted in emails and str(payment.get("status", "")).lower() in PAID_STATUSES:
                return payment
        return None
