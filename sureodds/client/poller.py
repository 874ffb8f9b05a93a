"""
Client helper that waits on GET /mpesa/status after an STK push.

Silence from Safaricom is not a failure, so running out of time raises
PaymentTimeoutError rather than PaymentFailedError. The caller decides
whether to offer a retry.
"""

import asyncio
import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class PaymentPollError(Exception):
    pass


class PaymentFailedError(PaymentPollError):
    def __init__(self, result_desc: str | None):
        super().__init__(result_desc or "Payment failed")
        self.result_desc = result_desc


class PaymentTimeoutError(PaymentPollError):
    def __init__(self, checkout_request_id: str, waited: float):
        super().__init__(f"No payment confirmation for {checkout_request_id} after {waited:.0f}s")
        self.checkout_request_id = checkout_request_id
        self.waited = waited


class PaymentStatusPoller:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        interval: float = 3.0,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.interval = interval
        self.timeout = timeout
        self._transport = transport

    async def fetch_status(self, client: httpx.AsyncClient, checkout_request_id: str) -> dict[str, Any]:
        r = await client.get(
            "/mpesa/status",
            params={"checkout_request_id": checkout_request_id},
            headers={"Authorization": f"Bearer {self.token}"},
        )
        r.raise_for_status()
        return r.json()

    async def wait_for(self, checkout_request_id: str) -> dict[str, Any]:
        started = time.monotonic()
        deadline = started + self.timeout

        async with httpx.AsyncClient(base_url=self.base_url, timeout=20, transport=self._transport) as client:
            while True:
                try:
                    data = await self.fetch_status(client, checkout_request_id)
                except httpx.HTTPStatusError as exc:
                    if exc.response.status_code < 500:
                        # unknown id or expired session: waiting longer will not help
                        raise PaymentPollError(f"Status check rejected with {exc.response.status_code}") from exc
                    logger.warning("poller.request_failed", extra={"checkout_request_id": checkout_request_id, "error": str(exc)})
                    data = {}
                except httpx.HTTPError as exc:
                    # keep polling; a blip on our side is not the payment's outcome
                    logger.warning("poller.request_failed", extra={"checkout_request_id": checkout_request_id, "error": str(exc)})
                    data = {}

                status = data.get("status")
                if status == "SUCCESS":
                    return data
                if status == "FAILED":
                    raise PaymentFailedError(data.get("result_desc"))

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PaymentTimeoutError(checkout_request_id, time.monotonic() - started)
                await asyncio.sleep(min(self.interval, remaining))
