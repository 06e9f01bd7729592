"""
HTTP payment gateway adapter.

The gateway's wire contract is owned by the provider; this adapter only
needs two calls: create a payment for an amount and look up its status.
Provider status strings are normalised onto ``PaymentStatus``.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from src.domain.enums import PaymentStatus

logger = logging.getLogger(__name__)

_STATUS_MAP = {
    "paid": PaymentStatus.COMPLETED,
    "success": PaymentStatus.COMPLETED,
    "succeeded": PaymentStatus.COMPLETED,
    "completed": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "expired": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
}


class PaymentGatewayError(RuntimeError):
    """The provider could not be reached or rejected the call."""


class HttpPaymentGateway:
    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        currency: str = "QAR",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.currency = currency
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def initiate(self, booking_id: str, amount: float, payer_ref: str) -> str:
        data = await self._post(
            "/payments",
            {
                "amount": amount,
                "currency": self.currency,
                "customer_reference": booking_id,
                "payer_reference": payer_ref,
            },
        )
        payment_id = data.get("payment_id")
        if not payment_id:
            raise PaymentGatewayError("Gateway response did not include a payment_id")
        return str(payment_id)

    async def get_status(self, payment_ref: str) -> PaymentStatus:
        try:
            response = await self._client.get(f"/payments/{payment_ref}")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"Payment status check failed: {exc}") from exc
        status = str(response.json().get("status", "")).lower()
        return _STATUS_MAP.get(status, PaymentStatus.PENDING)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, body: dict) -> dict:
        try:
            response = await self._client.post(path, json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise PaymentGatewayError(f"Payment initiation failed: {exc}") from exc
        return response.json()
