"""ClickPesa gateway adapter over httpx.

Authenticates with the client-credentials flow and caches the bearer token
until five minutes before it expires. Every request carries the configured
timeout; a timeout surfaces as GatewayTimeoutError so callers can leave
payments and payouts in a retryable state.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any

import httpx

from marketplace_ledger.exceptions import GatewayError, GatewayTimeoutError
from marketplace_ledger.providers.base import (
    DisbursementResult,
    GatewayPaymentResult,
    GatewayStatusResult,
)

logger = logging.getLogger(__name__)

TOKEN_REFRESH_MARGIN_SECONDS = 300
DEFAULT_TOKEN_TTL_SECONDS = 3600


class ClickPesaGateway:
    """PaymentGateway implementation for the ClickPesa REST API."""

    gateway_name = "clickpesa"

    def __init__(
        self,
        base_url: str,
        client_id: str,
        api_key: str,
        timeout_seconds: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client_id = client_id
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )
        self._access_token: str | None = None
        self._token_expires_at = 0.0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_access_token(self) -> str:
        if self._access_token and time.monotonic() < (
            self._token_expires_at - TOKEN_REFRESH_MARGIN_SECONDS
        ):
            return self._access_token

        try:
            response = await self._client.post(
                "/oauth/token",
                json={
                    "client_id": self._client_id,
                    "client_secret": self._api_key,
                    "grant_type": "client_credentials",
                },
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError("Timed out authenticating with ClickPesa") from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Failed to authenticate with ClickPesa: {e}") from e

        if response.status_code >= 400:
            raise GatewayError(
                f"Failed to authenticate with ClickPesa: HTTP {response.status_code}"
            )

        data = response.json()
        self._access_token = data.get("access_token") or ""
        expires_in = data.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS
        self._token_expires_at = time.monotonic() + float(expires_in)
        return self._access_token

    async def _request(
        self,
        method: str,
        path: str,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        token = await self._get_access_token()
        try:
            return await self._client.request(
                method,
                path,
                json=json_body,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"ClickPesa {method} {path} timed out") from e

    @staticmethod
    def _error_message(response: httpx.Response, default: str) -> str:
        try:
            data = response.json()
        except ValueError:
            return f"{default} (HTTP {response.status_code})"
        return data.get("message") or data.get("error") or default

    async def create_payment(
        self,
        *,
        amount: Decimal,
        currency: str,
        order_id: str,
        customer_phone: str,
        customer_email: str | None = None,
        customer_name: str | None = None,
        description: str | None = None,
        callback_url: str | None = None,
    ) -> GatewayPaymentResult:
        """Create a checkout session."""
        body = {
            "amount": format(amount, "f"),
            "currency": currency,
            "order_id": order_id,
            "customer_phone": customer_phone,
            "customer_email": customer_email,
            "customer_name": customer_name,
            "description": description or f"Payment for order {order_id}",
            "callback_url": callback_url,
        }
        try:
            response = await self._request("POST", "/api/v1/payments", body)
        except httpx.HTTPError as e:
            logger.warning("ClickPesa payment creation failed for %s: %s", order_id, e)
            return GatewayPaymentResult(success=False, error=str(e) or "Failed to create payment")

        if response.status_code >= 400:
            error = self._error_message(response, "Payment creation failed")
            logger.info("ClickPesa rejected payment for %s: %s", order_id, error)
            return GatewayPaymentResult(success=False, error=error)

        data = response.json()
        return GatewayPaymentResult(
            success=True,
            payment_id=data.get("payment_id") or data.get("id"),
            transaction_id=data.get("transaction_id"),
            checkout_url=data.get("checkout_url") or data.get("url"),
        )

    async def check_payment_status(self, payment_id: str) -> GatewayStatusResult:
        """Poll a payment."""
        return await self._check_status(f"/api/v1/payments/{payment_id}")

    async def create_disbursement(
        self,
        *,
        amount: Decimal,
        currency: str,
        recipient_phone: str,
        recipient_name: str | None = None,
        description: str | None = None,
        callback_url: str | None = None,
        reference: str | None = None,
    ) -> DisbursementResult:
        """Send a mobile money disbursement."""
        body = {
            "amount": format(amount, "f"),
            "currency": currency,
            "recipient_phone": recipient_phone,
            "recipient_name": recipient_name,
            "description": description or "Disbursement",
            "callback_url": callback_url,
            "reference": reference,
        }
        try:
            response = await self._request("POST", "/api/v1/disbursements", body)
        except httpx.HTTPError as e:
            logger.warning("ClickPesa disbursement failed for %s: %s", reference, e)
            return DisbursementResult(success=False, error=str(e) or "Failed to create disbursement")

        if response.status_code >= 400:
            error = self._error_message(response, "Disbursement creation failed")
            logger.info("ClickPesa rejected disbursement %s: %s", reference, error)
            return DisbursementResult(success=False, error=error)

        data = response.json()
        return DisbursementResult(
            success=True,
            disbursement_id=data.get("disbursement_id") or data.get("id"),
            transaction_id=data.get("transaction_id"),
        )

    async def check_disbursement_status(self, disbursement_id: str) -> GatewayStatusResult:
        """Poll a disbursement by id or by the reference it was sent with."""
        return await self._check_status(
            f"/api/v1/disbursements/{disbursement_id}", missing_status="not_found"
        )

    async def _check_status(
        self, path: str, missing_status: str | None = None
    ) -> GatewayStatusResult:
        try:
            response = await self._request("GET", path)
        except httpx.HTTPError as e:
            return GatewayStatusResult(success=False, error=str(e) or "Failed to check status")

        if response.status_code == 404 and missing_status is not None:
            return GatewayStatusResult(success=True, status=missing_status)

        if response.status_code >= 400:
            return GatewayStatusResult(
                success=False,
                error=self._error_message(response, "Failed to check status"),
            )

        data = response.json()
        return GatewayStatusResult(
            success=True,
            status=data.get("status"),
            transaction_id=data.get("transaction_id"),
            message=data.get("message") or "",
        )
