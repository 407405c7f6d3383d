"""Tests for payment gateway adapters and webhook signatures.

Tests verify:
1. Stub gateway payment and disbursement tracking
2. Disbursement idempotency by reference
3. ClickPesa token caching, error mapping and timeouts
4. HMAC-SHA256 webhook signature verification
"""

import json
from decimal import Decimal

import httpx
import pytest

from marketplace_ledger.exceptions import GatewayTimeoutError
from marketplace_ledger.providers import (
    ClickPesaGateway,
    StubGateway,
    compute_signature,
    verify_webhook_signature,
)


class TestStubGateway:
    """Test stub gateway."""

    async def test_create_payment(self):
        gateway = StubGateway()
        result = await gateway.create_payment(
            amount=Decimal("10.55"),
            currency="USD",
            order_id="o1",
            customer_phone="+255700000000",
        )

        assert result.success is True
        assert result.payment_id.startswith("STUBPAY-")
        assert result.checkout_url.endswith(result.payment_id)

        status = await gateway.check_payment_status(result.payment_id)
        assert status.success is True
        assert status.status == "pending"

    async def test_simulated_status_and_webhook_payload(self):
        gateway = StubGateway()
        result = await gateway.create_payment(
            amount=Decimal("1"), currency="USD", order_id="o2", customer_phone="+1"
        )
        gateway.simulate_payment_status(result.payment_id, "success")

        status = await gateway.check_payment_status(result.payment_id)
        payload = gateway.webhook_payload(result.payment_id)

        assert status.status == "success"
        assert payload == {
            "payment_id": result.payment_id,
            "order_id": "o2",
            "status": "success",
            "transaction_id": result.transaction_id,
        }

    async def test_rejection_and_timeout(self):
        gateway = StubGateway(accept_payments=False)
        result = await gateway.create_payment(
            amount=Decimal("1"), currency="USD", order_id="o3", customer_phone="+1"
        )
        assert result.success is False
        assert result.error == gateway.rejection_message

        gateway.timeout_payments = True
        with pytest.raises(GatewayTimeoutError):
            await gateway.create_payment(
                amount=Decimal("1"), currency="USD", order_id="o3", customer_phone="+1"
            )

    async def test_unknown_payment_status(self):
        status = await StubGateway().check_payment_status("nope")
        assert status.success is False

    async def test_disbursement_is_idempotent_by_reference(self):
        gateway = StubGateway()
        first = await gateway.create_disbursement(
            amount=Decimal("9.20"), currency="USD", recipient_phone="+1", reference="payout-1"
        )
        second = await gateway.create_disbursement(
            amount=Decimal("9.20"), currency="USD", recipient_phone="+1", reference="payout-1"
        )

        assert first.success is True
        assert second.disbursement_id == first.disbursement_id
        assert len(gateway.disbursements) == 1

        status = await gateway.check_disbursement_status(first.disbursement_id)
        assert status.status == "success"

    async def test_disbursement_status_by_reference(self):
        gateway = StubGateway()
        assert (await gateway.check_disbursement_status("payout-9")).status == "not_found"

        gateway.timeout_after_disbursing = True
        with pytest.raises(GatewayTimeoutError):
            await gateway.create_disbursement(
                amount=Decimal("9.20"), currency="USD", recipient_phone="+1", reference="payout-9"
            )

        status = await gateway.check_disbursement_status("payout-9")
        assert status.success is True
        assert status.status == "success"


def _clickpesa(handler) -> ClickPesaGateway:
    client = httpx.AsyncClient(
        base_url="https://gateway.test",
        transport=httpx.MockTransport(handler),
    )
    return ClickPesaGateway(
        base_url="https://gateway.test",
        client_id="client",
        api_key="secret",
        client=client,
    )


class TestClickPesaGateway:
    """Test the ClickPesa adapter against a mocked transport."""

    async def test_create_payment_authenticates_once(self):
        calls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            if request.url.path == "/oauth/token":
                body = json.loads(request.content)
                assert body["grant_type"] == "client_credentials"
                return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
            assert request.headers["Authorization"] == "Bearer tok"
            body = json.loads(request.content)
            assert body["amount"] == "10.55"
            return httpx.Response(
                200,
                json={
                    "id": "CP-1",
                    "transaction_id": "TX-1",
                    "checkout_url": "https://pay.test/CP-1",
                },
            )

        gateway = _clickpesa(handler)
        for _ in range(2):
            result = await gateway.create_payment(
                amount=Decimal("10.55"),
                currency="USD",
                order_id="o1",
                customer_phone="+255700000000",
            )
            assert result.success is True
            assert result.payment_id == "CP-1"
            assert result.checkout_url == "https://pay.test/CP-1"

        assert calls == ["/oauth/token", "/api/v1/payments", "/api/v1/payments"]
        await gateway.aclose()

    async def test_rejected_payment_returns_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/token":
                return httpx.Response(200, json={"access_token": "tok"})
            return httpx.Response(422, json={"message": "Invalid phone number"})

        result = await _clickpesa(handler).create_payment(
            amount=Decimal("1"), currency="TZS", order_id="o1", customer_phone="bad"
        )

        assert result.success is False
        assert result.error == "Invalid phone number"

    async def test_timeout_raises_gateway_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/token":
                return httpx.Response(200, json={"access_token": "tok"})
            raise httpx.ReadTimeout("timed out", request=request)

        gateway = _clickpesa(handler)
        with pytest.raises(GatewayTimeoutError):
            await gateway.create_disbursement(
                amount=Decimal("5"), currency="TZS", recipient_phone="+1", reference="p1"
            )

    async def test_status_poll(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/token":
                return httpx.Response(200, json={"access_token": "tok"})
            assert request.url.path == "/api/v1/payments/CP-9"
            return httpx.Response(200, json={"status": "SUCCESS", "transaction_id": "TX-9"})

        status = await _clickpesa(handler).check_payment_status("CP-9")

        assert status.success is True
        assert status.status == "SUCCESS"
        assert status.transaction_id == "TX-9"

    async def test_missing_disbursement_reports_not_found(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/oauth/token":
                return httpx.Response(200, json={"access_token": "tok"})
            assert request.url.path == "/api/v1/disbursements/payout-1"
            return httpx.Response(404, json={"message": "Not found"})

        status = await _clickpesa(handler).check_disbursement_status("payout-1")

        assert status.success is True
        assert status.status == "not_found"


class TestWebhookSignatures:
    """Test HMAC webhook signature verification."""

    def test_valid_signature(self):
        body = b'{"payment_id": "CP-1", "status": "success"}'
        signature = compute_signature(body, "secret")

        assert verify_webhook_signature(body, signature, "secret") is True
        assert verify_webhook_signature(body, f"sha256={signature}", "secret") is True
        assert verify_webhook_signature(body, signature.upper(), "secret") is True

    def test_tampered_body_fails(self):
        signature = compute_signature(b'{"status": "failed"}', "secret")
        assert verify_webhook_signature(b'{"status": "success"}', signature, "secret") is False

    def test_missing_signature_or_secret_fails(self):
        body = b"{}"
        assert verify_webhook_signature(body, None, "secret") is False
        assert verify_webhook_signature(body, compute_signature(body, ""), "") is False
