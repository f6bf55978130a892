"""
Tests for the PayPal provider against a mocked PayPal REST API.
"""

import json
from decimal import Decimal

import httpx
import pytest

from app.exceptions import GatewayError, WebhookVerificationError
from app.services.payment_provider import OrderRequest
from app.services.paypal_provider import PayPalProvider, parse_capture, parse_webhook_event

BASE_URL = "https://api-m.sandbox.paypal.com"

SIGNED_HEADERS = {
    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    "PAYPAL-CERT-URL": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-1",
    "PAYPAL-TRANSMISSION-ID": "TX-1",
    "PAYPAL-TRANSMISSION-SIG": "c2lnbmF0dXJl",
    "PAYPAL-TRANSMISSION-TIME": "2026-10-19T12:00:00Z",
}


class FakePayPal:
    """Routes requests to canned responses and records them."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_calls = 0
        self.routes: dict[tuple[str, str], httpx.Response] = {}
        self.error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v1/oauth2/token":
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": "A21-token", "expires_in": 32400})
        if self.error is not None:
            raise self.error
        return self.routes.get(
            (request.method, request.url.path), httpx.Response(404, json={"name": "NOT_FOUND"})
        )

    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def paypal() -> FakePayPal:
    return FakePayPal()


@pytest.fixture
def provider(paypal: FakePayPal) -> PayPalProvider:
    return PayPalProvider(
        client_id="client-id",
        client_secret="client-secret",
        base_url=BASE_URL,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(paypal.handler)),
    )


def order_request() -> OrderRequest:
    return OrderRequest(
        amount=Decimal("100"),
        currency="USD",
        description="5000 Radium Credits",
        custom_id='{"u":"user","t":"credits","c":5000,"k":"radium"}',
        return_url="https://ezcasino.example.com/payments/paypal/return",
        cancel_url="https://ezcasino.example.com/pricing",
        request_id="payment-1",
    )


def captured_order(order_id: str = "ORDER-1") -> dict:
    return {
        "id": order_id,
        "status": "COMPLETED",
        "purchase_units": [
            {
                "payments": {
                    "captures": [
                        {
                            "id": "CAPTURE-1",
                            "status": "COMPLETED",
                            "amount": {"currency_code": "USD", "value": "100.00"},
                        }
                    ]
                }
            }
        ],
    }


class TestCreateOrder:
    """Tests for order creation."""

    async def test_create_order(self, provider, paypal) -> None:
        paypal.routes[("POST", "/v2/checkout/orders")] = httpx.Response(
            201,
            json={
                "id": "ORDER-1",
                "status": "CREATED",
                "links": [
                    {"rel": "self", "href": f"{BASE_URL}/v2/checkout/orders/ORDER-1"},
                    {"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1"},
                ],
            },
        )

        result = await provider.create_order(order_request())

        assert result.order_id == "ORDER-1"
        assert result.status == "CREATED"
        assert result.approve_url == "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1"

        request = paypal.last()
        assert request.headers["Authorization"] == "Bearer A21-token"
        assert request.headers["PayPal-Request-Id"] == "payment-1"
        body = json.loads(request.content)
        assert body["intent"] == "CAPTURE"
        unit = body["purchase_units"][0]
        assert unit["amount"] == {"currency_code": "USD", "value": "100.00"}
        assert unit["custom_id"] == order_request().custom_id
        assert body["application_context"]["user_action"] == "PAY_NOW"

    async def test_payer_action_link_is_used_as_fallback(self, provider, paypal) -> None:
        paypal.routes[("POST", "/v2/checkout/orders")] = httpx.Response(
            200,
            json={
                "id": "ORDER-2",
                "status": "PAYER_ACTION_REQUIRED",
                "links": [{"rel": "payer-action", "href": "https://paypal.test/pay?token=ORDER-2"}],
            },
        )

        result = await provider.create_order(order_request())

        assert result.approve_url == "https://paypal.test/pay?token=ORDER-2"

    async def test_token_is_cached(self, provider, paypal) -> None:
        paypal.routes[("POST", "/v2/checkout/orders")] = httpx.Response(
            201, json={"id": "ORDER-1", "status": "CREATED", "links": []}
        )

        await provider.create_order(order_request())
        await provider.create_order(order_request())

        assert paypal.token_calls == 1

    async def test_http_error_becomes_gateway_error(self, provider, paypal) -> None:
        paypal.routes[("POST", "/v2/checkout/orders")] = httpx.Response(
            400, json={"name": "INVALID_REQUEST"}
        )

        with pytest.raises(GatewayError) as exc_info:
            await provider.create_order(order_request())

        assert exc_info.value.status_code == 400
        assert "INVALID_REQUEST" in exc_info.value.message

    async def test_timeout_becomes_gateway_error(self, provider, paypal) -> None:
        paypal.error = httpx.ReadTimeout("timed out")

        with pytest.raises(GatewayError) as exc_info:
            await provider.create_order(order_request())

        assert "timed out" in exc_info.value.message
        assert exc_info.value.status_code is None

    async def test_token_failure(self, paypal) -> None:
        def reject(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": "invalid_client"})

        provider = PayPalProvider(
            client_id="bad",
            client_secret="bad",
            base_url=BASE_URL,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(reject)),
        )

        with pytest.raises(GatewayError) as exc_info:
            await provider.create_order(order_request())

        assert exc_info.value.status_code == 401


class TestCaptureOrder:
    """Tests for order capture."""

    async def test_capture(self, provider, paypal) -> None:
        paypal.routes[("POST", "/v2/checkout/orders/ORDER-1/capture")] = httpx.Response(
            201, json=captured_order()
        )

        result = await provider.capture_order("ORDER-1")

        assert result.completed
        assert result.capture_id == "CAPTURE-1"
        assert result.amount == Decimal("100.00")
        assert result.currency == "USD"
        assert paypal.last().headers["PayPal-Request-Id"] == "capture-ORDER-1"

    async def test_already_captured_looks_up_order(self, provider, paypal) -> None:
        paypal.routes[("POST", "/v2/checkout/orders/ORDER-1/capture")] = httpx.Response(
            422, json={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "ORDER_ALREADY_CAPTURED"}]}
        )
        paypal.routes[("GET", "/v2/checkout/orders/ORDER-1")] = httpx.Response(
            200, json=captured_order()
        )

        result = await provider.capture_order("ORDER-1")

        assert result.completed
        assert result.capture_id == "CAPTURE-1"
        assert paypal.last().method == "GET"

    async def test_instrument_declined(self, provider, paypal) -> None:
        paypal.routes[("POST", "/v2/checkout/orders/ORDER-1/capture")] = httpx.Response(
            422, json={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "INSTRUMENT_DECLINED"}]}
        )

        result = await provider.capture_order("ORDER-1")

        assert not result.completed
        assert result.declined
        assert result.capture_id is None

    async def test_other_422_propagates(self, provider, paypal) -> None:
        paypal.routes[("POST", "/v2/checkout/orders/ORDER-1/capture")] = httpx.Response(
            422, json={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "ORDER_NOT_APPROVED"}]}
        )

        with pytest.raises(GatewayError):
            await provider.capture_order("ORDER-1")


class TestVerifyWebhook:
    """Tests for webhook signature verification."""

    def _event(self) -> bytes:
        return json.dumps(
            {
                "id": "WH-1",
                "event_type": "PAYMENT.CAPTURE.COMPLETED",
                "resource": {
                    "id": "CAPTURE-1",
                    "status": "COMPLETED",
                    "supplementary_data": {"related_ids": {"order_id": "ORDER-1"}},
                },
            }
        ).encode()

    async def test_verified(self, paypal) -> None:
        paypal.routes[("POST", "/v1/notifications/verify-webhook-signature")] = httpx.Response(
            200, json={"verification_status": "SUCCESS"}
        )
        provider = PayPalProvider(
            client_id="client-id",
            client_secret="client-secret",
            base_url=BASE_URL,
            webhook_id="WEBHOOK-1",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(paypal.handler)),
        )

        event = await provider.verify_webhook(SIGNED_HEADERS, self._event())

        assert event.event_id == "WH-1"
        assert event.order_id == "ORDER-1"
        assert event.capture_id == "CAPTURE-1"
        body = json.loads(paypal.last().content)
        assert body["webhook_id"] == "WEBHOOK-1"
        assert body["transmission_id"] == "TX-1"
        assert body["webhook_event"]["id"] == "WH-1"

    async def test_signature_rejected(self, paypal) -> None:
        paypal.routes[("POST", "/v1/notifications/verify-webhook-signature")] = httpx.Response(
            200, json={"verification_status": "FAILURE"}
        )
        provider = PayPalProvider(
            client_id="client-id",
            client_secret="client-secret",
            base_url=BASE_URL,
            webhook_id="WEBHOOK-1",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(paypal.handler)),
        )

        with pytest.raises(WebhookVerificationError):
            await provider.verify_webhook(SIGNED_HEADERS, self._event())

    async def test_missing_headers(self, paypal) -> None:
        provider = PayPalProvider(
            client_id="client-id",
            client_secret="client-secret",
            base_url=BASE_URL,
            webhook_id="WEBHOOK-1",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(paypal.handler)),
        )

        with pytest.raises(WebhookVerificationError) as exc_info:
            await provider.verify_webhook({"PAYPAL-AUTH-ALGO": "SHA256withRSA"}, self._event())

        assert "paypal-transmission-sig" in exc_info.value.message
        assert paypal.requests == []

    async def test_verification_disabled_without_webhook_id(self, provider, paypal) -> None:
        event = await provider.verify_webhook({}, self._event())

        assert event.event_type == "PAYMENT.CAPTURE.COMPLETED"
        assert paypal.requests == []

    async def test_invalid_json(self, provider) -> None:
        with pytest.raises(WebhookVerificationError):
            await provider.verify_webhook({}, b"not json")

    async def test_non_object_payload(self, provider) -> None:
        with pytest.raises(WebhookVerificationError):
            await provider.verify_webhook({}, b"[1, 2]")


class TestParsing:
    """Tests for response and event parsing."""

    def test_parse_capture_without_captures(self) -> None:
        result = parse_capture({"id": "ORDER-1", "status": "APPROVED"})

        assert result.status == "APPROVED"
        assert result.capture_id is None
        assert not result.completed

    def test_parse_capture_invalid_amount(self) -> None:
        order = captured_order()
        order["purchase_units"][0]["payments"]["captures"][0]["amount"]["value"] = "abc"

        assert parse_capture(order).amount is None

    def test_completed_event_order_from_up_link(self) -> None:
        event = parse_webhook_event(
            {
                "id": "WH-2",
                "event_type": "PAYMENT.CAPTURE.COMPLETED",
                "resource": {
                    "id": "CAPTURE-2",
                    "status": "COMPLETED",
                    "links": [{"rel": "up", "href": f"{BASE_URL}/v2/checkout/orders/ORDER-2"}],
                },
            }
        )

        assert event.order_id == "ORDER-2"
        assert event.capture_id == "CAPTURE-2"

    def test_refund_event_links_to_capture(self) -> None:
        event = parse_webhook_event(
            {
                "id": "WH-3",
                "event_type": "PAYMENT.CAPTURE.REFUNDED",
                "resource": {
                    "id": "REFUND-3",
                    "status": "COMPLETED",
                    "links": [{"rel": "up", "href": f"{BASE_URL}/v2/payments/captures/CAPTURE-3"}],
                },
            }
        )

        assert event.resource_id == "REFUND-3"
        assert event.capture_id == "CAPTURE-3"
        assert event.order_id is None

    def test_missing_event_type(self) -> None:
        with pytest.raises(WebhookVerificationError):
            parse_webhook_event({"id": "WH-4", "resource": {}})
