"""
PayPal Payment Provider Implementation (Orders v2 REST API).

NO DICTIONARIES - Gateway responses are parsed into typed results at the edge.
"""

import asyncio
import json
import time
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
from structlog import get_logger

from app.exceptions import GatewayError, WebhookVerificationError
from app.observability.metrics import metrics
from app.services.payment_provider import (
    CaptureResult,
    OrderRequest,
    OrderResult,
    WebhookEvent,
)

logger = get_logger(__name__)

# Refresh the OAuth token this many seconds before PayPal expires it
TOKEN_EXPIRY_MARGIN = 60

# Transmission headers PayPal signs each webhook delivery with
WEBHOOK_HEADERS = (
    "paypal-auth-algo",
    "paypal-cert-url",
    "paypal-transmission-id",
    "paypal-transmission-sig",
    "paypal-transmission-time",
)


def _link(resource: Mapping[str, Any], rel: str) -> str | None:
    for link in resource.get("links") or []:
        if link.get("rel") == rel:
            return link.get("href")
    return None


def _id_after(href: str | None, segment: str) -> str | None:
    """Last path element of an href under /segment/, e.g. .../captures/ID."""
    if not href or f"/{segment}/" not in href:
        return None
    return href.rstrip("/").rsplit("/", 1)[-1] or None


def parse_capture(order: Mapping[str, Any]) -> CaptureResult:
    """Build a CaptureResult from an order representation."""
    order_id = order.get("id", "")
    status = order.get("status", "")
    for unit in order.get("purchase_units") or []:
        captures = (unit.get("payments") or {}).get("captures") or []
        if captures:
            capture = captures[0]
            amount = capture.get("amount") or {}
            try:
                value = Decimal(amount["value"]) if "value" in amount else None
            except InvalidOperation:
                value = None
            return CaptureResult(
                order_id=order_id,
                status=capture.get("status") or status,
                capture_id=capture.get("id"),
                amount=value,
                currency=amount.get("currency_code"),
            )
    return CaptureResult(order_id=order_id, status=status)


def parse_webhook_event(event: Mapping[str, Any]) -> WebhookEvent:
    """
    Extract the identifiers a webhook resource carries.

    Capture resources link up to their order; refund and reversal resources
    link up to the capture they reverse.
    """
    if "event_type" not in event or "id" not in event:
        raise WebhookVerificationError("Webhook payload missing id or event_type")

    resource = event.get("resource") or {}
    related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
    up = _link(resource, "up")
    event_type = event["event_type"]

    order_id = related.get("order_id") or _id_after(up, "orders")
    if event_type in ("PAYMENT.CAPTURE.REFUNDED", "PAYMENT.CAPTURE.REVERSED"):
        capture_id = _id_after(up, "captures") or related.get("capture_id") or resource.get("id")
    else:
        capture_id = resource.get("id")

    return WebhookEvent(
        event_id=event["id"],
        event_type=event_type,
        resource_id=resource.get("id"),
        order_id=order_id,
        capture_id=capture_id,
        status=resource.get("status"),
    )


class PayPalProvider:
    """
    PayPal payment provider implementation.

    Implements the PaymentProvider protocol over the PayPal REST API.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        webhook_id: str = "",
        brand_name: str = "EZ Casino Affiliates",
        timeout_seconds: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize PayPal provider.

        Args:
            client_id: REST app client id
            client_secret: REST app secret
            base_url: api-m.paypal.com or api-m.sandbox.paypal.com
            webhook_id: Webhook id for signature verification (empty disables it)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.webhook_id = webhook_id
        self.brand_name = brand_name
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def create_order(self, request: OrderRequest) -> OrderResult:
        """Create a CAPTURE-intent order and return its approval link."""
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {
                        "currency_code": request.currency,
                        "value": f"{request.amount:.2f}",
                    },
                    "description": request.description,
                    "custom_id": request.custom_id,
                }
            ],
            "application_context": {
                "brand_name": self.brand_name,
                "landing_page": "NO_PREFERENCE",
                "user_action": "PAY_NOW",
                "return_url": request.return_url,
                "cancel_url": request.cancel_url,
            },
        }
        data = await self._request(
            "create_order",
            "POST",
            "/v2/checkout/orders",
            json_body=body,
            headers={"PayPal-Request-Id": request.request_id, "Prefer": "return=representation"},
        )

        result = OrderResult(
            order_id=data["id"],
            status=data.get("status", ""),
            approve_url=_link(data, "approve") or _link(data, "payer-action"),
        )
        logger.info("paypal_order_created", order_id=result.order_id, status=result.status)
        return result

    async def capture_order(self, order_id: str) -> CaptureResult:
        """
        Capture an approved order.

        The PayPal-Request-Id header makes a repeated capture return the first
        result instead of charging twice. An order captured through another path
        is looked up and reported as is.
        """
        try:
            data = await self._request(
                "capture_order",
                "POST",
                f"/v2/checkout/orders/{order_id}/capture",
                json_body={},
                headers={
                    "PayPal-Request-Id": f"capture-{order_id}",
                    "Prefer": "return=representation",
                },
            )
        except GatewayError as e:
            if e.status_code == 422 and "ORDER_ALREADY_CAPTURED" in e.message:
                logger.info("paypal_order_already_captured", order_id=order_id)
                return await self.get_order(order_id)
            if e.status_code == 422 and "INSTRUMENT_DECLINED" in e.message:
                logger.warning("paypal_instrument_declined", order_id=order_id)
                return CaptureResult(order_id=order_id, status="DECLINED")
            raise

        result = parse_capture(data)
        logger.info(
            "paypal_order_captured",
            order_id=order_id,
            status=result.status,
            capture_id=result.capture_id,
        )
        return result

    async def get_order(self, order_id: str) -> CaptureResult:
        """Look up an order's current state."""
        data = await self._request("get_order", "GET", f"/v2/checkout/orders/{order_id}")
        return parse_capture(data)

    async def verify_webhook(self, headers: Mapping[str, str], payload: bytes) -> WebhookEvent:
        """
        Verify a webhook delivery with PayPal, then parse it.

        Verification is skipped (and logged) when no webhook id is configured.
        """
        try:
            event = json.loads(payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise WebhookVerificationError(f"Invalid JSON payload: {e}") from e
        if not isinstance(event, dict):
            raise WebhookVerificationError("Webhook payload must be a JSON object")

        if not self.webhook_id:
            logger.warning("paypal_webhook_verification_disabled", event_id=event.get("id"))
            return parse_webhook_event(event)

        lowered = {k.lower(): v for k, v in headers.items()}
        missing = [h for h in WEBHOOK_HEADERS if not lowered.get(h)]
        if missing:
            raise WebhookVerificationError(f"Missing webhook headers: {', '.join(missing)}")

        body = {
            "auth_algo": lowered["paypal-auth-algo"],
            "cert_url": lowered["paypal-cert-url"],
            "transmission_id": lowered["paypal-transmission-id"],
            "transmission_sig": lowered["paypal-transmission-sig"],
            "transmission_time": lowered["paypal-transmission-time"],
            "webhook_id": self.webhook_id,
            "webhook_event": event,
        }
        data = await self._request(
            "verify_webhook",
            "POST",
            "/v1/notifications/verify-webhook-signature",
            json_body=body,
        )
        if data.get("verification_status") != "SUCCESS":
            logger.warning(
                "paypal_webhook_signature_invalid",
                event_id=event.get("id"),
                verification_status=data.get("verification_status"),
            )
            raise WebhookVerificationError("Signature verification failed")

        return parse_webhook_event(event)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _get_access_token(self) -> str:
        """OAuth2 client-credentials token, cached until shortly before expiry."""
        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            start = time.monotonic()
            try:
                response = await self.http_client.post(
                    f"{self.base_url}/v1/oauth2/token",
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id, self.client_secret),
                    timeout=self.timeout_seconds,
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                metrics.record_gateway_call("oauth_token", False, time.monotonic() - start)
                logger.error("paypal_token_failed", status=e.response.status_code)
                raise GatewayError("Failed to authenticate with PayPal", e.response.status_code)
            except httpx.HTTPError as e:
                metrics.record_gateway_call("oauth_token", False, time.monotonic() - start)
                logger.error("paypal_token_error", error=str(e))
                raise GatewayError(f"PayPal authentication request failed: {type(e).__name__}")

            metrics.record_gateway_call("oauth_token", True, time.monotonic() - start)
            data = response.json()
            self._access_token = data["access_token"]
            self._token_expires_at = (
                time.monotonic() + int(data.get("expires_in", 0)) - TOKEN_EXPIRY_MARGIN
            )
            return self._access_token

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any]:
        """Authenticated JSON call; every failure surfaces as GatewayError."""
        token = await self._get_access_token()
        request_headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        if headers:
            request_headers.update(headers)

        start = time.monotonic()
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                json=json_body,
                headers=request_headers,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            metrics.record_gateway_call(operation, False, time.monotonic() - start)
            logger.error("paypal_request_timeout", operation=operation, error=str(e))
            raise GatewayError(f"PayPal {operation} timed out")
        except httpx.HTTPStatusError as e:
            metrics.record_gateway_call(operation, False, time.monotonic() - start)
            logger.error(
                "paypal_request_failed",
                operation=operation,
                status=e.response.status_code,
                text=e.response.text[:500],
            )
            raise GatewayError(
                f"PayPal {operation} failed: {e.response.text[:500]}", e.response.status_code
            )
        except httpx.HTTPError as e:
            metrics.record_gateway_call(operation, False, time.monotonic() - start)
            logger.error("paypal_request_error", operation=operation, error=str(e))
            raise GatewayError(f"PayPal {operation} request failed: {type(e).__name__}")

        metrics.record_gateway_call(operation, True, time.monotonic() - start)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(f"PayPal {operation} returned invalid JSON") from e
