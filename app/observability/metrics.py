"""
Metrics Collection with Prometheus.

Exposes ledger, payment and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    LEDGER_KIND = "ledger_kind"
    TRANSACTION_KIND = "kind"
    PAYMENT_TYPE = "payment_type"
    ERROR_TYPE = "error_type"


class LedgerMetrics:
    """
    Centralized metrics for the ledger API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Balance adjustments (rate, amount, success/failure)
    - Payments by type and final status
    - Gateway calls and webhook events
    - Affiliate commissions
    - Persistence conflicts and retries
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "ledger_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "ledger_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "ledger_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "ledger_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.adjustments_total = Counter(
            "ledger_adjustments_total",
            "Total balance adjustments attempted",
            [MetricLabels.LEDGER_KIND, MetricLabels.TRANSACTION_KIND, "success"],
        )

        self.adjustment_amount = Histogram(
            "ledger_adjustment_amount",
            "Absolute adjustment amounts in credits",
            [MetricLabels.LEDGER_KIND],
            buckets=(1, 10, 50, 100, 500, 1000, 5000, 10000, 50000, 100000),
        )

        self.unit_of_work_retries_total = Counter(
            "ledger_unit_of_work_retries_total",
            "Units of work retried after a serialization failure or deadlock",
            [MetricLabels.OPERATION],
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.payments_total = Counter(
            "ledger_payments_total",
            "Payments reaching a status",
            [MetricLabels.PAYMENT_TYPE, "status"],
        )

        self.gateway_request_duration_seconds = Histogram(
            "ledger_gateway_request_duration_seconds",
            "Payment gateway call duration in seconds",
            [MetricLabels.OPERATION, "success"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
        )

        self.webhook_events_total = Counter(
            "ledger_webhook_events_total",
            "Gateway webhook events by type and outcome",
            ["event_type", "outcome"],
        )

        # ====================================================================
        # Commission Metrics
        # ====================================================================
        self.commissions_total = Counter(
            "ledger_commissions_total",
            "Affiliate commission state changes",
            ["status"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "ledger_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_adjustment(self, ledger_kind: str, kind: str, success: bool, amount: int) -> None:
        """Record a balance adjustment attempt."""
        self.adjustments_total.labels(ledger_kind=ledger_kind, kind=kind, success=str(success)).inc()
        if success:
            self.adjustment_amount.labels(ledger_kind=ledger_kind).observe(abs(amount))

    def record_payment(self, payment_type: str, status: str) -> None:
        """Record a payment reaching a status."""
        self.payments_total.labels(payment_type=payment_type, status=status).inc()

    def record_gateway_call(self, operation: str, success: bool, duration: float) -> None:
        """Record payment gateway call metrics."""
        self.gateway_request_duration_seconds.labels(
            operation=operation, success=str(success)
        ).observe(duration)

    def record_webhook(self, event_type: str, outcome: str) -> None:
        """Record a processed webhook event."""
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_commission(self, status: str) -> None:
        """Record a commission state change."""
        self.commissions_total.labels(status=status).inc()

    def record_retry(self, operation: str) -> None:
        """Record a unit-of-work retry."""
        self.unit_of_work_retries_total.labels(operation=operation).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = LedgerMetrics()
