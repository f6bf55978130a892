"""
Tests for exception classes.

Covers all exception types and their string representations.
"""

from uuid import uuid4

import pytest

from app.exceptions import (
    AuthenticationError,
    AuthorizationError,
    GatewayError,
    InsufficientBalanceError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    LedgerError,
    OrderNotFoundError,
    PersistenceConflictError,
    ResourceNotFoundError,
    WebhookVerificationError,
)


class TestLedgerError:
    """Tests for base LedgerError."""

    def test_ledger_error_is_exception(self):
        """LedgerError is a subclass of Exception."""
        assert issubclass(LedgerError, Exception)

    @pytest.mark.parametrize(
        "exc_class",
        [
            AuthenticationError,
            AuthorizationError,
            GatewayError,
            InsufficientBalanceError,
            InvalidArgumentError,
            InvalidStateTransitionError,
            OrderNotFoundError,
            PersistenceConflictError,
            ResourceNotFoundError,
            WebhookVerificationError,
                ],
    )
    def test_all_errors_are_ledger_errors(self, exc_class):
        """Every domain error can be caught as LedgerError."""
        assert issubclass(exc_class, LedgerError)


class TestInvalidArgumentError:
    """Tests for InvalidArgumentError."""

    def test_is_value_error(self):
        """Validation failures are also ValueErrors."""
        with pytest.raises(ValueError):
            raise InvalidArgumentError("Amount cannot be zero")

    def test_message(self):
        exc = InvalidArgumentError("Amount cannot be zero")
        assert exc.message == "Amount cannot be zero"
        assert str(exc) == "Invalid argument: Amount cannot be zero"


class TestInsufficientBalanceError:
    """Tests for InsufficientBalanceError."""

    def test_attributes(self):
        """Exception has required and available attributes."""
        exc = InsufficientBalanceError(required=100, available=50)
        assert exc.required == 100
        assert exc.available == 50

    def test_message(self):
        exc = InsufficientBalanceError(required=100, available=50)
        assert str(exc) == "Insufficient balance. Required: 100, Available: 50"


class TestNotFoundErrors:
    """Tests for OrderNotFoundError and ResourceNotFoundError."""

    def test_order_not_found(self):
        exc = OrderNotFoundError("ORDER-1")
        assert exc.order_id == "ORDER-1"
        assert "ORDER-1" in str(exc)

    def test_resource_not_found(self):
        site_id = uuid4()
        exc = ResourceNotFoundError("Site", site_id)
        assert exc.resource == "Site"
        assert exc.resource_id == site_id
        assert str(exc) == f"Site not found: {site_id}"


class TestInvalidStateTransitionError:
    """Tests for InvalidStateTransitionError."""

    def test_attributes(self):
        exc = InvalidStateTransitionError("commission", "paid", "paid")
        assert exc.entity == "commission"
        assert exc.current == "paid"
        assert exc.target == "paid"
        assert str(exc) == "Cannot move commission from paid to paid"


class TestPersistenceConflictError:
    """Tests for PersistenceConflictError."""

    def test_attributes(self):
        exc = PersistenceConflictError("adjust_balance", 3)
        assert exc.resource == "adjust_balance"
        assert exc.attempts == 3
        assert "3 attempts" in str(exc)


class TestGatewayError:
    """Tests for GatewayError."""

    def test_status_code_optional(self):
        assert GatewayError("timed out").status_code is None

    def test_with_status_code(self):
        exc = GatewayError("failed", 422)
        assert exc.status_code == 422
        assert exc.message == "failed"
        assert str(exc) == "Payment gateway error: failed"


class TestAuthErrors:
    """Tests for authentication and authorization errors."""

    def test_authentication_error(self):
        exc = AuthenticationError("Token expired")
        assert exc.message == "Token expired"
        assert str(exc) == "Authentication failed: Token expired"

    def test_authorization_error(self):
        exc = AuthorizationError("super_admin")
        assert exc.required_permission == "super_admin"
        assert "super_admin" in str(exc)


class TestVerificationErrors:
    """Tests for webhook and write verification errors."""

    def test_webhook_verification_error(self):
        exc = WebhookVerificationError("Signature verification failed")
        assert exc.message == "Signature verification failed"
        assert str(exc) == "Webhook verification error: Signature verification failed"
