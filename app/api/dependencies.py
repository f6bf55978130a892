"""
FastAPI Dependencies - Authentication, authorization and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.config import settings
from app.db.models import User
from app.db.session import get_write_db, get_write_session_factory
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
from app.models.domain import AuthenticatedUser
from app.services.commissions import CommissionService
from app.services.ledger import LedgerService
from app.services.notifications import (
    DatabaseNotificationDispatcher,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)
from app.services.payments import PaymentService
from app.services.paypal_provider import PayPalProvider

logger = get_logger(__name__)

# Bearer token scheme for JWT auth
bearer_scheme = HTTPBearer(auto_error=False)

# Process-wide PayPal client (keeps its OAuth token and connection pool)
_paypal_provider: PayPalProvider | None = None


# ============================================================================
# User JWT Authentication
# ============================================================================


def decode_access_token(token: str) -> AuthenticatedUser:
    """
    Decode a bearer token issued by the platform auth service.

    Raises:
        AuthenticationError: Missing secret, bad signature, expired, or no usable `sub`
    """
    if not settings.auth_jwt_secret:
        raise AuthenticationError("Server misconfiguration: AUTH_JWT_SECRET not set")

    try:
        payload = jwt.decode(
            token, settings.auth_jwt_secret, algorithms=[settings.auth_jwt_algorithm]
        )
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError(f"Invalid token: {e}") from e

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError as e:
        raise AuthenticationError("Token subject is not a user id") from e

    role = payload.get("role")
    return AuthenticatedUser(
        user_id=user_id,
        email=payload.get("email"),
        role=int(role) if role is not None else None,
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedUser:
    """
    FastAPI dependency: the caller identified by `Authorization: Bearer {jwt}`.

    Raises:
        HTTPException 401 if no token or invalid token
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_access_token(credentials.credentials)
    except AuthenticationError as exc:
        logger.warning("user_auth_failed", error=exc.message)
        raise http_error_for(exc) from exc


async def require_super_admin(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> AuthenticatedUser:
    """
    FastAPI dependency: caller must be a super admin (role 0).

    The role is read from the users table so a demoted admin loses access
    before their token expires.

    Raises:
        HTTPException 403 if the caller is not a super admin
    """
    record = await db.get(User, user.user_id)
    if record is None or record.role != 0:
        logger.warning("admin_access_denied", user_id=str(user.user_id))
        raise http_error_for(AuthorizationError("super_admin"))

    return AuthenticatedUser(user_id=record.id, email=record.email, role=record.role)


# ============================================================================
# Service Wiring
# ============================================================================


def get_notifier() -> NotificationDispatcher:
    """Notification dispatcher for the configured mode."""
    if settings.notifications_enabled:
        return DatabaseNotificationDispatcher(get_write_session_factory())
    return LoggingNotificationDispatcher()


def get_payment_provider() -> PayPalProvider:
    """Shared PayPal provider, created on first use."""
    global _paypal_provider
    if _paypal_provider is None:
        _paypal_provider = PayPalProvider(
            client_id=settings.paypal_client_id,
            client_secret=settings.paypal_client_secret,
            base_url=settings.paypal_base_url,
            webhook_id=settings.paypal_webhook_id,
            brand_name=settings.paypal_brand_name,
            timeout_seconds=settings.paypal_timeout_seconds,
        )
    return _paypal_provider


async def close_payment_provider() -> None:
    """Close the shared PayPal HTTP client."""
    global _paypal_provider
    if _paypal_provider is not None:
        await _paypal_provider.close()
        _paypal_provider = None


def get_ledger_service(
    db: AsyncSession = Depends(get_write_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> LedgerService:
    """Ledger service bound to the request's write session."""
    return LedgerService(db, notifier)


def get_commission_service(db: AsyncSession = Depends(get_write_db)) -> CommissionService:
    """Commission service bound to the request's write session."""
    return CommissionService(db)


def get_payment_service(
    db: AsyncSession = Depends(get_write_db),
    provider: PayPalProvider = Depends(get_payment_provider),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> PaymentService:
    """Payment service bound to the request's write session."""
    return PaymentService(db, provider, notifier)


# ============================================================================
# Error Translation
# ============================================================================


def http_error_for(exc: LedgerError) -> HTTPException:
    """Map a ledger exception to the HTTP error returned to the client."""
    if isinstance(exc, InsufficientBalanceError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"Insufficient balance. Required: {exc.required}, Available: {exc.available}"
            ),
        )
    if isinstance(exc, InvalidArgumentError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    if isinstance(exc, WebhookVerificationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    if isinstance(exc, OrderNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Order not found: {exc.order_id}"
        )
    if isinstance(exc, ResourceNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"{exc.resource} not found"
        )
    if isinstance(exc, GatewayError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment gateway unavailable, please try again",
        )
    if isinstance(exc, (PersistenceConflictError, InvalidStateTransitionError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, AuthenticationError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super admin required")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal ledger error"
    )
