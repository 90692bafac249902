"""
FastAPI Dependencies - Authentication, authorization and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

from dataclasses import dataclass
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from proofai.config import settings
from proofai.db.session import get_write_db
from proofai.exceptions import AuthenticationError, UpstreamUnavailableError
from proofai.models.api import UserRole
from proofai.models.domain import UserAccountData
from proofai.services.entitlements import EntitlementProvider, build_entitlement_provider
from proofai.services.payment_provider import BillingEventSource
from proofai.services.record_store import RecordStore, SqlRecordStore

logger = get_logger(__name__)

# ============================================================================
# User JWT Authentication
# ============================================================================


@dataclass
class AuthenticatedUser:
    """Caller identity from the identity backend's access token."""

    user_id: UUID
    email: str | None = None


# Bearer token scheme for JWT auth
bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str, secret: str, audience: str) -> AuthenticatedUser:
    """
    Verify an HS256 access token and extract the caller.

    The token is trusted as given once the signature checks out; roles are
    read from the profile, never from claims.

    Raises:
        AuthenticationError: Bad signature, expired, wrong audience or no usable sub
    """
    if not secret:
        raise AuthenticationError("token verification is not configured")
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"], audience=audience)
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError(str(exc)) from exc

    try:
        user_id = UUID(str(payload["sub"]))
    except (KeyError, ValueError) as exc:
        raise AuthenticationError("token has no valid subject") from exc

    email = payload.get("email")
    return AuthenticatedUser(user_id=user_id, email=str(email) if email else None)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedUser:
    """
    FastAPI dependency to validate the bearer access token.

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
        return decode_access_token(
            credentials.credentials, settings.auth_jwt_secret, settings.auth_jwt_audience
        )
    except AuthenticationError as exc:
        logger.warning("user_auth_invalid_token", error=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


# ============================================================================
# Service Wiring
# ============================================================================


async def get_record_store(db: AsyncSession = Depends(get_write_db)) -> RecordStore:
    """
    Record store on the primary database.

    Grants must be visible as soon as they commit, so no replica reads here.
    """
    return SqlRecordStore(db, timeout_seconds=settings.store_timeout_seconds)


async def get_entitlement_provider(
    store: RecordStore = Depends(get_record_store),
) -> EntitlementProvider:
    """Entitlement provider selected by ENTITLEMENT_PROVIDER."""
    return build_entitlement_provider(settings, store)


def get_billing_provider(request: Request) -> BillingEventSource:
    """
    Payment provider built once at startup.

    Raises:
        HTTPException 503 if no provider is configured
    """
    provider: BillingEventSource | None = getattr(request.app.state, "billing_provider", None)
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider not configured",
        )
    return provider


# ============================================================================
# Role Checks
# ============================================================================


async def require_admin_role(
    user: AuthenticatedUser = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
) -> UserAccountData:
    """
    Require the caller's profile to carry the admin role.

    Raises:
        HTTPException(403): If user is not an admin
        HTTPException(503): If the profile could not be read
    """
    try:
        account = await store.get_account(user.user_id)
    except UpstreamUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Account store unavailable",
        ) from exc

    if account is None or account.role != UserRole.ADMIN:
        logger.warning(
            "admin_role_required",
            user_id=str(user.user_id),
            role=account.role.value if account else None,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )

    return account
