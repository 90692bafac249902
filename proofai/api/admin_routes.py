"""
Admin API routes for manual grants and account changes.

Protected by bearer JWT authentication; every route requires a profile with
the admin role. Every mutation is audited by AdminGrantService.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from structlog import get_logger

from proofai.api.dependencies import get_record_store, require_admin_role
from proofai.api.routes import snapshot_to_response
from proofai.exceptions import (
    AccountNotFoundError,
    CertificationGrantNotFoundError,
    UpstreamUnavailableError,
)
from proofai.models.api import (
    AccountResponse,
    CertificationGrantResponse,
    CreditGrantResponse,
    EntitlementResponse,
    GrantCertificationRequest,
    GrantCreditsRequest,
    PlanOverrideRequest,
    PlanUpdateRequest,
    RevokeCertificationRequest,
    RoleUpdateRequest,
)
from proofai.models.domain import CertificationGrantData, UserAccountData
from proofai.services.admin_grants import AdminGrantService
from proofai.services.entitlements import DatabaseEntitlementResolver
from proofai.services.record_store import RecordStore

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


def _account_response(account: UserAccountData) -> AccountResponse:
    return AccountResponse(
        user_id=account.user_id,
        role=account.role,
        plan=account.plan,
        plan_override=account.plan_override,
        has_court_certification=account.has_court_certification,
    )


def _certification_response(grant: CertificationGrantData) -> CertificationGrantResponse:
    return CertificationGrantResponse(
        grant_id=grant.grant_id,
        user_id=grant.user_id,
        valid=grant.valid,
        granted_by=grant.granted_by,
        reason=grant.reason,
        created_at=grant.created_at,
    )


def _not_found(user_id: UUID) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"User {user_id} not found",
    )


def _unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Record store unavailable",
    )


# ============================================================================
# Grants
# ============================================================================


@router.post(
    "/users/{user_id}/credits",
    response_model=CreditGrantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def grant_credits(
    user_id: UUID,
    request: GrantCreditsRequest,
    admin: UserAccountData = Depends(require_admin_role),
    store: RecordStore = Depends(get_record_store),
) -> CreditGrantResponse:
    """Grant credits to a user, optionally expiring after expires_in_days."""
    expires_at = (
        datetime.now(UTC) + timedelta(days=request.expires_in_days)
        if request.expires_in_days
        else None
    )
    service = AdminGrantService(store)
    try:
        grant = await service.grant_credits(
            admin.user_id, user_id, request.credits, expires_at=expires_at, reason=request.reason
        )
    except AccountNotFoundError as exc:
        raise _not_found(user_id) from exc
    except UpstreamUnavailableError as exc:
        raise _unavailable() from exc

    return CreditGrantResponse(
        grant_id=grant.grant_id,
        user_id=grant.user_id,
        credits_granted=grant.credits_granted,
        credits_remaining=grant.credits_remaining,
        expires_at=grant.expires_at,
        granted_by=grant.granted_by,
        reason=grant.reason,
        created_at=grant.created_at,
    )


@router.post(
    "/users/{user_id}/certifications",
    response_model=CertificationGrantResponse,
    status_code=status.HTTP_201_CREATED,
)
async def grant_certification(
    user_id: UUID,
    request: GrantCertificationRequest,
    admin: UserAccountData = Depends(require_admin_role),
    store: RecordStore = Depends(get_record_store),
) -> CertificationGrantResponse:
    """Grant court certification to a user."""
    service = AdminGrantService(store)
    try:
        grant = await service.grant_certification(admin.user_id, user_id, reason=request.reason)
    except AccountNotFoundError as exc:
        raise _not_found(user_id) from exc
    except UpstreamUnavailableError as exc:
        raise _unavailable() from exc
    return _certification_response(grant)


@router.post(
    "/certifications/{grant_id}/revoke",
    response_model=CertificationGrantResponse,
)
async def revoke_certification(
    grant_id: UUID,
    request: RevokeCertificationRequest,
    admin: UserAccountData = Depends(require_admin_role),
    store: RecordStore = Depends(get_record_store),
) -> CertificationGrantResponse:
    """Invalidate a certification grant."""
    service = AdminGrantService(store)
    try:
        grant = await service.revoke_certification(admin.user_id, grant_id, reason=request.reason)
    except CertificationGrantNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Certification grant {grant_id} not found",
        ) from exc
    except UpstreamUnavailableError as exc:
        raise _unavailable() from exc
    return _certification_response(grant)


# ============================================================================
# Account Changes
# ============================================================================


@router.put("/users/{user_id}/plan-override", response_model=AccountResponse)
async def set_plan_override(
    user_id: UUID,
    request: PlanOverrideRequest,
    admin: UserAccountData = Depends(require_admin_role),
    store: RecordStore = Depends(get_record_store),
) -> AccountResponse:
    """Turn unlimited access on or off for a user."""
    service = AdminGrantService(store)
    try:
        account = await service.set_plan_override(
            admin.user_id, user_id, request.enabled, reason=request.reason
        )
    except AccountNotFoundError as exc:
        raise _not_found(user_id) from exc
    except UpstreamUnavailableError as exc:
        raise _unavailable() from exc
    return _account_response(account)


@router.put("/users/{user_id}/plan", response_model=AccountResponse)
async def set_plan(
    user_id: UUID,
    request: PlanUpdateRequest,
    admin: UserAccountData = Depends(require_admin_role),
    store: RecordStore = Depends(get_record_store),
) -> AccountResponse:
    """Set a user's profile plan; lifetime grants unlimited access."""
    service = AdminGrantService(store)
    try:
        account = await service.set_plan(
            admin.user_id, user_id, request.plan, reason=request.reason
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except AccountNotFoundError as exc:
        raise _not_found(user_id) from exc
    except UpstreamUnavailableError as exc:
        raise _unavailable() from exc
    return _account_response(account)


@router.put("/users/{user_id}/role", response_model=AccountResponse)
async def set_role(
    user_id: UUID,
    request: RoleUpdateRequest,
    admin: UserAccountData = Depends(require_admin_role),
    store: RecordStore = Depends(get_record_store),
) -> AccountResponse:
    """Change a user's role."""
    service = AdminGrantService(store)
    try:
        account = await service.set_role(
            admin.user_id, user_id, request.role, reason=request.reason
        )
    except AccountNotFoundError as exc:
        raise _not_found(user_id) from exc
    except UpstreamUnavailableError as exc:
        raise _unavailable() from exc
    return _account_response(account)


@router.get("/users/{user_id}/entitlements", response_model=EntitlementResponse)
async def get_user_entitlements(
    user_id: UUID,
    admin: UserAccountData = Depends(require_admin_role),
    store: RecordStore = Depends(get_record_store),
) -> EntitlementResponse:
    """
    Resolve a user's entitlements from stored grants.

    Always uses the database resolver, even when test mode is configured.
    """
    logger.info("admin_entitlements_viewed", admin_id=str(admin.user_id), user_id=str(user_id))
    resolver = DatabaseEntitlementResolver(store)
    snapshot = await resolver.resolve(user_id)
    return snapshot_to_response(snapshot)
