"""
API Routes - FastAPI endpoints for entitlements, metering and billing.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from proofai.api.dependencies import (
    AuthenticatedUser,
    get_billing_provider,
    get_current_user,
    get_entitlement_provider,
    get_record_store,
)
from proofai.config import settings
from proofai.db.session import get_read_db
from proofai.exceptions import (
    InsufficientCreditsError,
    PaymentProviderError,
    UpstreamUnavailableError,
    WebhookVerificationError,
)
from proofai.models.api import (
    AdmissionRequest,
    AdmissionResponse,
    BillingEventOutcome,
    CheckoutRequest,
    CheckoutResponse,
    EntitlementResponse,
    HealthResponse,
    PlanFeaturesResponse,
    SpendCreditsRequest,
    SpendCreditsResponse,
    UsageRecordRequest,
    UsageRecordResponse,
    UsageSummaryResponse,
    WebhookResponse,
)
from proofai.models.domain import EntitlementSnapshot
from proofai.services.billing_events import BillingEventProcessor
from proofai.services.entitlements import EntitlementProvider
from proofai.services.payment_provider import (
    CHECKOUT_MODE_PAYMENT,
    CHECKOUT_MODE_SUBSCRIPTION,
    BillingEventSource,
    CheckoutIntent,
)
from proofai.services.plans import pack_for_price_id, plan_for_price_id
from proofai.services.reconciler import GrantReconciler
from proofai.services.record_store import RecordStore
from proofai.services.usage_ledger import UsageLedger

logger = get_logger(__name__)

router = APIRouter()


def snapshot_to_response(snapshot: EntitlementSnapshot) -> EntitlementResponse:
    """Convert an entitlement snapshot to its API response."""
    features = snapshot.features
    return EntitlementResponse(
        user_id=snapshot.user_id,
        is_admin=snapshot.is_admin,
        is_support=snapshot.is_support,
        has_unlimited_access=snapshot.has_unlimited_access,
        plan=snapshot.plan,
        has_paid_plan=snapshot.has_paid_plan,
        has_court_certification=snapshot.has_court_certification,
        credits_remaining=snapshot.credits_remaining,
        can_record=snapshot.can_record,
        can_generate_reports=snapshot.can_generate_reports,
        can_access_court_features=snapshot.can_access_court_features,
        remaining_minutes=snapshot.remaining_minutes,
        minutes_unbounded=snapshot.minutes_unbounded,
        features=PlanFeaturesResponse(
            pdf_export=features.pdf_export,
            folders=features.folders,
            watermark=features.watermark,
            ai_summary=features.ai_summary,
            custom_branding=features.custom_branding,
            storage_days=features.storage_days,
        ),
        degraded=snapshot.degraded,
        test_mode=snapshot.test_mode,
    )


# ============================================================================
# Entitlements
# ============================================================================


@router.get("/v1/entitlements/me", response_model=EntitlementResponse)
async def get_my_entitlements(
    user: AuthenticatedUser = Depends(get_current_user),
    provider: EntitlementProvider = Depends(get_entitlement_provider),
) -> EntitlementResponse:
    """
    Everything the caller may do right now.

    Never fails on store errors: a degraded (most restrictive) answer is
    returned with degraded=true instead.
    """
    snapshot = await provider.resolve(user.user_id)
    return snapshot_to_response(snapshot)


@router.post("/v1/recordings/admission", response_model=AdmissionResponse)
async def check_recording_admission(
    request: AdmissionRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    provider: EntitlementProvider = Depends(get_entitlement_provider),
) -> AdmissionResponse:
    """
    Advisory check before starting a recording.

    Not a reservation. A refusal is a normal 200 response with
    status quota_exceeded or no_active_plan.
    """
    result = await provider.check_recording_admission(user.user_id, request.duration_seconds)
    return AdmissionResponse(
        status=result.status,
        allowed=result.allowed,
        requested_minutes=result.requested_minutes,
        remaining_minutes=result.remaining_minutes,
        funding=result.funding,
        reason=result.reason,
    )


# ============================================================================
# Usage & Credits
# ============================================================================


@router.post(
    "/v1/usage",
    response_model=UsageRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_usage(
    request: UsageRecordRequest,
    response: Response,
    user: AuthenticatedUser = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
) -> UsageRecordResponse:
    """
    Record consumed recording time after a session ends.

    Best effort: a store failure returns 202 with a warning so the client
    never rolls back a finished recording.
    """
    ledger = UsageLedger(store)
    result = await ledger.record_usage(
        user.user_id, request.duration_seconds, recording_ref=request.recording_ref
    )
    if not result.success:
        response.status_code = status.HTTP_202_ACCEPTED

    return UsageRecordResponse(
        success=result.success,
        minutes_recorded=result.minutes_recorded,
        usage_id=result.record.usage_id if result.record else None,
        warning=result.warning,
    )


@router.get("/v1/usage/current", response_model=UsageSummaryResponse)
async def get_current_usage(
    user: AuthenticatedUser = Depends(get_current_user),
    provider: EntitlementProvider = Depends(get_entitlement_provider),
) -> UsageSummaryResponse:
    """Usage against the current billing period."""
    snapshot = await provider.resolve(user.user_id)
    return UsageSummaryResponse(
        period_start=snapshot.period_start,
        period_end=snapshot.period_end,
        minutes_used=snapshot.minutes_used,
        minute_limit=snapshot.minute_limit,
        remaining_minutes=snapshot.remaining_minutes,
        minutes_unbounded=snapshot.minutes_unbounded,
    )


@router.post("/v1/credits/spend", response_model=SpendCreditsResponse)
async def spend_credits(
    request: SpendCreditsRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
) -> SpendCreditsResponse:
    """
    Spend credits for a credit-funded recording.

    Idempotent per recording_ref.
    """
    reconciler = GrantReconciler(store)
    try:
        result = await reconciler.spend_credits(
            user.user_id, quantity=request.quantity, recording_ref=request.recording_ref
        )
    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Insufficient credits. Available: {exc.available}, Required: {exc.required}",
        ) from exc
    except UpstreamUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Credit store unavailable",
        ) from exc

    return SpendCreditsResponse(
        credits_spent=result.credits_spent,
        credits_remaining=result.credits_remaining,
        already_spent=result.already_spent,
    )


# ============================================================================
# Billing
# ============================================================================


@router.post("/v1/billing/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
    billing_provider: BillingEventSource = Depends(get_billing_provider),
) -> CheckoutResponse:
    """
    Start a hosted checkout for a plan or a one-time pack.

    Only configured price ids are accepted.
    """
    if plan_for_price_id(request.price_id, settings) is not None:
        mode = CHECKOUT_MODE_SUBSCRIPTION
    elif pack_for_price_id(request.price_id, settings) is not None:
        mode = CHECKOUT_MODE_PAYMENT
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unknown price_id",
        )

    try:
        account = await store.get_account(user.user_id)
        session = await billing_provider.create_checkout_session(
            CheckoutIntent(
                user_id=user.user_id,
                price_id=request.price_id,
                mode=mode,
                success_url=settings.checkout_success_url,
                cancel_url=settings.checkout_cancel_url,
                customer_email=request.customer_email or user.email,
                customer_ref=account.stripe_customer_id if account else None,
            )
        )
    except (PaymentProviderError, UpstreamUnavailableError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Checkout temporarily unavailable",
        ) from exc

    return CheckoutResponse(
        session_id=session.session_id,
        checkout_url=session.checkout_url,
        mode=session.mode,
    )


@router.post("/v1/billing/webhooks/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    store: RecordStore = Depends(get_record_store),
    billing_provider: BillingEventSource = Depends(get_billing_provider),
) -> WebhookResponse:
    """
    Handle Stripe webhook events.

    Verified events are applied exactly once. 400 on bad signatures; 503 on
    store or provider failures so Stripe redelivers.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = await billing_provider.verify_webhook(payload, signature)
    except WebhookVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        ) from exc
    except PaymentProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider unavailable",
        ) from exc

    if event is None:
        return WebhookResponse(status=BillingEventOutcome.IGNORED)

    logger.info(
        "stripe_webhook_received",
        event_id=event.event_id,
        event_type=event.event_type.value,
    )

    processor = BillingEventProcessor(store, settings)
    try:
        outcome = await processor.apply(event)
    except UpstreamUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing store unavailable",
        ) from exc

    return WebhookResponse(status=outcome, event_id=event.event_id)


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        entitlement_provider=settings.entitlement_provider,
        timestamp=datetime.now(UTC),
    )
