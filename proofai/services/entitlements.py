"""
Entitlement Resolver - the single decision object behind every gated action.

NO DICTIONARIES - All operations use strongly typed domain models.

resolve() has no side effects beyond logs and metrics and never raises:
a failed lookup degrades to the most restrictive answer with degraded=True.
Nothing is cached; every call re-reads the grant records.
"""

import time
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

from structlog import get_logger

from proofai.config import ConfigurationError, Settings
from proofai.exceptions import NoActivePlanError, QuotaExceededError, UpstreamUnavailableError
from proofai.models.api import AdmissionStatus, FundingSource, UserRole
from proofai.models.domain import (
    AdmissionResult,
    EntitlementSnapshot,
    GrantSummary,
    PlanFeatures,
)
from proofai.observability.metrics import metrics
from proofai.observability.tracing import add_span_attributes, trace_operation
from proofai.services.plans import LIFETIME_PLAN, PLANS, get_plan
from proofai.services.reconciler import GrantReconciler
from proofai.services.record_store import RecordStore
from proofai.services.usage_ledger import UsageLedger, seconds_to_minutes

logger = get_logger(__name__)

DATABASE_PROVIDER = "database"
TEST_MODE_PROVIDER = "test_mode"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class EntitlementProvider(Protocol):
    """
    Anything that can answer "what may this user do right now".

    Implementations:
    - DatabaseEntitlementResolver: reconciles stored grants and usage
    - TestModeEntitlementProvider: unlimited answers for non-production use
    """

    name: str

    async def resolve(self, user_id: UUID) -> EntitlementSnapshot: ...

    async def check_recording_admission(
        self, user_id: UUID, duration_seconds: int
    ) -> AdmissionResult: ...


def decide_admission(snapshot: EntitlementSnapshot, requested_minutes: int) -> AdmissionResult:
    """
    Admission decision for a planned recording against a snapshot.

    Order: unlimited, no means to record, plan minutes, then credits.
    """
    remaining = snapshot.remaining_minutes

    if snapshot.has_unlimited_access:
        return AdmissionResult(
            status=AdmissionStatus.ALLOWED,
            requested_minutes=requested_minutes,
            remaining_minutes=remaining,
            funding=FundingSource.UNLIMITED,
        )

    if not snapshot.can_record:
        return AdmissionResult(
            status=AdmissionStatus.NO_ACTIVE_PLAN,
            requested_minutes=requested_minutes,
            remaining_minutes=remaining,
            reason="No active plan, override or credits",
        )

    if snapshot.has_paid_plan and remaining is not None and requested_minutes <= remaining:
        return AdmissionResult(
            status=AdmissionStatus.ALLOWED,
            requested_minutes=requested_minutes,
            remaining_minutes=remaining,
            funding=FundingSource.PLAN,
        )

    if snapshot.credits_remaining > 0:
        # Caller spends a credit explicitly once the recording completes
        return AdmissionResult(
            status=AdmissionStatus.ALLOWED,
            requested_minutes=requested_minutes,
            remaining_minutes=remaining,
            funding=FundingSource.CREDITS,
        )

    return AdmissionResult(
        status=AdmissionStatus.QUOTA_EXCEEDED,
        requested_minutes=requested_minutes,
        remaining_minutes=remaining,
        reason=f"Requested {requested_minutes} min, {remaining or 0} min remaining",
    )


class DatabaseEntitlementResolver:
    """Resolves entitlements from stored grants and the usage ledger."""

    name = DATABASE_PROVIDER

    def __init__(self, store: RecordStore) -> None:
        self.store = store
        self.reconciler = GrantReconciler(store)
        self.ledger = UsageLedger(store)

    async def resolve(self, user_id: UUID) -> EntitlementSnapshot:
        """Entitlement snapshot for a user at the current time."""
        start = time.perf_counter()
        now = _utc_now()

        with trace_operation("resolve_entitlements", user_id=str(user_id)) as span:
            summary = await self.reconciler.resolve_grants(user_id, now)
            if summary.has_unlimited_access:
                snapshot = self._unlimited_snapshot(summary)
            else:
                snapshot = await self._metered_snapshot(summary)
            add_span_attributes(
                span, unlimited=snapshot.has_unlimited_access, degraded=snapshot.degraded
            )

        duration = time.perf_counter() - start
        metrics.record_resolution(
            unlimited=snapshot.has_unlimited_access,
            degraded=snapshot.degraded,
            provider=self.name,
            duration=duration,
        )
        log = logger.warning if snapshot.degraded else logger.info
        log(
            "entitlements_resolved",
            user_id=str(user_id),
            plan=snapshot.plan,
            unlimited=snapshot.has_unlimited_access,
            can_record=snapshot.can_record,
            remaining_minutes=snapshot.remaining_minutes,
            credits=snapshot.credits_remaining,
            degraded=snapshot.degraded,
        )
        return snapshot

    def _unlimited_snapshot(self, summary: GrantSummary) -> EntitlementSnapshot:
        # No usage lookup: a stale usage record must never block unlimited access
        account = summary.account
        return EntitlementSnapshot(
            user_id=account.user_id,
            is_admin=account.role == UserRole.ADMIN,
            is_support=account.role in (UserRole.SUPPORT, UserRole.ADMIN),
            has_unlimited_access=True,
            plan=summary.active_plan,
            has_paid_plan=True,
            has_court_certification=True,
            credits_remaining=summary.active_credits,
            can_record=True,
            can_generate_reports=True,
            can_access_court_features=True,
            remaining_minutes=None,
            minutes_unbounded=True,
            features=PLANS[LIFETIME_PLAN].features,
            degraded=summary.degraded,
        )

    async def _metered_snapshot(self, summary: GrantSummary) -> EntitlementSnapshot:
        account = summary.account
        subscription = summary.subscription
        degraded = summary.degraded

        minute_limit = 0
        minutes_used = 0
        remaining = 0
        features = PlanFeatures()
        if summary.has_paid_plan and subscription is not None:
            minute_limit = subscription.minute_limit
            features = get_plan(subscription.plan).features
            try:
                minutes_used = await self.ledger.total_usage(
                    account.user_id, subscription.period_start, subscription.period_end
                )
                remaining = max(0, minute_limit - minutes_used)
            except UpstreamUnavailableError as exc:
                logger.warning(
                    "usage_lookup_degraded",
                    user_id=str(account.user_id),
                    error=str(exc),
                )
                metrics.record_error("UpstreamUnavailableError", "usage")
                degraded = True
                remaining = 0

        can_record = summary.has_paid_plan or summary.active_credits > 0
        return EntitlementSnapshot(
            user_id=account.user_id,
            is_admin=False,
            is_support=account.role == UserRole.SUPPORT,
            has_unlimited_access=False,
            plan=summary.active_plan,
            has_paid_plan=summary.has_paid_plan,
            has_court_certification=summary.has_certification,
            credits_remaining=summary.active_credits,
            can_record=can_record,
            can_generate_reports=can_record,
            can_access_court_features=summary.has_certification,
            remaining_minutes=remaining,
            minutes_unbounded=False,
            features=features,
            period_start=subscription.period_start if subscription else None,
            period_end=subscription.period_end if subscription else None,
            minute_limit=minute_limit,
            minutes_used=minutes_used,
            degraded=degraded,
        )

    async def check_recording_admission(
        self, user_id: UUID, duration_seconds: int
    ) -> AdmissionResult:
        """
        Advisory admission check for a planned recording.

        Not a reservation: two concurrent checks can both pass against the
        same remaining minutes.
        """
        requested_minutes = seconds_to_minutes(duration_seconds)
        snapshot = await self.resolve(user_id)
        result = decide_admission(snapshot, requested_minutes)

        metrics.record_admission(
            result.status.value, result.funding.value if result.funding else None
        )
        logger.info(
            "recording_admission_checked",
            user_id=str(user_id),
            requested_minutes=requested_minutes,
            remaining_minutes=result.remaining_minutes,
            status=result.status.value,
            funding=result.funding.value if result.funding else None,
        )
        return result

    async def require_recording_admission(
        self, user_id: UUID, duration_seconds: int
    ) -> AdmissionResult:
        """
        Same as check_recording_admission, but raises when not allowed.

        Raises:
            NoActivePlanError: Nothing allows this user to record
            QuotaExceededError: Plan minutes exhausted and no credits left
        """
        result = await self.check_recording_admission(user_id, duration_seconds)
        if result.status == AdmissionStatus.NO_ACTIVE_PLAN:
            raise NoActivePlanError(user_id)
        if result.status == AdmissionStatus.QUOTA_EXCEEDED:
            raise QuotaExceededError(result.requested_minutes, result.remaining_minutes or 0)
        return result


class TestModeEntitlementProvider:
    """
    Grants unlimited access to every user.

    For local development and automated tests only. Never constructed in
    production (refused by config validation and by the factory).
    """

    __test__ = False  # not a pytest test class

    name = TEST_MODE_PROVIDER

    async def resolve(self, user_id: UUID) -> EntitlementSnapshot:
        logger.warning("test_mode_entitlements_active", user_id=str(user_id))
        metrics.record_resolution(unlimited=True, degraded=False, provider=self.name, duration=0.0)
        return EntitlementSnapshot(
            user_id=user_id,
            is_admin=False,
            is_support=False,
            has_unlimited_access=True,
            plan=LIFETIME_PLAN,
            has_paid_plan=True,
            has_court_certification=True,
            credits_remaining=0,
            can_record=True,
            can_generate_reports=True,
            can_access_court_features=True,
            remaining_minutes=None,
            minutes_unbounded=True,
            features=PLANS[LIFETIME_PLAN].features,
            test_mode=True,
        )

    async def check_recording_admission(
        self, user_id: UUID, duration_seconds: int
    ) -> AdmissionResult:
        snapshot = await self.resolve(user_id)
        result = decide_admission(snapshot, seconds_to_minutes(duration_seconds))
        metrics.record_admission(result.status.value, FundingSource.UNLIMITED.value)
        return result


def build_entitlement_provider(config: Settings, store: RecordStore) -> EntitlementProvider:
    """
    Build the configured entitlement provider.

    Raises:
        ConfigurationError: test mode requested in production
    """
    if config.entitlement_provider == TEST_MODE_PROVIDER:
        if config.is_production:
            logger.critical("test_mode_refused_in_production")
            raise ConfigurationError("Test-mode entitlements cannot run in production")
        logger.warning("test_mode_entitlement_provider_selected", environment=config.environment)
        return TestModeEntitlementProvider()
    return DatabaseEntitlementResolver(store)
