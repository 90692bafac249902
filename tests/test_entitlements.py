"""
Tests for entitlement resolution and recording admission.

Exercises DatabaseEntitlementResolver against the in-memory record store,
plus the test-mode provider and the provider factory.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from proofai.config import ConfigurationError, Settings
from proofai.exceptions import NoActivePlanError, QuotaExceededError
from proofai.models.api import AdmissionStatus, FundingSource, SubscriptionStatus, UserRole
from proofai.models.domain import EntitlementSnapshot, PlanFeatures
from proofai.services.entitlements import (
    DatabaseEntitlementResolver,
    TestModeEntitlementProvider,
    build_entitlement_provider,
    decide_admission,
)
from proofai.services.plans import LIFETIME_PLAN, PLANS


def _snapshot(**overrides: object) -> EntitlementSnapshot:
    fields: dict[str, object] = {
        "user_id": uuid4(),
        "is_admin": False,
        "is_support": False,
        "has_unlimited_access": False,
        "plan": "self_defender",
        "has_paid_plan": True,
        "has_court_certification": False,
        "credits_remaining": 0,
        "can_record": True,
        "can_generate_reports": True,
        "can_access_court_features": False,
        "remaining_minutes": 5,
        "minutes_unbounded": False,
    }
    fields.update(overrides)
    return EntitlementSnapshot(**fields)  # type: ignore[arg-type]


# ============================================================================
# Snapshot invariants
# ============================================================================


class TestSnapshotInvariants:
    def test_unlimited_must_allow_everything(self) -> None:
        with pytest.raises(ValueError, match="Unlimited access"):
            _snapshot(
                has_unlimited_access=True,
                can_access_court_features=False,
                remaining_minutes=None,
                minutes_unbounded=True,
            )

    def test_unbounded_requires_no_remaining_value(self) -> None:
        with pytest.raises(ValueError, match="remaining_minutes must be None"):
            _snapshot(minutes_unbounded=True, remaining_minutes=5)

    def test_bounded_requires_remaining_value(self) -> None:
        with pytest.raises(ValueError, match="remaining_minutes must be None"):
            _snapshot(minutes_unbounded=False, remaining_minutes=None)

    def test_negative_remaining_rejected(self) -> None:
        with pytest.raises(ValueError, match="cannot be negative"):
            _snapshot(remaining_minutes=-1)


# ============================================================================
# decide_admission
# ============================================================================


class TestDecideAdmission:
    def test_exact_remaining_is_allowed(self) -> None:
        result = decide_admission(_snapshot(remaining_minutes=5), 5)

        assert result.status == AdmissionStatus.ALLOWED
        assert result.funding == FundingSource.PLAN
        assert result.allowed is True

    def test_one_minute_over_is_refused(self) -> None:
        result = decide_admission(_snapshot(remaining_minutes=5), 6)

        assert result.status == AdmissionStatus.QUOTA_EXCEEDED
        assert result.allowed is False
        assert result.reason == "Requested 6 min, 5 min remaining"

    def test_credits_cover_exhausted_plan(self) -> None:
        result = decide_admission(_snapshot(remaining_minutes=0, credits_remaining=1), 30)

        assert result.status == AdmissionStatus.ALLOWED
        assert result.funding == FundingSource.CREDITS

    def test_cannot_record(self) -> None:
        snapshot = _snapshot(
            has_paid_plan=False,
            can_record=False,
            can_generate_reports=False,
            remaining_minutes=0,
        )

        result = decide_admission(snapshot, 1)

        assert result.status == AdmissionStatus.NO_ACTIVE_PLAN


# ============================================================================
# DatabaseEntitlementResolver
# ============================================================================


class TestResolveUnlimited:
    @pytest.mark.asyncio
    async def test_admin_is_unbounded(self, store, admin_user) -> None:
        snapshot = await DatabaseEntitlementResolver(store).resolve(admin_user.user_id)

        assert snapshot.is_admin is True
        assert snapshot.is_support is True
        assert snapshot.has_unlimited_access is True
        assert snapshot.has_paid_plan is True
        assert snapshot.has_court_certification is True
        assert snapshot.can_record is True
        assert snapshot.can_generate_reports is True
        assert snapshot.can_access_court_features is True
        assert snapshot.minutes_unbounded is True
        assert snapshot.remaining_minutes is None
        assert snapshot.features == PLANS[LIFETIME_PLAN].features
        assert snapshot.degraded is False

    @pytest.mark.asyncio
    async def test_admin_admitted_for_any_length(self, store, admin_user) -> None:
        result = await DatabaseEntitlementResolver(store).check_recording_admission(
            admin_user.user_id, 10 * 3600
        )

        assert result.status == AdmissionStatus.ALLOWED
        assert result.funding == FundingSource.UNLIMITED
        assert result.remaining_minutes is None

    @pytest.mark.asyncio
    async def test_unlimited_skips_usage_lookup(self, store) -> None:
        """A broken usage ledger never blocks unlimited users."""
        account = store.add_account(plan_override=True)
        store.fail_on.add("sum_usage")

        snapshot = await DatabaseEntitlementResolver(store).resolve(account.user_id)

        assert snapshot.has_unlimited_access is True
        assert snapshot.degraded is False

    @pytest.mark.asyncio
    async def test_lifetime_plan_is_unbounded(self, store) -> None:
        account = store.add_account(plan="lifetime")

        snapshot = await DatabaseEntitlementResolver(store).resolve(account.user_id)

        assert snapshot.has_unlimited_access is True
        assert snapshot.is_admin is False
        assert snapshot.plan == "lifetime"


class TestResolveMetered:
    @pytest.mark.asyncio
    async def test_starter_without_credits(self, store, starter_user) -> None:
        snapshot = await DatabaseEntitlementResolver(store).resolve(starter_user.user_id)

        assert snapshot.plan == "starter"
        assert snapshot.has_paid_plan is False
        assert snapshot.can_record is False
        assert snapshot.can_generate_reports is False
        assert snapshot.remaining_minutes == 0
        assert snapshot.minutes_unbounded is False
        assert snapshot.features == PlanFeatures()

    @pytest.mark.asyncio
    async def test_starter_with_one_credit_can_record(self, store, starter_user) -> None:
        store.add_credit_grant(starter_user.user_id, credits=1)
        resolver = DatabaseEntitlementResolver(store)

        snapshot = await resolver.resolve(starter_user.user_id)
        result = await resolver.check_recording_admission(starter_user.user_id, 600)

        assert snapshot.has_paid_plan is False
        assert snapshot.credits_remaining == 1
        assert snapshot.can_record is True
        assert snapshot.can_generate_reports is True
        assert result.status == AdmissionStatus.ALLOWED
        assert result.funding == FundingSource.CREDITS

    @pytest.mark.asyncio
    async def test_support_role_is_not_admin(self, store) -> None:
        account = store.add_account(role=UserRole.SUPPORT)

        snapshot = await DatabaseEntitlementResolver(store).resolve(account.user_id)

        assert snapshot.is_support is True
        assert snapshot.is_admin is False
        assert snapshot.has_unlimited_access is False

    @pytest.mark.asyncio
    async def test_subscriber_remaining_minutes(self, store, subscriber, now) -> None:
        store.add_usage(subscriber.user_id, 20, created_at=now)
        store.add_usage(subscriber.user_id, 15, created_at=now - timedelta(days=60))

        snapshot = await DatabaseEntitlementResolver(store).resolve(subscriber.user_id)

        assert snapshot.has_paid_plan is True
        assert snapshot.minute_limit == 120
        assert snapshot.minutes_used == 20
        assert snapshot.remaining_minutes == 100
        assert snapshot.period_start is not None
        assert snapshot.period_end is not None
        assert snapshot.features == PLANS["self_defender"].features

    @pytest.mark.asyncio
    async def test_overage_never_goes_negative(self, store, subscriber, now) -> None:
        store.add_usage(subscriber.user_id, 130, created_at=now)

        snapshot = await DatabaseEntitlementResolver(store).resolve(subscriber.user_id)

        assert snapshot.remaining_minutes == 0

    @pytest.mark.asyncio
    async def test_past_due_loses_paid_access(self, store, subscriber) -> None:
        store.add_subscription(subscriber.user_id, status=SubscriptionStatus.PAST_DUE)
        resolver = DatabaseEntitlementResolver(store)

        snapshot = await resolver.resolve(subscriber.user_id)
        result = await resolver.check_recording_admission(subscriber.user_id, 60)

        assert snapshot.plan == "self_defender"
        assert snapshot.has_paid_plan is False
        assert snapshot.can_record is False
        assert snapshot.remaining_minutes == 0
        assert result.status == AdmissionStatus.NO_ACTIVE_PLAN


class TestRecordingAdmission:
    @pytest.mark.asyncio
    async def test_301_seconds_exceeds_five_minutes(self, store, starter_user) -> None:
        store.add_subscription(starter_user.user_id, minute_limit=5)

        result = await DatabaseEntitlementResolver(store).check_recording_admission(
            starter_user.user_id, 301
        )

        assert result.status == AdmissionStatus.QUOTA_EXCEEDED
        assert result.requested_minutes == 6
        assert result.remaining_minutes == 5

    @pytest.mark.asyncio
    async def test_300_seconds_fits_five_minutes(self, store, starter_user) -> None:
        store.add_subscription(starter_user.user_id, minute_limit=5)

        result = await DatabaseEntitlementResolver(store).check_recording_admission(
            starter_user.user_id, 300
        )

        assert result.status == AdmissionStatus.ALLOWED
        assert result.funding == FundingSource.PLAN
        assert result.requested_minutes == 5

    @pytest.mark.asyncio
    async def test_admission_is_advisory(self, store, starter_user) -> None:
        """Checking admission reserves nothing."""
        store.add_subscription(starter_user.user_id, minute_limit=5)
        resolver = DatabaseEntitlementResolver(store)

        first = await resolver.check_recording_admission(starter_user.user_id, 300)
        second = await resolver.check_recording_admission(starter_user.user_id, 300)

        assert first.allowed and second.allowed
        assert store.usage == []

    @pytest.mark.asyncio
    async def test_require_raises_quota_exceeded(self, store, starter_user) -> None:
        store.add_subscription(starter_user.user_id, minute_limit=5)

        with pytest.raises(QuotaExceededError) as exc_info:
            await DatabaseEntitlementResolver(store).require_recording_admission(
                starter_user.user_id, 301
            )

        assert exc_info.value.requested_minutes == 6
        assert exc_info.value.remaining_minutes == 5

    @pytest.mark.asyncio
    async def test_require_raises_no_active_plan(self, store, starter_user) -> None:
        with pytest.raises(NoActivePlanError):
            await DatabaseEntitlementResolver(store).require_recording_admission(
                starter_user.user_id, 60
            )


class TestDegradedResolution:
    @pytest.mark.asyncio
    async def test_usage_failure_is_most_restrictive(self, store, subscriber) -> None:
        store.fail_on.add("sum_usage")

        snapshot = await DatabaseEntitlementResolver(store).resolve(subscriber.user_id)

        assert snapshot.degraded is True
        assert snapshot.has_paid_plan is True
        assert snapshot.remaining_minutes == 0

    @pytest.mark.asyncio
    async def test_total_outage_never_raises(self, store, subscriber) -> None:
        store.fail_on.update(
            {
                "get_account",
                "get_current_subscription",
                "list_credit_grants",
                "has_valid_certification",
                "sum_usage",
            }
        )

        snapshot = await DatabaseEntitlementResolver(store).resolve(subscriber.user_id)

        assert snapshot.degraded is True
        assert snapshot.can_record is False
        assert snapshot.has_unlimited_access is False
        assert snapshot.remaining_minutes == 0
        assert snapshot.credits_remaining == 0


# ============================================================================
# Test mode & provider factory
# ============================================================================


class TestTestModeProvider:
    @pytest.mark.asyncio
    async def test_everyone_is_unlimited(self) -> None:
        provider = TestModeEntitlementProvider()

        snapshot = await provider.resolve(uuid4())

        assert snapshot.test_mode is True
        assert snapshot.has_unlimited_access is True
        assert snapshot.minutes_unbounded is True
        assert snapshot.plan == LIFETIME_PLAN

    @pytest.mark.asyncio
    async def test_admission_always_allowed(self) -> None:
        result = await TestModeEntitlementProvider().check_recording_admission(uuid4(), 99_999)

        assert result.status == AdmissionStatus.ALLOWED
        assert result.funding == FundingSource.UNLIMITED


class TestBuildEntitlementProvider:
    def test_database_provider_by_default(self, store, test_settings: Settings) -> None:
        provider = build_entitlement_provider(test_settings, store)

        assert isinstance(provider, DatabaseEntitlementResolver)
        assert provider.name == "database"

    def test_test_mode_outside_production(self, store, test_settings: Settings) -> None:
        config = test_settings.model_copy(update={"entitlement_provider": "test_mode"})

        provider = build_entitlement_provider(config, store)

        assert isinstance(provider, TestModeEntitlementProvider)

    def test_test_mode_refused_in_production(self, store, test_settings: Settings) -> None:
        config = test_settings.model_copy(
            update={"entitlement_provider": "test_mode", "environment": "production"}
        )

        with pytest.raises(ConfigurationError):
            build_entitlement_provider(config, store)
