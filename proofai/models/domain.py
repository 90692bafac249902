"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from proofai.models.api import (
    AdmissionStatus,
    BillingEventType,
    FundingSource,
    GrantSource,
    SubscriptionStatus,
    UserRole,
)

STARTER_PLAN = "starter"

# Only these statuses confer paid access
LIVE_SUBSCRIPTION_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


@dataclass(frozen=True)
class UserAccountData:
    """Immutable view of a user profile."""

    user_id: UUID
    role: UserRole = UserRole.USER
    plan: str = STARTER_PLAN
    plan_override: bool = False
    has_court_certification: bool = False
    stripe_customer_id: str | None = None

    @classmethod
    def default(cls, user_id: UUID) -> "UserAccountData":
        """Account assumed when the store has no profile row."""
        return cls(user_id=user_id)


@dataclass(frozen=True)
class SubscriptionGrantData:
    """Immutable view of the current subscription grant."""

    grant_id: UUID
    user_id: UUID
    plan: str
    minute_limit: int
    period_start: datetime
    period_end: datetime
    status: SubscriptionStatus
    stripe_subscription_id: str | None = None
    stripe_customer_id: str | None = None
    stripe_price_id: str | None = None
    cancel_at_period_end: bool = False

    @property
    def is_live(self) -> bool:
        """Only active and trialing subscriptions confer access."""
        return self.status in LIVE_SUBSCRIPTION_STATUSES


@dataclass(frozen=True)
class CreditGrantData:
    """Immutable view of a credit grant."""

    grant_id: UUID
    user_id: UUID
    credits_granted: int
    credits_remaining: int
    expires_at: datetime | None
    granted_by: UUID | None
    reason: str | None
    source: GrantSource
    created_at: datetime

    def is_active(self, now: datetime) -> bool:
        """Active iff unexpired (strictly after now) and not used up."""
        if self.credits_remaining <= 0:
            return False
        return self.expires_at is None or self.expires_at > now


@dataclass(frozen=True)
class CertificationGrantData:
    """Immutable view of a court certification grant."""

    grant_id: UUID
    user_id: UUID
    valid: bool
    granted_by: UUID | None
    reason: str | None
    source: GrantSource
    created_at: datetime


@dataclass(frozen=True)
class UsageIntent:
    """A usage ledger entry before persistence."""

    user_id: UUID
    seconds_consumed: int
    minutes_consumed: int
    recording_ref: str | None

    def __post_init__(self) -> None:
        """Validate usage constraints."""
        if self.seconds_consumed < 0:
            raise ValueError(f"seconds_consumed cannot be negative: {self.seconds_consumed}")
        if self.minutes_consumed < 0:
            raise ValueError(f"minutes_consumed cannot be negative: {self.minutes_consumed}")


@dataclass(frozen=True)
class UsageRecordData:
    """Immutable usage ledger entry after persistence."""

    usage_id: UUID
    user_id: UUID
    seconds_consumed: int
    minutes_consumed: int
    recording_ref: str | None
    created_at: datetime


@dataclass(frozen=True)
class UsageResult:
    """Outcome of a best-effort usage append."""

    success: bool
    minutes_recorded: int
    record: UsageRecordData | None = None
    warning: str | None = None


@dataclass(frozen=True)
class PlanFeatures:
    """Feature flags attached to a plan."""

    pdf_export: bool = True
    folders: bool = True
    watermark: bool = True
    ai_summary: bool = False
    custom_branding: bool = False
    storage_days: int | None = 7


@dataclass(frozen=True)
class GrantSummary:
    """Reconciled view of every grant source for one user."""

    account: UserAccountData
    active_plan: str
    subscription: SubscriptionGrantData | None
    has_override: bool
    has_unlimited_access: bool
    has_paid_plan: bool
    active_credits: int
    has_certification: bool
    degraded: bool = False


@dataclass(frozen=True)
class EntitlementSnapshot:
    """
    Everything a user may do at one point in time.

    remaining_minutes is None exactly when minutes_unbounded is True.
    """

    user_id: UUID
    is_admin: bool
    is_support: bool
    has_unlimited_access: bool
    plan: str
    has_paid_plan: bool
    has_court_certification: bool
    credits_remaining: int
    can_record: bool
    can_generate_reports: bool
    can_access_court_features: bool
    remaining_minutes: int | None
    minutes_unbounded: bool
    features: PlanFeatures = field(default_factory=PlanFeatures)
    period_start: datetime | None = None
    period_end: datetime | None = None
    minute_limit: int = 0
    minutes_used: int = 0
    degraded: bool = False
    test_mode: bool = False

    def __post_init__(self) -> None:
        """Validate snapshot invariants."""
        if self.has_unlimited_access and not (
            self.can_record and self.can_generate_reports and self.can_access_court_features
        ):
            raise ValueError("Unlimited access must allow every gated action")
        if self.minutes_unbounded != (self.remaining_minutes is None):
            raise ValueError("remaining_minutes must be None exactly when unbounded")
        if self.remaining_minutes is not None and self.remaining_minutes < 0:
            raise ValueError(f"remaining_minutes cannot be negative: {self.remaining_minutes}")
        if self.credits_remaining < 0:
            raise ValueError(f"credits_remaining cannot be negative: {self.credits_remaining}")


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of a recording admission check (advisory, not a reservation)."""

    status: AdmissionStatus
    requested_minutes: int
    remaining_minutes: int | None
    funding: FundingSource | None = None
    reason: str | None = None

    @property
    def allowed(self) -> bool:
        return self.status == AdmissionStatus.ALLOWED


@dataclass(frozen=True)
class CreditSpendResult:
    """Outcome of an explicit credit spend."""

    credits_spent: int
    credits_remaining: int
    already_spent: bool = False


@dataclass(frozen=True)
class BillingEvent:
    """
    Provider-agnostic billing event.

    Produced by the payment provider from a verified webhook.
    """

    event_id: str
    event_type: BillingEventType
    user_id: UUID | None
    customer_ref: str | None
    subscription_ref: str | None = None
    price_ref: str | None = None
    status: SubscriptionStatus | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
    checkout_mode: str | None = None
    cancel_at_period_end: bool = False


@dataclass(frozen=True)
class SubscriptionUpsert:
    """Desired state of the current subscription grant."""

    user_id: UUID
    plan: str
    minute_limit: int
    period_start: datetime
    period_end: datetime
    status: SubscriptionStatus
    stripe_subscription_id: str | None
    stripe_customer_id: str | None
    stripe_price_id: str | None
    cancel_at_period_end: bool = False


@dataclass(frozen=True)
class CreditGrantIntent:
    """Credit grant before persistence."""

    user_id: UUID
    credits: int
    expires_at: datetime | None
    granted_by: UUID | None
    reason: str | None
    source: GrantSource
    source_event_id: str | None = None

    def __post_init__(self) -> None:
        """Validate credit constraints."""
        if self.credits <= 0:
            raise ValueError(f"Credit amount must be positive: {self.credits}")


@dataclass(frozen=True)
class CertificationGrantIntent:
    """Certification grant before persistence."""

    user_id: UUID
    granted_by: UUID | None
    reason: str | None
    source: GrantSource
    source_event_id: str | None = None


@dataclass(frozen=True)
class AdminActionRecord:
    """Audit entry for an admin action. Write-only."""

    admin_id: UUID
    action: str
    target_user_id: UUID | None
    reason: str | None = None
    detail: str | None = None
