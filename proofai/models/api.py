"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class UserRole(str, Enum):
    """Account role enumeration."""

    USER = "user"
    SUPPORT = "support"
    ADMIN = "admin"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status (mirrors the billing provider)."""

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    PAUSED = "paused"


class AdmissionStatus(str, Enum):
    """Outcome of a recording admission check."""

    ALLOWED = "allowed"
    QUOTA_EXCEEDED = "quota_exceeded"
    NO_ACTIVE_PLAN = "no_active_plan"


class FundingSource(str, Enum):
    """What pays for an admitted recording."""

    UNLIMITED = "unlimited"
    PLAN = "plan"
    CREDITS = "credits"


class BillingEventType(str, Enum):
    """Provider-agnostic billing event types."""

    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    INVOICE_PAID = "invoice_paid"
    INVOICE_FAILED = "invoice_failed"


class BillingEventOutcome(str, Enum):
    """What happened to a billing event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    DROPPED = "dropped"
    IGNORED = "ignored"


class GrantSource(str, Enum):
    """Origin of a credit or certification grant."""

    ADMIN = "admin"
    PURCHASE = "purchase"


class AdminActionType(str, Enum):
    """Audited admin actions."""

    GRANT_CREDITS = "grant_credits"
    GRANT_CERTIFICATION = "grant_certification"
    REVOKE_CERTIFICATION = "revoke_certification"
    SET_PLAN_OVERRIDE = "set_plan_override"
    SET_ROLE = "set_role"
    SET_PLAN = "set_plan"


# ============================================================================
# Entitlement Models
# ============================================================================


class PlanFeaturesResponse(BaseModel):
    """Feature flags granted by the effective plan."""

    pdf_export: bool
    folders: bool
    watermark: bool
    ai_summary: bool
    custom_branding: bool
    storage_days: int | None = Field(None, description="None means unlimited retention")


class EntitlementResponse(BaseModel):
    """GET /v1/entitlements/me response."""

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
    remaining_minutes: int | None = Field(
        None, description="None when minutes_unbounded is true"
    )
    minutes_unbounded: bool
    features: PlanFeaturesResponse
    degraded: bool = False
    test_mode: bool = False


# ============================================================================
# Admission Models
# ============================================================================


class AdmissionRequest(BaseModel):
    """POST /v1/recordings/admission request body."""

    duration_seconds: int = Field(..., ge=0, description="Planned recording length")


class AdmissionResponse(BaseModel):
    """POST /v1/recordings/admission response."""

    status: AdmissionStatus
    allowed: bool
    requested_minutes: int
    remaining_minutes: int | None = None
    funding: FundingSource | None = None
    reason: str | None = None


# ============================================================================
# Usage Models
# ============================================================================


class UsageRecordRequest(BaseModel):
    """POST /v1/usage request body."""

    duration_seconds: int = Field(..., ge=0)
    recording_ref: str | None = Field(None, max_length=255)


class UsageRecordResponse(BaseModel):
    """POST /v1/usage response. success=false carries a warning, never an error status."""

    success: bool
    minutes_recorded: int
    usage_id: UUID | None = None
    warning: str | None = None


class UsageSummaryResponse(BaseModel):
    """GET /v1/usage/current response."""

    period_start: datetime | None
    period_end: datetime | None
    minutes_used: int
    minute_limit: int
    remaining_minutes: int | None
    minutes_unbounded: bool


class SpendCreditsRequest(BaseModel):
    """POST /v1/credits/spend request body."""

    quantity: int = Field(1, gt=0, le=100)
    recording_ref: str | None = Field(None, max_length=255)


class SpendCreditsResponse(BaseModel):
    """POST /v1/credits/spend response."""

    credits_spent: int
    credits_remaining: int
    already_spent: bool = False


# ============================================================================
# Billing Models
# ============================================================================


class CheckoutRequest(BaseModel):
    """POST /v1/billing/checkout request body."""

    price_id: str = Field(..., min_length=1, max_length=255)
    customer_email: str | None = Field(None, max_length=255)

    @field_validator("price_id")
    @classmethod
    def validate_price_id(cls, v: str) -> str:
        """Stripe price ids always start with price_."""
        if not v.startswith("price_"):
            raise ValueError('price_id must start with "price_"')
        return v


class CheckoutResponse(BaseModel):
    """POST /v1/billing/checkout response."""

    session_id: str
    checkout_url: str
    mode: str


class WebhookResponse(BaseModel):
    """Stripe webhook acknowledgement."""

    status: BillingEventOutcome
    event_id: str | None = None


# ============================================================================
# Admin Models
# ============================================================================


class GrantCreditsRequest(BaseModel):
    """POST /admin/users/{user_id}/credits request body."""

    credits: int = Field(..., gt=0, le=10_000)
    expires_in_days: int | None = Field(None, ge=1, le=3650)
    reason: str | None = Field(None, max_length=500)


class CreditGrantResponse(BaseModel):
    """Credit grant as stored."""

    grant_id: UUID
    user_id: UUID
    credits_granted: int
    credits_remaining: int
    expires_at: datetime | None
    granted_by: UUID | None
    reason: str | None
    created_at: datetime


class GrantCertificationRequest(BaseModel):
    """POST /admin/users/{user_id}/certifications request body."""

    reason: str | None = Field(None, max_length=500)


class RevokeCertificationRequest(BaseModel):
    """POST /admin/certifications/{grant_id}/revoke request body."""

    reason: str | None = Field(None, max_length=500)


class CertificationGrantResponse(BaseModel):
    """Certification grant as stored."""

    grant_id: UUID
    user_id: UUID
    valid: bool
    granted_by: UUID | None
    reason: str | None
    created_at: datetime


class PlanOverrideRequest(BaseModel):
    """PUT /admin/users/{user_id}/plan-override request body."""

    enabled: bool
    reason: str | None = Field(None, max_length=500)


class PlanUpdateRequest(BaseModel):
    """PUT /admin/users/{user_id}/plan request body."""

    plan: str = Field(..., min_length=1, max_length=50)
    reason: str | None = Field(None, max_length=500)


class RoleUpdateRequest(BaseModel):
    """PUT /admin/users/{user_id}/role request body."""

    role: UserRole
    reason: str | None = Field(None, max_length=500)


class AccountResponse(BaseModel):
    """User account as stored."""

    user_id: UUID
    role: UserRole
    plan: str
    plan_override: bool
    has_court_certification: bool


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    entitlement_provider: str
    timestamp: datetime
