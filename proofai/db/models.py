"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Profile(Base):
    """
    ORM model for profiles table.

    One row per user. Owned by the identity backend; this service only
    mutates role, plan, plan_override and the certification flag.
    """

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True)

    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    plan: Mapped[str] = mapped_column(String(50), nullable=False, default="starter")
    plan_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    has_court_certification: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    court_certified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("role IN ('user', 'support', 'admin')", name="ck_profile_role"),
        Index(
            "idx_profiles_stripe_customer",
            "stripe_customer_id",
            unique=True,
            postgresql_where=(stripe_customer_id.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Profile(id={self.id}, role={self.role}, plan={self.plan})>"


class SubscriptionGrant(Base):
    """
    ORM model for subscription_grants table.

    Superseded rows are kept; the current grant is the one with
    superseded_at IS NULL (at most one per user).
    """

    __tablename__ = "subscription_grants"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True
    )

    plan: Mapped[str] = mapped_column(String(50), nullable=False)
    minute_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # External billing references
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    superseded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("minute_limit >= 0", name="ck_subscription_minutes_non_negative"),
        CheckConstraint(
            "status IN ('trialing', 'active', 'past_due', 'canceled', 'unpaid', "
            "'incomplete', 'paused')",
            name="ck_subscription_status",
        ),
        Index(
            "uq_subscription_current_per_user",
            "user_id",
            unique=True,
            postgresql_where=(superseded_at.is_(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<SubscriptionGrant(id={self.id}, user_id={self.user_id}, "
            f"plan={self.plan}, status={self.status})>"
        )


class CreditGrant(Base):
    """
    ORM model for credit_grants table.

    Never deleted. Only credits_remaining changes after insert.
    """

    __tablename__ = "credit_grants"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True
    )

    credits_granted: Mapped[int] = mapped_column(Integer, nullable=False)
    credits_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    granted_by: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="admin")
    source_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_granted > 0", name="ck_credit_granted_positive"),
        CheckConstraint("credits_remaining >= 0", name="ck_credit_remaining_non_negative"),
        CheckConstraint(
            "credits_remaining <= credits_granted", name="ck_credit_remaining_le_granted"
        ),
        Index(
            "uq_credit_grants_source_event",
            "source_event_id",
            unique=True,
            postgresql_where=(source_event_id.isnot(None)),
        ),
        Index("idx_credit_grants_user_expires", "user_id", "expires_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditGrant(id={self.id}, user_id={self.user_id}, "
            f"remaining={self.credits_remaining}/{self.credits_granted})>"
        )


class CreditConsumption(Base):
    """
    ORM model for credit_consumptions table.

    Append-only record of explicit credit spends.
    """

    __tablename__ = "credit_consumptions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    grant_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("credit_grants.id"), nullable=False, index=True
    )
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    recording_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_consumption_quantity_positive"),
        Index(
            "idx_credit_consumptions_recording",
            "user_id",
            "recording_ref",
            postgresql_where=(recording_ref.isnot(None)),
        ),
    )


class CertificationGrant(Base):
    """
    ORM model for court_certifications table.

    Invalidated by flipping valid, never deleted.
    """

    __tablename__ = "court_certifications"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("profiles.id"), nullable=False, index=True
    )
    granted_by: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="admin")
    source_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("idx_court_certifications_user_valid", "user_id", "valid"),
        Index(
            "uq_court_certifications_source_event",
            "source_event_id",
            unique=True,
            postgresql_where=(source_event_id.isnot(None)),
        ),
    )


class UsageRecord(Base):
    """
    ORM model for usage_records table.

    Append-only ledger. minutes_consumed is ceil(seconds_consumed / 60),
    computed once at insert.
    """

    __tablename__ = "usage_records"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    seconds_consumed: Mapped[int] = mapped_column(BigInteger, nullable=False)
    minutes_consumed: Mapped[int] = mapped_column(Integer, nullable=False)
    recording_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("seconds_consumed >= 0", name="ck_usage_seconds_non_negative"),
        CheckConstraint("minutes_consumed >= 0", name="ck_usage_minutes_non_negative"),
        Index("idx_usage_records_user_created", "user_id", "created_at"),
    )


class ProcessedBillingEvent(Base):
    """
    ORM model for processed_billing_events table.

    Idempotency ledger for at-least-once webhook delivery.
    """

    __tablename__ = "processed_billing_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class AdminAction(Base):
    """
    ORM model for admin_actions table.

    Write-only audit sink.
    """

    __tablename__ = "admin_actions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    admin_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    target_user_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_admin_actions_target", "target_user_id", "created_at"),)
