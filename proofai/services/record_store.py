"""
Record Store - storage interface consumed by the entitlement core.

NO DICTIONARIES - All reads return strongly typed domain models.

The core only needs get/list/upsert/append keyed by user id and time range.
RecordStore is the protocol; SqlRecordStore implements it on SQLAlchemy.
Write methods flush but never commit; the calling service owns the unit of
work and calls commit() once.
"""

import asyncio
from collections.abc import Awaitable
from datetime import datetime
from typing import Protocol, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from proofai.db.models import (
    AdminAction,
    CertificationGrant,
    CreditConsumption,
    CreditGrant,
    ProcessedBillingEvent,
    Profile,
    SubscriptionGrant,
    UsageRecord,
    utc_now,
)
from proofai.exceptions import (
    AccountNotFoundError,
    UpstreamUnavailableError,
    WriteVerificationError,
)
from proofai.models.api import GrantSource, SubscriptionStatus, UserRole
from proofai.models.domain import (
    AdminActionRecord,
    CertificationGrantData,
    CertificationGrantIntent,
    CreditGrantData,
    CreditGrantIntent,
    SubscriptionGrantData,
    SubscriptionUpsert,
    UsageIntent,
    UsageRecordData,
    UserAccountData,
)

logger = get_logger(__name__)

T = TypeVar("T")


class RecordStore(Protocol):
    """
    Storage protocol for every record the entitlement core reads or writes.

    Implementations raise UpstreamUnavailableError when the backing store
    fails or times out.
    """

    async def get_account(self, user_id: UUID) -> UserAccountData | None: ...

    async def update_account(
        self,
        user_id: UUID,
        *,
        role: UserRole | None = None,
        plan: str | None = None,
        plan_override: bool | None = None,
        has_court_certification: bool | None = None,
        stripe_customer_id: str | None = None,
    ) -> UserAccountData: ...

    async def find_user_by_customer_ref(self, customer_ref: str) -> UUID | None: ...

    async def get_current_subscription(self, user_id: UUID) -> SubscriptionGrantData | None: ...

    async def upsert_subscription(self, upsert: SubscriptionUpsert) -> SubscriptionGrantData: ...

    async def is_subscription_superseded(self, user_id: UUID, subscription_ref: str) -> bool: ...

    async def list_credit_grants(self, user_id: UUID) -> list[CreditGrantData]: ...

    async def insert_credit_grant(self, intent: CreditGrantIntent) -> CreditGrantData: ...

    async def lock_active_credit_grants(
        self, user_id: UUID, now: datetime
    ) -> list[CreditGrantData]: ...

    async def decrement_credit_grant(
        self, grant_id: UUID, quantity: int, recording_ref: str | None
    ) -> CreditGrantData: ...

    async def has_credit_consumption(self, user_id: UUID, recording_ref: str) -> bool: ...

    async def has_valid_certification(self, user_id: UUID) -> bool: ...

    async def insert_certification_grant(
        self, intent: CertificationGrantIntent
    ) -> CertificationGrantData: ...

    async def set_certification_validity(
        self, grant_id: UUID, valid: bool
    ) -> CertificationGrantData | None: ...

    async def append_usage(self, intent: UsageIntent) -> UsageRecordData: ...

    async def sum_usage(
        self, user_id: UUID, period_start: datetime, period_end: datetime
    ) -> int: ...

    async def is_event_processed(self, event_id: str) -> bool: ...

    async def mark_event_processed(self, event_id: str, event_type: str, outcome: str) -> None: ...

    async def append_admin_action(self, record: AdminActionRecord) -> None: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


class SqlRecordStore:
    """
    RecordStore backed by an async SQLAlchemy session.

    Every call is bounded by timeout_seconds; driver errors and timeouts
    surface as UpstreamUnavailableError.
    """

    def __init__(self, session: AsyncSession, timeout_seconds: float = 5.0) -> None:
        self.session = session
        self.timeout_seconds = timeout_seconds

    async def _guard(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except TimeoutError as exc:
            logger.error("record_store_timeout", operation=operation, timeout=self.timeout_seconds)
            raise UpstreamUnavailableError(operation, "timed out") from exc
        except SQLAlchemyError as exc:
            logger.error("record_store_error", operation=operation, error=str(exc))
            raise UpstreamUnavailableError(operation, str(exc)) from exc

    # ========================================================================
    # Accounts
    # ========================================================================

    async def get_account(self, user_id: UUID) -> UserAccountData | None:
        profile = await self._guard("get_account", self.session.get(Profile, user_id))
        return _profile_to_domain(profile) if profile else None

    async def update_account(
        self,
        user_id: UUID,
        *,
        role: UserRole | None = None,
        plan: str | None = None,
        plan_override: bool | None = None,
        has_court_certification: bool | None = None,
        stripe_customer_id: str | None = None,
    ) -> UserAccountData:
        """
        Update profile fields that are not None.

        Raises:
            AccountNotFoundError: No profile row for user_id
        """
        profile = await self._guard("update_account", self.session.get(Profile, user_id))
        if profile is None:
            raise AccountNotFoundError(user_id)

        if role is not None:
            profile.role = role.value
        if plan is not None:
            profile.plan = plan
        if plan_override is not None:
            profile.plan_override = plan_override
        if has_court_certification is not None:
            profile.has_court_certification = has_court_certification
            profile.court_certified_at = utc_now() if has_court_certification else None
        if stripe_customer_id is not None:
            profile.stripe_customer_id = stripe_customer_id

        await self._guard("update_account", self.session.flush())
        return _profile_to_domain(profile)

    async def find_user_by_customer_ref(self, customer_ref: str) -> UUID | None:
        stmt = select(Profile.id).where(Profile.stripe_customer_id == customer_ref)
        result = await self._guard("find_user_by_customer_ref", self.session.execute(stmt))
        user_id: UUID | None = result.scalar_one_or_none()
        if user_id is not None:
            return user_id

        # Fall back to subscription history for customers linked before profiles stored it
        stmt = (
            select(SubscriptionGrant.user_id)
            .where(SubscriptionGrant.stripe_customer_id == customer_ref)
            .order_by(SubscriptionGrant.created_at.desc())
            .limit(1)
        )
        result = await self._guard("find_user_by_customer_ref", self.session.execute(stmt))
        return result.scalar_one_or_none()

    # ========================================================================
    # Subscriptions
    # ========================================================================

    async def _current_subscription_row(self, user_id: UUID) -> SubscriptionGrant | None:
        stmt = select(SubscriptionGrant).where(
            SubscriptionGrant.user_id == user_id,
            SubscriptionGrant.superseded_at.is_(None),
        )
        result = await self._guard("get_current_subscription", self.session.execute(stmt))
        return result.scalar_one_or_none()

    async def get_current_subscription(self, user_id: UUID) -> SubscriptionGrantData | None:
        row = await self._current_subscription_row(user_id)
        return _subscription_to_domain(row) if row else None

    async def upsert_subscription(self, upsert: SubscriptionUpsert) -> SubscriptionGrantData:
        """
        Write the current subscription grant for a user.

        Same external subscription id: update in place. Different id (plan
        change or renewal under a new subscription): the old grant is marked
        superseded and a new one inserted.
        """
        current = await self._current_subscription_row(upsert.user_id)

        if current is not None and (
            upsert.stripe_subscription_id is None
            or current.stripe_subscription_id == upsert.stripe_subscription_id
        ):
            current.plan = upsert.plan
            current.minute_limit = upsert.minute_limit
            current.period_start = upsert.period_start
            current.period_end = upsert.period_end
            current.status = upsert.status.value
            current.cancel_at_period_end = upsert.cancel_at_period_end
            current.stripe_customer_id = upsert.stripe_customer_id or current.stripe_customer_id
            current.stripe_price_id = upsert.stripe_price_id or current.stripe_price_id
            await self._guard("upsert_subscription", self.session.flush())
            return _subscription_to_domain(current)

        if current is not None:
            current.superseded_at = utc_now()
            await self._guard("upsert_subscription", self.session.flush())
            logger.info(
                "subscription_grant_superseded",
                user_id=str(upsert.user_id),
                grant_id=str(current.id),
                old_subscription=current.stripe_subscription_id,
                new_subscription=upsert.stripe_subscription_id,
            )

        grant = SubscriptionGrant(
            user_id=upsert.user_id,
            plan=upsert.plan,
            minute_limit=upsert.minute_limit,
            period_start=upsert.period_start,
            period_end=upsert.period_end,
            status=upsert.status.value,
            cancel_at_period_end=upsert.cancel_at_period_end,
            stripe_subscription_id=upsert.stripe_subscription_id,
            stripe_customer_id=upsert.stripe_customer_id,
            stripe_price_id=upsert.stripe_price_id,
        )
        self.session.add(grant)
        await self._guard("upsert_subscription", self.session.flush())

        verified = await self._guard(
            "upsert_subscription", self.session.get(SubscriptionGrant, grant.id)
        )
        if verified is None:
            raise WriteVerificationError(f"SubscriptionGrant {grant.id} not found after insert")
        return _subscription_to_domain(verified)

    async def is_subscription_superseded(self, user_id: UUID, subscription_ref: str) -> bool:
        """True when subscription_ref only survives in the user's grant history."""
        stmt = (
            select(SubscriptionGrant.id)
            .where(
                SubscriptionGrant.user_id == user_id,
                SubscriptionGrant.stripe_subscription_id == subscription_ref,
                SubscriptionGrant.superseded_at.is_not(None),
            )
            .limit(1)
        )
        result = await self._guard("is_subscription_superseded", self.session.execute(stmt))
        return result.scalar_one_or_none() is not None

    # ========================================================================
    # Credits
    # ========================================================================

    async def list_credit_grants(self, user_id: UUID) -> list[CreditGrantData]:
        """Grants with credits left, expired or not. Expiry is judged by the caller."""
        stmt = select(CreditGrant).where(
            CreditGrant.user_id == user_id,
            CreditGrant.credits_remaining > 0,
        )
        result = await self._guard("list_credit_grants", self.session.execute(stmt))
        return [_credit_to_domain(row) for row in result.scalars().all()]

    async def insert_credit_grant(self, intent: CreditGrantIntent) -> CreditGrantData:
        """Insert a grant; a repeated source_event_id returns the existing grant."""
        if intent.source_event_id:
            stmt = select(CreditGrant).where(CreditGrant.source_event_id == intent.source_event_id)
            result = await self._guard("insert_credit_grant", self.session.execute(stmt))
            existing = result.scalar_one_or_none()
            if existing is not None:
                return _credit_to_domain(existing)

        grant = CreditGrant(
            user_id=intent.user_id,
            credits_granted=intent.credits,
            credits_remaining=intent.credits,
            expires_at=intent.expires_at,
            granted_by=intent.granted_by,
            reason=intent.reason,
            source=intent.source.value,
            source_event_id=intent.source_event_id,
        )
        self.session.add(grant)
        await self._guard("insert_credit_grant", self.session.flush())

        verified = await self._guard("insert_credit_grant", self.session.get(CreditGrant, grant.id))
        if verified is None:
            raise WriteVerificationError(f"CreditGrant {grant.id} not found after insert")
        return _credit_to_domain(verified)

    async def lock_active_credit_grants(
        self, user_id: UUID, now: datetime
    ) -> list[CreditGrantData]:
        """Lock (SELECT FOR UPDATE) unexpired grants with credits left."""
        stmt = (
            select(CreditGrant)
            .where(
                CreditGrant.user_id == user_id,
                CreditGrant.credits_remaining > 0,
                (CreditGrant.expires_at.is_(None)) | (CreditGrant.expires_at > now),
            )
            .with_for_update()
        )
        result = await self._guard("lock_active_credit_grants", self.session.execute(stmt))
        return [_credit_to_domain(row) for row in result.scalars().all()]

    async def decrement_credit_grant(
        self, grant_id: UUID, quantity: int, recording_ref: str | None
    ) -> CreditGrantData:
        grant = await self._guard("decrement_credit_grant", self.session.get(CreditGrant, grant_id))
        if grant is None:
            raise WriteVerificationError(f"CreditGrant {grant_id} disappeared while locked")
        if grant.credits_remaining < quantity:
            raise WriteVerificationError(
                f"CreditGrant {grant_id} has {grant.credits_remaining}, cannot take {quantity}"
            )

        grant.credits_remaining = grant.credits_remaining - quantity
        self.session.add(
            CreditConsumption(
                grant_id=grant.id,
                user_id=grant.user_id,
                quantity=quantity,
                recording_ref=recording_ref,
            )
        )
        await self._guard("decrement_credit_grant", self.session.flush())
        return _credit_to_domain(grant)

    async def has_credit_consumption(self, user_id: UUID, recording_ref: str) -> bool:
        stmt = (
            select(CreditConsumption.id)
            .where(
                CreditConsumption.user_id == user_id,
                CreditConsumption.recording_ref == recording_ref,
            )
            .limit(1)
        )
        result = await self._guard("has_credit_consumption", self.session.execute(stmt))
        return result.scalar_one_or_none() is not None

    # ========================================================================
    # Certifications
    # ========================================================================

    async def has_valid_certification(self, user_id: UUID) -> bool:
        stmt = (
            select(CertificationGrant.id)
            .where(CertificationGrant.user_id == user_id, CertificationGrant.valid.is_(True))
            .limit(1)
        )
        result = await self._guard("has_valid_certification", self.session.execute(stmt))
        return result.scalar_one_or_none() is not None

    async def insert_certification_grant(
        self, intent: CertificationGrantIntent
    ) -> CertificationGrantData:
        """Insert a grant; a repeated source_event_id returns the existing grant."""
        if intent.source_event_id:
            stmt = select(CertificationGrant).where(
                CertificationGrant.source_event_id == intent.source_event_id
            )
            result = await self._guard("insert_certification_grant", self.session.execute(stmt))
            existing = result.scalar_one_or_none()
            if existing is not None:
                return _certification_to_domain(existing)

        grant = CertificationGrant(
            user_id=intent.user_id,
            granted_by=intent.granted_by,
            reason=intent.reason,
            valid=True,
            source=intent.source.value,
            source_event_id=intent.source_event_id,
        )
        self.session.add(grant)
        await self._guard("insert_certification_grant", self.session.flush())
        return _certification_to_domain(grant)

    async def set_certification_validity(
        self, grant_id: UUID, valid: bool
    ) -> CertificationGrantData | None:
        grant = await self._guard(
            "set_certification_validity", self.session.get(CertificationGrant, grant_id)
        )
        if grant is None:
            return None
        grant.valid = valid
        await self._guard("set_certification_validity", self.session.flush())
        return _certification_to_domain(grant)

    # ========================================================================
    # Usage
    # ========================================================================

    async def append_usage(self, intent: UsageIntent) -> UsageRecordData:
        record = UsageRecord(
            user_id=intent.user_id,
            seconds_consumed=intent.seconds_consumed,
            minutes_consumed=intent.minutes_consumed,
            recording_ref=intent.recording_ref,
        )
        self.session.add(record)
        await self._guard("append_usage", self.session.flush())
        return UsageRecordData(
            usage_id=record.id,
            user_id=record.user_id,
            seconds_consumed=record.seconds_consumed,
            minutes_consumed=record.minutes_consumed,
            recording_ref=record.recording_ref,
            created_at=record.created_at,
        )

    async def sum_usage(self, user_id: UUID, period_start: datetime, period_end: datetime) -> int:
        """Minutes consumed with created_at in [period_start, period_end], both inclusive."""
        stmt = select(func.coalesce(func.sum(UsageRecord.minutes_consumed), 0)).where(
            UsageRecord.user_id == user_id,
            UsageRecord.created_at >= period_start,
            UsageRecord.created_at <= period_end,
        )
        result = await self._guard("sum_usage", self.session.execute(stmt))
        return int(result.scalar_one())

    # ========================================================================
    # Billing events & audit
    # ========================================================================

    async def is_event_processed(self, event_id: str) -> bool:
        row = await self._guard(
            "is_event_processed", self.session.get(ProcessedBillingEvent, event_id)
        )
        return row is not None

    async def mark_event_processed(self, event_id: str, event_type: str, outcome: str) -> None:
        stmt = (
            pg_insert(ProcessedBillingEvent)
            .values(event_id=event_id, event_type=event_type, outcome=outcome)
            .on_conflict_do_nothing(index_elements=["event_id"])
        )
        await self._guard("mark_event_processed", self.session.execute(stmt))

    async def append_admin_action(self, record: AdminActionRecord) -> None:
        self.session.add(
            AdminAction(
                admin_id=record.admin_id,
                action=record.action,
                target_user_id=record.target_user_id,
                reason=record.reason,
                detail=record.detail,
            )
        )
        await self._guard("append_admin_action", self.session.flush())

    # ========================================================================
    # Unit of work
    # ========================================================================

    async def commit(self) -> None:
        await self._guard("commit", self.session.commit())

    async def rollback(self) -> None:
        await self.session.rollback()


# ============================================================================
# ORM -> domain conversion
# ============================================================================


def _profile_to_domain(profile: Profile) -> UserAccountData:
    return UserAccountData(
        user_id=profile.id,
        role=UserRole(profile.role),
        plan=profile.plan,
        plan_override=profile.plan_override,
        has_court_certification=profile.has_court_certification,
        stripe_customer_id=profile.stripe_customer_id,
    )


def _subscription_to_domain(row: SubscriptionGrant) -> SubscriptionGrantData:
    return SubscriptionGrantData(
        grant_id=row.id,
        user_id=row.user_id,
        plan=row.plan,
        minute_limit=row.minute_limit,
        period_start=row.period_start,
        period_end=row.period_end,
        status=SubscriptionStatus(row.status),
        stripe_subscription_id=row.stripe_subscription_id,
        stripe_customer_id=row.stripe_customer_id,
        stripe_price_id=row.stripe_price_id,
        cancel_at_period_end=row.cancel_at_period_end,
    )


def _credit_to_domain(row: CreditGrant) -> CreditGrantData:
    return CreditGrantData(
        grant_id=row.id,
        user_id=row.user_id,
        credits_granted=row.credits_granted,
        credits_remaining=row.credits_remaining,
        expires_at=row.expires_at,
        granted_by=row.granted_by,
        reason=row.reason,
        source=GrantSource(row.source),
        created_at=row.created_at,
    )


def _certification_to_domain(row: CertificationGrant) -> CertificationGrantData:
    return CertificationGrantData(
        grant_id=row.id,
        user_id=row.user_id,
        valid=row.valid,
        granted_by=row.granted_by,
        reason=row.reason,
        source=GrantSource(row.source),
        created_at=row.created_at,
    )
