"""
Plan/Credit Reconciler - merges every grant source into one view.

NO DICTIONARIES - All operations use strongly typed domain models.

Grant sources: profile role and plan, admin plan override, the current
subscription grant, credit grants (admin and purchased) and certification
grants. Unlimited access (admin, override, lifetime) short-circuits the rest.
"""

from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import TypeVar
from uuid import UUID

from structlog import get_logger

from proofai.exceptions import InsufficientCreditsError, UpstreamUnavailableError
from proofai.models.api import UserRole
from proofai.models.domain import (
    CreditGrantData,
    CreditSpendResult,
    GrantSummary,
    SubscriptionGrantData,
    UserAccountData,
)
from proofai.observability.metrics import metrics
from proofai.services.plans import LIFETIME_PLAN, get_plan, is_paid_plan, normalize_plan_name
from proofai.services.record_store import RecordStore

logger = get_logger(__name__)

T = TypeVar("T")

_NO_EXPIRY = datetime.max.replace(tzinfo=UTC)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def has_unlimited_access(account: UserAccountData) -> bool:
    """Admin role, plan override or a lifetime plan bypass every quota."""
    return (
        account.role == UserRole.ADMIN
        or account.plan_override
        or normalize_plan_name(account.plan) == LIFETIME_PLAN
    )


def sum_active_credits(grants: list[CreditGrantData], now: datetime) -> int:
    """Credits left on unexpired grants. A grant expiring exactly at now is expired."""
    return sum(grant.credits_remaining for grant in grants if grant.is_active(now))


def subscription_confers_paid_plan(subscription: SubscriptionGrantData | None) -> bool:
    """A live (active or trialing) subscription on an eligible paid plan."""
    return subscription is not None and subscription.is_live and is_paid_plan(subscription.plan)


def _spend_order(grant: CreditGrantData) -> tuple[datetime, datetime]:
    # Soonest expiry first, no-expiry grants last, oldest first within a tie
    return (grant.expires_at or _NO_EXPIRY, grant.created_at)


class GrantReconciler:
    """
    Reconciles raw grant records into a GrantSummary.

    Lookup failures degrade to the most restrictive value for that source
    and mark the summary degraded; they never raise out of resolve_grants.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def _lookup(
        self, user_id: UUID, source: str, awaitable: Awaitable[T], fallback: T
    ) -> tuple[T, bool]:
        try:
            return await awaitable, False
        except UpstreamUnavailableError as exc:
            logger.warning(
                "grant_lookup_degraded",
                user_id=str(user_id),
                source=source,
                error=str(exc),
            )
            metrics.record_error("UpstreamUnavailableError", source)
            return fallback, True

    async def resolve_grants(self, user_id: UUID, now: datetime | None = None) -> GrantSummary:
        """
        Merge every grant source for a user at a point in time.

        A missing profile is treated as a default starter account.
        """
        now = now or _utc_now()

        account, degraded = await self._lookup(
            user_id, "account", self.store.get_account(user_id), None
        )
        if account is None:
            account = UserAccountData.default(user_id)

        if has_unlimited_access(account):
            # Credits are informational only here, so a failed lookup does not degrade
            grants, _ = await self._lookup(
                user_id, "credits", self.store.list_credit_grants(user_id), []
            )
            return GrantSummary(
                account=account,
                active_plan=normalize_plan_name(account.plan),
                subscription=None,
                has_override=account.plan_override,
                has_unlimited_access=True,
                has_paid_plan=True,
                active_credits=sum_active_credits(grants, now),
                has_certification=True,
                degraded=False,
            )

        subscription, sub_failed = await self._lookup(
            user_id, "subscription", self.store.get_current_subscription(user_id), None
        )
        grants, credits_failed = await self._lookup(
            user_id, "credits", self.store.list_credit_grants(user_id), []
        )
        certified, cert_failed = await self._lookup(
            user_id, "certification", self.store.has_valid_certification(user_id), False
        )

        paid = subscription_confers_paid_plan(subscription)
        active_plan = (
            normalize_plan_name(subscription.plan)
            if subscription is not None
            else normalize_plan_name(account.plan)
        )
        plan_includes_certification = (
            paid
            and subscription is not None
            and get_plan(subscription.plan).includes_court_certification
        )

        return GrantSummary(
            account=account,
            active_plan=active_plan,
            subscription=subscription,
            has_override=account.plan_override,
            has_unlimited_access=False,
            has_paid_plan=paid,
            active_credits=sum_active_credits(grants, now),
            has_certification=(
                account.has_court_certification or plan_includes_certification or certified
            ),
            degraded=degraded or sub_failed or credits_failed or cert_failed,
        )

    async def spend_credits(
        self,
        user_id: UUID,
        quantity: int = 1,
        recording_ref: str | None = None,
        now: datetime | None = None,
    ) -> CreditSpendResult:
        """
        Decrement active credits, soonest-expiring grants first.

        A repeated recording_ref is a no-op. The user's active grants are
        row-locked before the recording_ref check, so concurrent spends of
        the same recording serialize and only the first one decrements.

        Raises:
            ValueError: quantity is not positive
            InsufficientCreditsError: Fewer active credits than quantity
            UpstreamUnavailableError: Store failure (transaction rolled back)
        """
        if quantity <= 0:
            raise ValueError(f"Credit quantity must be positive: {quantity}")
        now = now or _utc_now()

        try:
            locked = await self.store.lock_active_credit_grants(user_id, now)
            active = sorted((g for g in locked if g.is_active(now)), key=_spend_order)
            available = sum(g.credits_remaining for g in active)

            if recording_ref and await self.store.has_credit_consumption(user_id, recording_ref):
                await self.store.rollback()
                logger.info(
                    "credit_spend_duplicate",
                    user_id=str(user_id),
                    recording_ref=recording_ref,
                )
                return CreditSpendResult(
                    credits_spent=0,
                    credits_remaining=available,
                    already_spent=True,
                )

            if available < quantity:
                await self.store.rollback()
                logger.warning(
                    "credit_spend_insufficient",
                    user_id=str(user_id),
                    available=available,
                    required=quantity,
                )
                raise InsufficientCreditsError(available=available, required=quantity)

            outstanding = quantity
            for grant in active:
                if outstanding == 0:
                    break
                take = min(grant.credits_remaining, outstanding)
                await self.store.decrement_credit_grant(grant.grant_id, take, recording_ref)
                outstanding -= take

            await self.store.commit()
        except UpstreamUnavailableError:
            await self.store.rollback()
            raise

        metrics.credits_spent_total.inc(quantity)
        logger.info(
            "credits_spent",
            user_id=str(user_id),
            quantity=quantity,
            remaining=available - quantity,
            recording_ref=recording_ref,
        )
        return CreditSpendResult(credits_spent=quantity, credits_remaining=available - quantity)
