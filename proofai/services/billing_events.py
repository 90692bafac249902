"""
Billing Event Processor - turns billing events into grant upserts.

NO DICTIONARIES - All operations use strongly typed domain models.

Delivery is at-least-once. Every event id is written to the processed
events ledger in the same transaction as its effects, and the effects
themselves upsert on natural keys, so re-delivery never double-grants.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from structlog import get_logger

from proofai.config import Settings, settings
from proofai.exceptions import InvalidTransitionError, UpstreamUnavailableError
from proofai.models.api import (
    BillingEventOutcome,
    BillingEventType,
    GrantSource,
    SubscriptionStatus,
)
from proofai.models.domain import (
    LIVE_SUBSCRIPTION_STATUSES,
    BillingEvent,
    CertificationGrantIntent,
    CreditGrantIntent,
    SubscriptionGrantData,
    SubscriptionUpsert,
)
from proofai.observability.metrics import metrics
from proofai.observability.tracing import trace_operation
from proofai.services.plans import (
    COURT_CERTIFICATION_PACK,
    EMERGENCY_PACK,
    PlanDefinition,
    pack_for_price_id,
    plan_for_price_id,
)
from proofai.services.record_store import RecordStore

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.INCOMPLETE: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING, SubscriptionStatus.CANCELED}
    ),
    SubscriptionStatus.TRIALING: frozenset(
        {
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.PAST_DUE,
            SubscriptionStatus.PAUSED,
            SubscriptionStatus.CANCELED,
        }
    ),
    SubscriptionStatus.ACTIVE: frozenset(
        {SubscriptionStatus.PAST_DUE, SubscriptionStatus.PAUSED, SubscriptionStatus.CANCELED}
    ),
    SubscriptionStatus.PAST_DUE: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED, SubscriptionStatus.UNPAID}
    ),
    SubscriptionStatus.UNPAID: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED}
    ),
    SubscriptionStatus.PAUSED: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED}
    ),
    SubscriptionStatus.CANCELED: frozenset(),
}


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def next_status(current: SubscriptionStatus, requested: SubscriptionStatus) -> SubscriptionStatus:
    """
    Apply one subscription status transition.

    Re-applying the current status is allowed (webhooks repeat themselves).

    Raises:
        InvalidTransitionError: requested is not reachable from current
    """
    if requested == current or requested in ALLOWED_TRANSITIONS[current]:
        return requested
    raise InvalidTransitionError(current.value, requested.value)


class BillingEventProcessor:
    """Applies provider-agnostic billing events to the record store."""

    def __init__(self, store: RecordStore, config: Settings = settings) -> None:
        self.store = store
        self.config = config

    async def apply(self, event: BillingEvent) -> BillingEventOutcome:
        """
        Apply one billing event exactly once.

        Returns the outcome; unresolvable users and unknown prices are
        dropped, not guessed.

        Raises:
            UpstreamUnavailableError: Store failure, nothing committed. The
                provider will redeliver.
        """
        with trace_operation(
            "apply_billing_event", event_id=event.event_id, event_type=event.event_type.value
        ):
            return await self._apply(event)

    async def _apply(self, event: BillingEvent) -> BillingEventOutcome:
        try:
            if await self.store.is_event_processed(event.event_id):
                outcome = BillingEventOutcome.DUPLICATE
                logger.info(
                    "billing_event_duplicate",
                    event_id=event.event_id,
                    event_type=event.event_type.value,
                )
                metrics.record_billing_event(event.event_type.value, outcome.value)
                return outcome

            user_id = await self._resolve_user(event)
            if user_id is None:
                logger.warning(
                    "billing_event_user_unresolved",
                    event_id=event.event_id,
                    event_type=event.event_type.value,
                    customer_ref=event.customer_ref,
                )
                outcome = BillingEventOutcome.DROPPED
            else:
                outcome = await self._dispatch(event, user_id)

            await self.store.mark_event_processed(
                event.event_id, event.event_type.value, outcome.value
            )
            await self.store.commit()
        except UpstreamUnavailableError:
            await self.store.rollback()
            metrics.record_billing_event(event.event_type.value, "error")
            raise

        logger.info(
            "billing_event_processed",
            event_id=event.event_id,
            event_type=event.event_type.value,
            user_id=str(user_id) if user_id else None,
            outcome=outcome.value,
        )
        metrics.record_billing_event(event.event_type.value, outcome.value)
        return outcome

    async def _resolve_user(self, event: BillingEvent) -> UUID | None:
        """Metadata user id first, then the stored customer reference."""
        user_id = event.user_id
        if user_id is None and event.customer_ref:
            user_id = await self.store.find_user_by_customer_ref(event.customer_ref)
        if user_id is None:
            return None

        account = await self.store.get_account(user_id)
        if account is None:
            return None

        if event.customer_ref and account.stripe_customer_id != event.customer_ref:
            await self.store.update_account(user_id, stripe_customer_id=event.customer_ref)
        return user_id

    async def _dispatch(self, event: BillingEvent, user_id: UUID) -> BillingEventOutcome:
        if event.event_type == BillingEventType.CHECKOUT_COMPLETED:
            return await self._checkout_completed(event, user_id)

        if event.event_type == BillingEventType.SUBSCRIPTION_UPDATED:
            if event.status is None:
                # Provider status we do not model; never read it as paid access
                logger.warning(
                    "billing_event_status_unknown",
                    event_id=event.event_id,
                    user_id=str(user_id),
                    subscription_ref=event.subscription_ref,
                )
                return BillingEventOutcome.IGNORED
            plan = self._plan_for_event(event)
            if plan is None:
                return BillingEventOutcome.DROPPED
            return await self._apply_subscription(event, user_id, plan, event.status)

        if event.event_type == BillingEventType.INVOICE_PAID:
            plan = self._plan_for_event(event)
            if plan is None:
                return BillingEventOutcome.DROPPED
            return await self._apply_subscription(event, user_id, plan, SubscriptionStatus.ACTIVE)

        if event.event_type == BillingEventType.SUBSCRIPTION_DELETED:
            return await self._set_status(event, user_id, SubscriptionStatus.CANCELED)

        if event.event_type == BillingEventType.INVOICE_FAILED:
            return await self._set_status(event, user_id, SubscriptionStatus.PAST_DUE)

        return BillingEventOutcome.IGNORED

    def _plan_for_event(self, event: BillingEvent) -> PlanDefinition | None:
        plan = plan_for_price_id(event.price_ref, self.config)
        if plan is None:
            logger.warning(
                "billing_event_unknown_price",
                event_id=event.event_id,
                event_type=event.event_type.value,
                price_ref=event.price_ref,
            )
        return plan

    async def _checkout_completed(self, event: BillingEvent, user_id: UUID) -> BillingEventOutcome:
        if event.checkout_mode == "subscription":
            # Customer is linked in _resolve_user; the subscription itself is
            # applied from the subscription or invoice events when no price is known yet.
            if event.price_ref is None:
                return BillingEventOutcome.APPLIED
            plan = self._plan_for_event(event)
            if plan is None:
                return BillingEventOutcome.DROPPED
            # Checkout sessions carry no subscription status; completion means paid
            return await self._apply_subscription(
                event, user_id, plan, event.status or SubscriptionStatus.ACTIVE
            )

        pack = pack_for_price_id(event.price_ref, self.config)
        if pack == EMERGENCY_PACK:
            grant = await self.store.insert_credit_grant(
                CreditGrantIntent(
                    user_id=user_id,
                    credits=self.config.emergency_pack_credits,
                    expires_at=None,
                    granted_by=None,
                    reason="Emergency pack purchase",
                    source=GrantSource.PURCHASE,
                    source_event_id=event.event_id,
                )
            )
            logger.info(
                "emergency_pack_granted",
                user_id=str(user_id),
                grant_id=str(grant.grant_id),
                credits=grant.credits_granted,
            )
            return BillingEventOutcome.APPLIED

        if pack == COURT_CERTIFICATION_PACK:
            grant = await self.store.insert_certification_grant(
                CertificationGrantIntent(
                    user_id=user_id,
                    granted_by=None,
                    reason="Court certification purchase",
                    source=GrantSource.PURCHASE,
                    source_event_id=event.event_id,
                )
            )
            await self.store.update_account(user_id, has_court_certification=True)
            logger.info(
                "court_certification_purchased",
                user_id=str(user_id),
                grant_id=str(grant.grant_id),
            )
            return BillingEventOutcome.APPLIED

        logger.warning(
            "billing_event_unknown_price",
            event_id=event.event_id,
            event_type=event.event_type.value,
            price_ref=event.price_ref,
        )
        return BillingEventOutcome.DROPPED

    async def _apply_subscription(
        self,
        event: BillingEvent,
        user_id: UUID,
        plan: PlanDefinition,
        requested: SubscriptionStatus,
    ) -> BillingEventOutcome:
        current = await self.store.get_current_subscription(user_id)
        same_subscription = current is not None and (
            event.subscription_ref is None
            or current.stripe_subscription_id == event.subscription_ref
        )

        if current is not None and not same_subscription:
            if not await self._may_supersede(event, user_id, current, requested):
                return BillingEventOutcome.IGNORED

        status = requested
        if same_subscription and current is not None:
            try:
                status = next_status(current.status, requested)
            except InvalidTransitionError as exc:
                logger.warning(
                    "subscription_transition_rejected",
                    event_id=event.event_id,
                    user_id=str(user_id),
                    current=exc.current,
                    requested=exc.requested,
                )
                return BillingEventOutcome.IGNORED

        period_start, period_end = self._period(event, current if same_subscription else None)
        grant = await self.store.upsert_subscription(
            SubscriptionUpsert(
                user_id=user_id,
                plan=plan.name,
                minute_limit=plan.minute_limit,
                period_start=period_start,
                period_end=period_end,
                status=status,
                stripe_subscription_id=event.subscription_ref,
                stripe_customer_id=event.customer_ref,
                stripe_price_id=event.price_ref,
                cancel_at_period_end=event.cancel_at_period_end,
            )
        )
        logger.info(
            "subscription_grant_applied",
            user_id=str(user_id),
            grant_id=str(grant.grant_id),
            plan=grant.plan,
            status=grant.status.value,
            period_end=grant.period_end.isoformat(),
        )
        return BillingEventOutcome.APPLIED

    async def _may_supersede(
        self,
        event: BillingEvent,
        user_id: UUID,
        current: SubscriptionGrantData,
        requested: SubscriptionStatus,
    ) -> bool:
        """
        Whether an event for another subscription may replace the current grant.

        Late events for an already superseded subscription never come back,
        and a subscription that confers no access cannot push aside one that
        does.
        """
        if event.subscription_ref and await self.store.is_subscription_superseded(
            user_id, event.subscription_ref
        ):
            logger.info(
                "billing_event_for_superseded_subscription",
                event_id=event.event_id,
                user_id=str(user_id),
                subscription_ref=event.subscription_ref,
                current_subscription=current.stripe_subscription_id,
            )
            return False

        if current.is_live and requested not in LIVE_SUBSCRIPTION_STATUSES:
            logger.info(
                "billing_event_replacement_not_live",
                event_id=event.event_id,
                user_id=str(user_id),
                subscription_ref=event.subscription_ref,
                status=requested.value,
                current_subscription=current.stripe_subscription_id,
            )
            return False
        return True

    async def _set_status(
        self, event: BillingEvent, user_id: UUID, requested: SubscriptionStatus
    ) -> BillingEventOutcome:
        current = await self.store.get_current_subscription(user_id)
        if current is None or (
            event.subscription_ref is not None
            and current.stripe_subscription_id != event.subscription_ref
        ):
            logger.info(
                "billing_event_no_matching_subscription",
                event_id=event.event_id,
                user_id=str(user_id),
                subscription_ref=event.subscription_ref,
            )
            return BillingEventOutcome.IGNORED

        try:
            status = next_status(current.status, requested)
        except InvalidTransitionError as exc:
            logger.warning(
                "subscription_transition_rejected",
                event_id=event.event_id,
                user_id=str(user_id),
                current=exc.current,
                requested=exc.requested,
            )
            return BillingEventOutcome.IGNORED

        await self.store.upsert_subscription(
            SubscriptionUpsert(
                user_id=user_id,
                plan=current.plan,
                minute_limit=current.minute_limit,
                period_start=current.period_start,
                period_end=current.period_end,
                status=status,
                stripe_subscription_id=current.stripe_subscription_id,
                stripe_customer_id=current.stripe_customer_id,
                stripe_price_id=current.stripe_price_id,
                cancel_at_period_end=current.cancel_at_period_end,
            )
        )
        logger.info(
            "subscription_status_changed",
            user_id=str(user_id),
            previous=current.status.value,
            status=status.value,
        )
        return BillingEventOutcome.APPLIED

    def _period(
        self, event: BillingEvent, current: SubscriptionGrantData | None
    ) -> tuple[datetime, datetime]:
        period_start = event.period_start or (current.period_start if current else _utc_now())
        period_end = event.period_end or (
            current.period_end
            if current
            else period_start + timedelta(days=self.config.default_billing_period_days)
        )
        return period_start, period_end
