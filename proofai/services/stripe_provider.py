"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - Stripe payloads are read once here and converted into
BillingEvent values; nothing downstream sees Stripe objects.
"""

import json
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import stripe
from structlog import get_logger

from proofai.exceptions import PaymentProviderError, WebhookVerificationError
from proofai.models.api import BillingEventType, SubscriptionStatus
from proofai.models.domain import BillingEvent
from proofai.services.payment_provider import (
    CHECKOUT_MODE_SUBSCRIPTION,
    CheckoutIntent,
    CheckoutSession,
)

logger = get_logger(__name__)

STRIPE_EVENT_TYPES: dict[str, BillingEventType] = {
    "checkout.session.completed": BillingEventType.CHECKOUT_COMPLETED,
    "customer.subscription.created": BillingEventType.SUBSCRIPTION_UPDATED,
    "customer.subscription.updated": BillingEventType.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": BillingEventType.SUBSCRIPTION_DELETED,
    "invoice.paid": BillingEventType.INVOICE_PAID,
    "invoice.payment_succeeded": BillingEventType.INVOICE_PAID,
    "invoice.payment_failed": BillingEventType.INVOICE_FAILED,
}

STRIPE_STATUSES: dict[str, SubscriptionStatus] = {
    "trialing": SubscriptionStatus.TRIALING,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.UNPAID,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.PAUSED,
}


def _get(obj: Any, *path: str | int) -> Any:
    """Walk nested Stripe data, returning None where any step is missing."""
    current = obj
    for key in path:
        if current is None:
            return None
        try:
            current = current[key]
        except (KeyError, IndexError, TypeError):
            return None
    return current


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _user_id(value: Any) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        logger.warning("stripe_metadata_user_id_invalid", value=str(value))
        return None


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the BillingEventSource protocol for Stripe.
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        timeout_seconds: int = 10,
        max_network_retries: int = 2,
    ) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
            timeout_seconds: Per-request timeout for Stripe API calls
            max_network_retries: Retries for failed Stripe API calls
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key
        stripe.max_network_retries = max_network_retries
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)

    async def create_checkout_session(self, intent: CheckoutIntent) -> CheckoutSession:
        """
        Create a Stripe Checkout session.

        The user id travels in metadata (and subscription metadata) so the
        resulting webhooks can be attributed without a customer lookup.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        metadata = {"userId": str(intent.user_id), "priceId": intent.price_id}
        params: dict[str, Any] = {
            "mode": intent.mode,
            "line_items": [{"price": intent.price_id, "quantity": 1}],
            "success_url": intent.success_url,
            "cancel_url": intent.cancel_url,
            "client_reference_id": str(intent.user_id),
            "metadata": metadata,
        }
        if intent.customer_ref:
            params["customer"] = intent.customer_ref
        elif intent.customer_email:
            params["customer_email"] = intent.customer_email
        if intent.mode == CHECKOUT_MODE_SUBSCRIPTION:
            params["subscription_data"] = {"metadata": {"userId": str(intent.user_id)}}

        try:
            logger.info(
                "creating_stripe_checkout_session",
                user_id=str(intent.user_id),
                price_id=intent.price_id,
                mode=intent.mode,
            )
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_failed",
                user_id=str(intent.user_id),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe checkout failed: {exc}") from exc

        logger.info("stripe_checkout_session_created", session_id=session.id)
        return CheckoutSession(
            session_id=session.id, checkout_url=session.url or "", mode=intent.mode
        )

    async def verify_webhook(self, payload: bytes, signature: str) -> BillingEvent | None:
        """
        Verify and parse a Stripe webhook event.

        Args:
            payload: Raw webhook payload
            signature: Stripe-Signature header value

        Returns:
            BillingEvent, or None for Stripe event types we don't act on

        Raises:
            WebhookVerificationError: If signature verification fails
            PaymentProviderError: If a follow-up Stripe lookup fails
        """
        try:
            stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        body = json.loads(payload)
        event_id: str = body["id"]
        stripe_type: str = body["type"]
        event_type = STRIPE_EVENT_TYPES.get(stripe_type)
        logger.info("stripe_webhook_verified", event_id=event_id, event_type=stripe_type)

        if event_type is None:
            logger.info("stripe_webhook_ignored", event_id=event_id, event_type=stripe_type)
            return None

        obj = _get(body, "data", "object")
        if event_type == BillingEventType.CHECKOUT_COMPLETED:
            return self._checkout_event(event_id, obj)
        if event_type in (
            BillingEventType.SUBSCRIPTION_UPDATED,
            BillingEventType.SUBSCRIPTION_DELETED,
        ):
            return self._subscription_event(event_id, event_type, obj)
        return self._invoice_event(event_id, event_type, obj)

    def _retrieve_subscription(self, subscription_id: str) -> Any:
        try:
            return stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as exc:
            logger.error(
                "stripe_subscription_retrieve_failed",
                subscription_id=subscription_id,
                error=str(exc),
            )
            raise PaymentProviderError(f"Failed to retrieve subscription: {exc}") from exc

    def _checkout_event(self, event_id: str, session: Any) -> BillingEvent:
        mode = _get(session, "mode")
        subscription_id = _get(session, "subscription")
        user_id = _user_id(_get(session, "metadata", "userId")) or _user_id(
            _get(session, "client_reference_id")
        )

        if mode == CHECKOUT_MODE_SUBSCRIPTION and subscription_id:
            subscription = self._retrieve_subscription(subscription_id)
            event = self._subscription_event(
                event_id, BillingEventType.CHECKOUT_COMPLETED, subscription
            )
            return replace(
                event,
                user_id=user_id or event.user_id,
                customer_ref=_get(session, "customer") or event.customer_ref,
                checkout_mode=mode,
            )

        return BillingEvent(
            event_id=event_id,
            event_type=BillingEventType.CHECKOUT_COMPLETED,
            user_id=user_id,
            customer_ref=_get(session, "customer"),
            subscription_ref=subscription_id,
            price_ref=_get(session, "metadata", "priceId"),
            checkout_mode=mode,
        )

    def _subscription_event(
        self, event_id: str, event_type: BillingEventType, subscription: Any
    ) -> BillingEvent:
        item = _get(subscription, "items", "data", 0)
        # Newer API versions carry the billing period on the item
        period_start = _get(subscription, "current_period_start") or _get(
            item, "current_period_start"
        )
        period_end = _get(subscription, "current_period_end") or _get(item, "current_period_end")
        stripe_status = _get(subscription, "status")
        status = STRIPE_STATUSES.get(stripe_status) if stripe_status else None
        if stripe_status and status is None:
            logger.warning(
                "stripe_subscription_status_unmapped",
                event_id=event_id,
                status=stripe_status,
            )

        return BillingEvent(
            event_id=event_id,
            event_type=event_type,
            user_id=_user_id(_get(subscription, "metadata", "userId")),
            customer_ref=_get(subscription, "customer"),
            subscription_ref=_get(subscription, "id"),
            price_ref=_get(item, "price", "id"),
            status=status,
            period_start=_timestamp(period_start),
            period_end=_timestamp(period_end),
            cancel_at_period_end=bool(_get(subscription, "cancel_at_period_end")),
        )

    def _invoice_event(
        self, event_id: str, event_type: BillingEventType, invoice: Any
    ) -> BillingEvent:
        subscription_id = _get(invoice, "subscription") or _get(
            invoice, "parent", "subscription_details", "subscription"
        )
        if not subscription_id:
            # One-time invoices carry no subscription state
            return BillingEvent(
                event_id=event_id,
                event_type=event_type,
                user_id=None,
                customer_ref=_get(invoice, "customer"),
            )

        subscription = self._retrieve_subscription(subscription_id)
        event = self._subscription_event(event_id, event_type, subscription)
        if event.customer_ref is None and _get(invoice, "customer"):
            return replace(event, customer_ref=_get(invoice, "customer"))
        return event
