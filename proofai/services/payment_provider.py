"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from proofai.models.domain import BillingEvent

CHECKOUT_MODE_SUBSCRIPTION = "subscription"
CHECKOUT_MODE_PAYMENT = "payment"


@dataclass(frozen=True)
class CheckoutIntent:
    """
    Provider-agnostic checkout request.

    mode is "subscription" for plans and "payment" for one-time packs.
    """

    user_id: UUID
    price_id: str
    mode: str
    success_url: str
    cancel_url: str
    customer_email: str | None = None
    customer_ref: str | None = None


@dataclass(frozen=True)
class CheckoutSession:
    """Hosted checkout session created by the provider."""

    session_id: str
    checkout_url: str
    mode: str


class BillingEventSource(Protocol):
    """
    Payment provider protocol.

    Any payment provider must turn its webhooks into BillingEvent values
    and create hosted checkout sessions. Signature mechanics stay inside
    the implementation.
    """

    async def verify_webhook(self, payload: bytes, signature: str) -> BillingEvent | None:
        """
        Verify and parse a webhook into a BillingEvent.

        Args:
            payload: Raw webhook payload
            signature: Webhook signature for verification

        Returns:
            The billing event, or None for event types that carry no
            entitlement change

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...

    async def create_checkout_session(self, intent: CheckoutIntent) -> CheckoutSession:
        """
        Create a hosted checkout session.

        Raises:
            PaymentProviderError: If the provider call fails
        """
        ...
