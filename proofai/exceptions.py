"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class EntitlementError(Exception):
    """Base exception for all entitlement and metering errors."""

    pass


class AccountNotFoundError(EntitlementError):
    """Raised when a user account doesn't exist."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__(f"Account not found: {user_id}")


class QuotaExceededError(EntitlementError):
    """Raised when a recording would exceed the remaining minute quota."""

    def __init__(self, requested_minutes: int, remaining_minutes: int) -> None:
        self.requested_minutes = requested_minutes
        self.remaining_minutes = remaining_minutes
        super().__init__(
            f"Quota exceeded. Requested: {requested_minutes} min, "
            f"Remaining: {remaining_minutes} min"
        )


class NoActivePlanError(EntitlementError):
    """Raised when the user has no plan, override or credits that allow recording."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__(f"No active plan or credits for {user_id}")


class InsufficientCreditsError(EntitlementError):
    """Raised when an explicit credit spend exceeds the active credits."""

    def __init__(self, available: int, required: int) -> None:
        self.available = available
        self.required = required
        super().__init__(f"Insufficient credits. Available: {available}, Required: {required}")


class UpstreamUnavailableError(EntitlementError):
    """Raised when the record store or billing provider failed or timed out."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"Upstream unavailable during {operation}: {message}")


class InvalidTransitionError(EntitlementError):
    """Raised when a subscription status change is not allowed."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Invalid subscription transition: {current} -> {requested}")


class WriteVerificationError(EntitlementError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class PaymentProviderError(EntitlementError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(EntitlementError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class AuthenticationError(EntitlementError):
    """Raised when the bearer token is missing or invalid."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class CertificationGrantNotFoundError(EntitlementError):
    """Raised when a certification grant doesn't exist."""

    def __init__(self, grant_id: UUID) -> None:
        self.grant_id = grant_id
        super().__init__(f"Certification grant not found: {grant_id}")
