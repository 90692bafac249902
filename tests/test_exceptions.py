"""
Tests for exception classes.

Covers attributes and string representations.
"""

from uuid import uuid4

import pytest

from proofai.exceptions import (
    AccountNotFoundError,
    AuthenticationError,
    CertificationGrantNotFoundError,
    EntitlementError,
    InsufficientCreditsError,
    InvalidTransitionError,
    NoActivePlanError,
    PaymentProviderError,
    QuotaExceededError,
    UpstreamUnavailableError,
    WebhookVerificationError,
    WriteVerificationError,
)


class TestEntitlementError:
    def test_can_be_raised(self):
        with pytest.raises(EntitlementError):
            raise EntitlementError("test error")

    @pytest.mark.parametrize(
        "exc",
        [
            AccountNotFoundError(uuid4()),
            QuotaExceededError(6, 5),
            NoActivePlanError(uuid4()),
            InsufficientCreditsError(1, 2),
            UpstreamUnavailableError("get_account", "timed out"),
            InvalidTransitionError("canceled", "active"),
            WriteVerificationError("row missing"),
            PaymentProviderError("down"),
            WebhookVerificationError("bad signature"),
            AuthenticationError("expired"),
            CertificationGrantNotFoundError(uuid4()),
        ],
    )
    def test_all_errors_share_base(self, exc):
        assert isinstance(exc, EntitlementError)


class TestQuotaExceededError:
    def test_attributes_and_message(self):
        exc = QuotaExceededError(requested_minutes=6, remaining_minutes=5)

        assert exc.requested_minutes == 6
        assert exc.remaining_minutes == 5
        assert "Requested: 6 min" in str(exc)
        assert "Remaining: 5 min" in str(exc)


class TestInsufficientCreditsError:
    def test_attributes_and_message(self):
        exc = InsufficientCreditsError(available=1, required=3)

        assert exc.available == 1
        assert exc.required == 3
        assert "Insufficient credits" in str(exc)


class TestUpstreamUnavailableError:
    def test_names_the_operation(self):
        exc = UpstreamUnavailableError("sum_usage", "timed out")

        assert exc.operation == "sum_usage"
        assert exc.message == "timed out"
        assert str(exc) == "Upstream unavailable during sum_usage: timed out"


class TestInvalidTransitionError:
    def test_message(self):
        exc = InvalidTransitionError("canceled", "active")

        assert exc.current == "canceled"
        assert exc.requested == "active"
        assert "canceled -> active" in str(exc)


class TestNotFoundErrors:
    def test_account_not_found(self):
        user_id = uuid4()

        exc = AccountNotFoundError(user_id)

        assert exc.user_id == user_id
        assert str(user_id) in str(exc)

    def test_certification_grant_not_found(self):
        grant_id = uuid4()

        exc = CertificationGrantNotFoundError(grant_id)

        assert exc.grant_id == grant_id
        assert str(grant_id) in str(exc)
