"""
Usage Ledger - append-only record of consumed recording time.

NO DICTIONARIES - All operations use strongly typed domain models.

Seconds are rounded up to whole minutes exactly once, when a session
duration becomes a ledger entry. Both values are stored.
"""

import math
from datetime import datetime
from uuid import UUID

from structlog import get_logger

from proofai.exceptions import UpstreamUnavailableError
from proofai.models.domain import UsageIntent, UsageResult
from proofai.observability.metrics import metrics
from proofai.services.record_store import RecordStore

logger = get_logger(__name__)


def seconds_to_minutes(seconds: int) -> int:
    """
    Billable minutes for a duration: ceil(seconds / 60).

    0 seconds is 0 minutes; 1..60 seconds is 1 minute; 61 seconds is 2.

    Raises:
        ValueError: seconds is negative
    """
    if seconds < 0:
        raise ValueError(f"Duration cannot be negative: {seconds}")
    return math.ceil(seconds / 60)


class UsageLedger:
    """Appends and sums usage records through a RecordStore."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def record_usage(
        self,
        user_id: UUID,
        duration_seconds: int,
        recording_ref: str | None = None,
    ) -> UsageResult:
        """
        Append one usage record for a completed session.

        Never raises for store failures: the calling action has already
        happened, so a failed append is logged and returned with a warning.
        A negative duration is a caller bug and still raises ValueError.
        """
        minutes = seconds_to_minutes(duration_seconds)
        intent = UsageIntent(
            user_id=user_id,
            seconds_consumed=duration_seconds,
            minutes_consumed=minutes,
            recording_ref=recording_ref,
        )

        try:
            record = await self.store.append_usage(intent)
            await self.store.commit()
        except UpstreamUnavailableError as exc:
            logger.warning(
                "usage_record_failed",
                user_id=str(user_id),
                seconds=duration_seconds,
                minutes=minutes,
                recording_ref=recording_ref,
                error=str(exc),
            )
            metrics.record_usage(success=False, minutes=minutes)
            return UsageResult(
                success=False,
                minutes_recorded=0,
                warning=f"Usage could not be recorded: {exc.message}",
            )

        logger.info(
            "usage_recorded",
            user_id=str(user_id),
            usage_id=str(record.usage_id),
            seconds=duration_seconds,
            minutes=minutes,
            recording_ref=recording_ref,
        )
        metrics.record_usage(success=True, minutes=minutes)
        return UsageResult(success=True, minutes_recorded=minutes, record=record)

    async def total_usage(self, user_id: UUID, period_start: datetime, period_end: datetime) -> int:
        """
        Minutes consumed in [period_start, period_end], both ends inclusive.

        Billing periods meet exactly (one period_end is the next
        period_start), so an entry stamped at that instant falls inside both
        adjacent windows. Only the current period is ever summed for a
        decision, and timestamps carry microseconds, so such a tie at worst
        charges one recording against the closing and the opening period.
        """
        if period_end < period_start:
            return 0
        return await self.store.sum_usage(user_id, period_start, period_end)
