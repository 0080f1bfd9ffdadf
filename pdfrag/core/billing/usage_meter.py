from datetime import datetime, timezone
from typing import Optional
from pdfrag.core.exceptions import ValidationError
from pdfrag.storage.base import RecordStore


def period_key(now: Optional[datetime] = None) -> str:
    """Billing period for a moment in time: calendar month in UTC, e.g. '2025-07'."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m")


class UsageMeter:
    """
    Consumed units per account per billing period.
    Counters only grow; a new period key starts at zero on its own.
    """

    def __init__(self, records: RecordStore):
        self.records = records

    def current_period(self, now: Optional[datetime] = None) -> str:
        return period_key(now)

    def get(self, account_id: str, period: str) -> int:
        return self.records.get_usage(account_id, period)

    def increment(self, account_id: str, period: str, delta: int) -> int:
        if delta < 0:
            raise ValidationError("Usage delta must not be negative", field="delta")
        # Atomic in the record store; concurrent turns never lose an update
        return self.records.increment_usage(account_id, period, delta)
