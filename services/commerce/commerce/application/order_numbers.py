"""Month-scoped sequential order numbers: PREFIX + YYYY + MM + sequence.

The sequence is zero-padded to four digits and simply grows wider after
9999 (``FOG20250110000``), so the lookup orders by length before value.
"""
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from commerce.domain.models import Order

SEQUENCE_WIDTH = 4


class OrderNumberGenerator:
    def __init__(self, db: Session, prefix: str = "FOG", timezone: Optional[str] = None):
        self.db = db
        self.prefix = prefix
        self.tz = ZoneInfo(timezone) if timezone else None

    def month_prefix(self, current_timestamp: datetime) -> str:
        if self.tz is not None and current_timestamp.tzinfo is not None:
            current_timestamp = current_timestamp.astimezone(self.tz)
        return f"{self.prefix}{current_timestamp.year:04d}{current_timestamp.month:02d}"

    def latest_for_month(self, month_prefix: str) -> Optional[str]:
        stmt = (
            select(Order.order_number)
            .where(Order.order_number.like(f"{month_prefix}%"))
            .order_by(func.length(Order.order_number).desc(), Order.order_number.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def next_order_number(self, current_timestamp: datetime) -> str:
        """Return the next unused number for the month of ``current_timestamp``.

        Must run inside the transaction that inserts the order; a concurrent
        insert can still take the same number, which surfaces as a unique
        violation the caller retries.
        """
        month_prefix = self.month_prefix(current_timestamp)
        sequence = 1
        latest = self.latest_for_month(month_prefix)
        if latest:
            suffix = latest[len(month_prefix):]
            if suffix.isdigit():
                sequence = int(suffix) + 1
        return f"{month_prefix}{sequence:0{SEQUENCE_WIDTH}d}"
