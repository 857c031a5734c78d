"""Per-adapter monthly request counters stored in the ``api_requests`` table.

A counter resets when today is on or after its reset date advanced by one
calendar month (same day next month, clamped to the month's last day). Any
number of elapsed months collapses into a single reset to "now". Every
operation locks the adapter's row for the length of its transaction, so the
reset check and the write cannot interleave between workers.
"""

import calendar
import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional, Tuple

from grubstars.core.db import transaction

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def next_reset_date(reset_at: datetime) -> date:
    return add_months(_as_date(reset_at), 1)


def is_reset_due(reset_at: Optional[datetime], today: date) -> bool:
    if reset_at is None:
        return True
    return today >= next_reset_date(reset_at)


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value)).date()


_ENSURE_ROW = """
INSERT INTO api_requests (adapter, request_count, reset_at, updated_at)
VALUES (%(adapter)s, 0, %(now)s, %(now)s)
ON CONFLICT (adapter) DO NOTHING
"""

_LOCK_ROW = "SELECT request_count, reset_at FROM api_requests WHERE adapter = %(adapter)s FOR UPDATE"

_WRITE_ROW = """
UPDATE api_requests
SET request_count = %(count)s, reset_at = %(reset_at)s, updated_at = %(now)s
WHERE adapter = %(adapter)s
"""


class RateTracker:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    def _locked_state(self, cur, adapter: str, now: datetime) -> Tuple[int, datetime]:
        """Lock the adapter's row and return its (count, reset_at) after any due reset."""
        cur.execute(_ENSURE_ROW, {"adapter": adapter, "now": now})
        cur.execute(_LOCK_ROW, {"adapter": adapter})
        count, reset_at = cur.fetchone()
        if is_reset_due(reset_at, now.date()):
            logger.info("Monthly request counter for %s reset (was %d)", adapter, count)
            count, reset_at = 0, now
            cur.execute(_WRITE_ROW, {"adapter": adapter, "count": count, "reset_at": reset_at, "now": now})
        return count, reset_at

    def increment(self, adapter: str, amount: int = 1) -> int:
        now = self._clock()
        with transaction() as conn:
            with conn.cursor() as cur:
                count, reset_at = self._locked_state(cur, adapter, now)
                count += amount
                cur.execute(_WRITE_ROW, {"adapter": adapter, "count": count, "reset_at": reset_at, "now": now})
        return count

    def try_increment(self, adapter: str, limit: int, amount: int = 1) -> Optional[int]:
        """Increment only if the result stays within ``limit``; returns None otherwise."""
        now = self._clock()
        with transaction() as conn:
            with conn.cursor() as cur:
                count, reset_at = self._locked_state(cur, adapter, now)
                if count + amount > limit:
                    return None
                count += amount
                cur.execute(_WRITE_ROW, {"adapter": adapter, "count": count, "reset_at": reset_at, "now": now})
        return count

    def get_count(self, adapter: str) -> int:
        now = self._clock()
        with transaction() as conn:
            with conn.cursor() as cur:
                count, _ = self._locked_state(cur, adapter, now)
        return count

    def reset(self, adapter: str) -> None:
        now = self._clock()
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(_ENSURE_ROW, {"adapter": adapter, "now": now})
                cur.execute(_WRITE_ROW, {"adapter": adapter, "count": 0, "reset_at": now, "now": now})

    def days_until_reset(self, adapter: str) -> Optional[int]:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT reset_at FROM api_requests WHERE adapter = %(adapter)s", {"adapter": adapter})
                row = cur.fetchone()
        if row is None:
            return None
        today = self._clock().date()
        if is_reset_due(row[0], today):
            return 0
        return (next_reset_date(row[0]) - today).days

    def all_counts(self) -> Dict[str, Dict[str, object]]:
        with transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT adapter FROM api_requests ORDER BY adapter")
                adapters = [row[0] for row in cur.fetchall()]

        counts: Dict[str, Dict[str, object]] = {}
        for adapter in adapters:
            counts[adapter] = {
                "count": self.get_count(adapter),
                "days_until_reset": self.days_until_reset(adapter),
            }
        return counts
