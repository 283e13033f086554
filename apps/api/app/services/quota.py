"""Monthly budget quota.

Months are UTC calendar months: a budget created at 23:30 local time on the
31st may count toward the next month for users west of UTC.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from app.models.billing import PLAN_FREE, utcnow


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    plan: str
    used: int
    limit: Optional[int]  # None means unlimited

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used)


class QuotaEvaluator:
    def __init__(self, free_monthly_limit: int = 10):
        self.free_monthly_limit = free_monthly_limit

    def evaluate(self, plan: Optional[str], used: int) -> QuotaDecision:
        plan = (plan or PLAN_FREE).lower()
        if plan == PLAN_FREE:
            return QuotaDecision(
                allowed=used < self.free_monthly_limit,
                plan=plan,
                used=used,
                limit=self.free_monthly_limit,
            )
        # pro and premium are unlimited
        return QuotaDecision(allowed=True, plan=plan, used=used, limit=None)


def month_bounds(now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """Return the [start, next_start) interval of the UTC month containing ``now``."""
    now = now or utcnow()
    start = datetime(now.year, now.month, 1)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1)
    else:
        end = datetime(now.year, now.month + 1, 1)
    return start, end
