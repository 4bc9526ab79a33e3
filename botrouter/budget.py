"""
Advisory per-bot budget checks.

Spend is summed from the usage log over UTC calendar windows: since
midnight today, and since the first of this month.  An exceeded budget is
reported, never enforced here; callers decide whether to downgrade.
"""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from botrouter import database
from botrouter.models import BudgetStatus

logger = logging.getLogger(__name__)

UsageSource = Callable[[str, datetime], Awaitable[float]]
Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_window_starts(now: datetime) -> tuple[datetime, datetime]:
    """(start of the UTC day, start of the UTC month) containing ``now``."""
    now = now.astimezone(timezone.utc)
    day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return day, day.replace(day=1)


def evaluate_budget(
    daily_cost: float,
    monthly_cost: float,
    daily_limit: Optional[float] = None,
    monthly_limit: Optional[float] = None,
    alert_threshold: float = 0.8,
) -> BudgetStatus:
    """Pure budget evaluation.  Limits that are None or <= 0 are ignored."""
    daily_active = daily_limit is not None and daily_limit > 0
    monthly_active = monthly_limit is not None and monthly_limit > 0

    daily_exceeded = daily_active and daily_cost >= daily_limit
    monthly_exceeded = monthly_active and monthly_cost >= monthly_limit
    alert = (daily_active and daily_cost >= daily_limit * alert_threshold) or (
        monthly_active and monthly_cost >= monthly_limit * alert_threshold
    )

    return BudgetStatus(
        daily_cost=round(daily_cost, 6),
        monthly_cost=round(monthly_cost, 6),
        daily_limit=daily_limit,
        monthly_limit=monthly_limit,
        daily_remaining=max(daily_limit - daily_cost, 0.0) if daily_active else None,
        monthly_remaining=max(monthly_limit - monthly_cost, 0.0) if monthly_active else None,
        daily_exceeded=daily_exceeded,
        monthly_exceeded=monthly_exceeded,
        alert_threshold=alert_threshold,
        alert_triggered=alert,
        should_downgrade=daily_exceeded or monthly_exceeded,
    )


class BudgetGuard:
    def __init__(
        self,
        usage_source: UsageSource = database.sum_usage_cost,
        clock: Clock = _utc_now,
    ) -> None:
        self._usage_source = usage_source
        self._clock = clock

    async def get_bot_usage(self, bot_id: str) -> dict[str, float]:
        day_start, month_start = utc_window_starts(self._clock())
        return {
            "daily_cost": await self._usage_source(bot_id, day_start),
            "monthly_cost": await self._usage_source(bot_id, month_start),
        }

    async def check_budget(
        self,
        bot_id: str,
        daily_limit: Optional[float] = None,
        monthly_limit: Optional[float] = None,
        alert_threshold: float = 0.8,
    ) -> BudgetStatus:
        usage = await self.get_bot_usage(bot_id)
        status = evaluate_budget(
            usage["daily_cost"], usage["monthly_cost"],
            daily_limit, monthly_limit, alert_threshold,
        )

        if status.alert_triggered:
            logger.warning(
                "Budget alert | bot=%s daily=$%.4f/%s monthly=$%.4f/%s",
                bot_id, status.daily_cost, daily_limit, status.monthly_cost, monthly_limit,
            )
        if status.should_downgrade:
            logger.warning("Budget exceeded, should downgrade | bot=%s", bot_id)
        return status
