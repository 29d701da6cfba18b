"""
Run Budgets.
Pre-request checks of a metered run's estimates against the configured
single-run cost cap and daily token cap.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from ..config import BudgetsConfig
from ..cronops.metrics import CronUsageEvent


@dataclass
class BudgetCheck:
    ok: bool
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def _utc_date(timestamp: str):
    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).date()


def tokens_used_on(events: Iterable[CronUsageEvent], day) -> float:
    total = 0.0
    for event in events:
        when = _utc_date(event.end_time or event.start_time)
        if when != day:
            continue
        total += _number(event.tokens_used) or 0.0
    return total


def enforce_cron_budget(
    budgets: Optional[BudgetsConfig],
    metrics: Any,
    usage_events: Iterable[CronUsageEvent],
    now: datetime,
) -> BudgetCheck:
    """
    Check `metrics.estimated_cost_usd` / `metrics.estimated_tokens` against
    `budgets`. With no budgets configured every run passes.
    """
    if budgets is None:
        return BudgetCheck(ok=True)

    estimated_tokens = _number(getattr(metrics, "estimated_tokens", None))
    estimated_cost = _number(getattr(metrics, "estimated_cost_usd", None))

    if budgets.max_single_run_cost_usd is not None:
        if estimated_cost is None:
            return BudgetCheck(
                False,
                "budget-missing-cost-estimate",
                {"max_single_run_cost_usd": budgets.max_single_run_cost_usd},
            )
        if estimated_cost > budgets.max_single_run_cost_usd:
            return BudgetCheck(
                False,
                "budget-max-cost",
                {
                    "estimated_cost_usd": estimated_cost,
                    "max_single_run_cost_usd": budgets.max_single_run_cost_usd,
                },
            )

    if budgets.max_daily_tokens is not None:
        if estimated_tokens is None:
            return BudgetCheck(
                False,
                "budget-missing-token-estimate",
                {"max_daily_tokens": budgets.max_daily_tokens},
            )
        used_today = tokens_used_on(usage_events, now.astimezone(timezone.utc).date())
        if used_today + estimated_tokens > budgets.max_daily_tokens:
            return BudgetCheck(
                False,
                "budget-max-daily-tokens",
                {
                    "max_daily_tokens": budgets.max_daily_tokens,
                    "used_today": used_today,
                    "estimated_tokens": estimated_tokens,
                },
            )

    return BudgetCheck(ok=True)
