"""
Subscription plans and their quota tables.

Every plan maps to one ``PlanLimits`` record and every metered kind is matched
explicitly, so adding a plan or a kind fails loudly instead of silently
falling back to another tier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from app.core.config import PlanSettings

logger = logging.getLogger(__name__)


class Plan(str, Enum):
    FREE = "free"
    PREMIUM = "premium"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "Plan":
        """Map a stored plan name to a ``Plan``; unknown names become FREE."""
        if not raw:
            return cls.FREE
        normalized = raw.strip().lower()
        # Billing writes the purchased cadence, which is still premium access.
        if normalized in {"premium", "monthly", "annual", "pro"}:
            return cls.PREMIUM
        if normalized != cls.FREE.value:
            logger.warning("Unknown plan name %r; treating as free", raw)
        return cls.FREE


class UsageKind(str, Enum):
    GA4_REPORT = "ga4"
    AI_SUMMARY = "ai"

    @property
    def counter_field(self) -> str:
        match self:
            case UsageKind.GA4_REPORT:
                return "ga4_reports_run"
            case UsageKind.AI_SUMMARY:
                return "ai_summaries_run"

    @property
    def label(self) -> str:
        match self:
            case UsageKind.GA4_REPORT:
                return "GA4 reports"
            case UsageKind.AI_SUMMARY:
                return "AI summaries"


@dataclass(frozen=True, slots=True)
class PlanLimits:
    ga4_reports_per_month: int
    ai_summaries_per_month: int
    linked_resources: int
    lookback_days: Optional[int]

    def ceiling(self, kind: UsageKind) -> int:
        match kind:
            case UsageKind.GA4_REPORT:
                return self.ga4_reports_per_month
            case UsageKind.AI_SUMMARY:
                return self.ai_summaries_per_month


class PlanTable:
    """Lookup of ``PlanLimits`` keyed by ``Plan``."""

    def __init__(self, limits: Mapping[Plan, PlanLimits]) -> None:
        missing = [plan.value for plan in Plan if plan not in limits]
        if missing:
            raise ValueError(f"Plan table is missing limits for: {', '.join(missing)}")
        self._limits = dict(limits)

    @classmethod
    def from_settings(cls, settings: PlanSettings) -> "PlanTable":
        return cls(
            {
                Plan.FREE: PlanLimits(
                    ga4_reports_per_month=settings.free_ga4_reports_per_month,
                    ai_summaries_per_month=settings.free_ai_summaries_per_month,
                    linked_resources=settings.free_linked_resources,
                    lookback_days=settings.free_lookback_days or None,
                ),
                Plan.PREMIUM: PlanLimits(
                    ga4_reports_per_month=settings.premium_ga4_reports_per_month,
                    ai_summaries_per_month=settings.premium_ai_summaries_per_month,
                    linked_resources=settings.premium_linked_resources,
                    lookback_days=settings.premium_lookback_days or None,
                ),
            }
        )

    def for_plan(self, plan: Plan) -> PlanLimits:
        return self._limits[plan]


DEFAULT_PLAN_TABLE = PlanTable(
    {
        Plan.FREE: PlanLimits(
            ga4_reports_per_month=25,
            ai_summaries_per_month=10,
            linked_resources=1,
            lookback_days=90,
        ),
        Plan.PREMIUM: PlanLimits(
            ga4_reports_per_month=3000,
            ai_summaries_per_month=100,
            linked_resources=5,
            lookback_days=None,
        ),
    }
)


__all__ = ["DEFAULT_PLAN_TABLE", "Plan", "PlanLimits", "PlanTable", "UsageKind"]
