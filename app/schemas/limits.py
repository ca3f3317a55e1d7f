"""Schemas describing quota and entitlement decisions."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

RATE_LIMITED = "RATE_LIMITED"
RESOURCE_LIMIT_REACHED = "PROPERTY_LIMIT"
LOOKBACK_EXCEEDED = "DATE_RANGE_LIMIT"
INVALID_DATE_RANGE = "INVALID_DATE"
EXPORT_LIMIT_REACHED = "CSV_LIMIT"


class LimitDetails(BaseModel):
    """Context a caller needs to render an upgrade path."""

    plan: Optional[str] = None
    limit: Optional[int] = None
    used: Optional[int] = None
    period: Optional[str] = None
    kind: Optional[str] = None
    window_days: Optional[int] = None


class LimitRejection(BaseModel):
    code: str
    message: str
    details: LimitDetails = Field(default_factory=LimitDetails)


class LimitDecision(BaseModel):
    """Outcome of a usage or entitlement check; rejections are values, not errors."""

    ok: bool
    rejection: Optional[LimitRejection] = None
    remaining: Optional[int] = None

    @classmethod
    def allow(cls, *, remaining: Optional[int] = None) -> "LimitDecision":
        return cls(ok=True, remaining=remaining)

    @classmethod
    def reject(cls, code: str, message: str, **details) -> "LimitDecision":
        return cls(
            ok=False,
            rejection=LimitRejection(
                code=code, message=message, details=LimitDetails(**details)
            ),
        )


class UpgradePrompt(BaseModel):
    message: str
    upgrade_url: str
    current_plan: str
    upgrade_plan: str = "premium"
    benefits: List[str] = Field(
        default_factory=lambda: [
            "3,000 GA4 reports/month",
            "100 AI summaries/month",
            "Up to 5 GA4 properties",
            "Full historical data access",
        ]
    )


class UsageCounter(BaseModel):
    kind: str
    used: int
    limit: int
    remaining: int


class UsageSnapshot(BaseModel):
    period: str
    plan: str
    counters: List[UsageCounter]


__all__ = [
    "EXPORT_LIMIT_REACHED",
    "INVALID_DATE_RANGE",
    "LOOKBACK_EXCEEDED",
    "LimitDecision",
    "LimitDetails",
    "LimitRejection",
    "RATE_LIMITED",
    "RESOURCE_LIMIT_REACHED",
    "UpgradePrompt",
    "UsageCounter",
    "UsageSnapshot",
]
