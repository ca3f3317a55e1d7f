"""
Monthly usage counters per identity.

Counters live under ``usage:{identity}:{YYYY-MM}``; a new month is a new key,
so resets need no cleanup job and the 45 day TTL bounds storage. Updates are
read-modify-write without a lock: two requests racing on the same identity may
both be admitted at the ceiling. That soft limit is intentional.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from app.clients.kv_store import KeyValueStore, get_json, set_json
from app.core.plans import Plan, PlanTable, UsageKind
from app.models.usage import ExportAllowanceRecord, UsageRecord
from app.schemas.limits import (
    EXPORT_LIMIT_REACHED,
    RATE_LIMITED,
    LimitDecision,
    UsageCounter,
    UsageSnapshot,
)

logger = logging.getLogger(__name__)

USAGE_PERIOD_TTL_SECONDS = 60 * 60 * 24 * 45
EXPORT_LIMIT = 3
EXPORT_WINDOW_SECONDS = 60 * 60 * 24 * 7
EXPORT_TTL_SECONDS = EXPORT_WINDOW_SECONDS + 3600


class UsageMeter:
    def __init__(
        self,
        store: KeyValueStore,
        plan_table: PlanTable,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._plans = plan_table
        self._clock = clock

    def current_period(self) -> str:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return f"{now.year:04d}-{now.month:02d}"

    @staticmethod
    def _usage_key(identity_key: str, period: str) -> str:
        return f"usage:{identity_key}:{period}"

    async def _load(self, identity_key: str, plan: Plan, period: str) -> UsageRecord:
        payload = await get_json(self._store, self._usage_key(identity_key, period))
        if isinstance(payload, dict):
            try:
                return UsageRecord.model_validate(payload)
            except ValueError:
                logger.warning("Resetting malformed usage record for %s", identity_key)
        return UsageRecord(period=period, key=identity_key, plan=plan.value)

    async def check_and_increment(
        self, identity_key: str, plan: Plan, kind: UsageKind
    ) -> LimitDecision:
        """Admit one metered call or reject it without touching the counter."""
        period = self.current_period()
        ceiling = self._plans.for_plan(plan).ceiling(kind)
        record = await self._load(identity_key, plan, period)
        used = record.count(kind.counter_field)

        if used >= ceiling:
            logger.warning(
                "RATE_LIMITED %s on %s plan for identity=%s (%d/%d in %s)",
                kind.value,
                plan.value,
                identity_key,
                used,
                ceiling,
                period,
            )
            return LimitDecision.reject(
                RATE_LIMITED,
                f"Monthly limit reached for {kind.label} on your {plan.value} plan.",
                plan=plan.value,
                limit=ceiling,
                used=used,
                period=period,
                kind=kind.value,
            )

        record.counters[kind.counter_field] = used + 1
        record.plan = plan.value
        record.period = period
        await set_json(
            self._store,
            self._usage_key(identity_key, period),
            record.model_dump(),
            USAGE_PERIOD_TTL_SECONDS,
        )
        return LimitDecision.allow(remaining=ceiling - used - 1)

    async def snapshot(self, identity_key: str, plan: Plan) -> UsageSnapshot:
        period = self.current_period()
        limits = self._plans.for_plan(plan)
        record = await self._load(identity_key, plan, period)
        counters = []
        for kind in UsageKind:
            used = record.count(kind.counter_field)
            ceiling = limits.ceiling(kind)
            counters.append(
                UsageCounter(
                    kind=kind.value,
                    used=used,
                    limit=ceiling,
                    remaining=max(0, ceiling - used),
                )
            )
        return UsageSnapshot(period=period, plan=plan.value, counters=counters)

    async def check_export_allowance(self, identity_key: str) -> LimitDecision:
        """Rolling weekly allowance for CSV exports."""
        key = f"csv:{identity_key}"
        now = self._clock()
        payload = await get_json(self._store, key)
        record = ExportAllowanceRecord(started_at=now)
        if isinstance(payload, dict):
            try:
                record = ExportAllowanceRecord.model_validate(payload)
            except ValueError:
                record = ExportAllowanceRecord(started_at=now)
        if now - record.started_at > EXPORT_WINDOW_SECONDS:
            record = ExportAllowanceRecord(started_at=now)

        if record.count >= EXPORT_LIMIT:
            return LimitDecision.reject(
                EXPORT_LIMIT_REACHED,
                "CSV exports are limited to 3 per week on your current plan.",
                limit=EXPORT_LIMIT,
                used=record.count,
                window_days=7,
            )

        record.count += 1
        await set_json(self._store, key, record.model_dump(), EXPORT_TTL_SECONDS)
        return LimitDecision.allow(remaining=EXPORT_LIMIT - record.count)


__all__ = [
    "EXPORT_LIMIT",
    "EXPORT_WINDOW_SECONDS",
    "USAGE_PERIOD_TTL_SECONDS",
    "UsageMeter",
]
