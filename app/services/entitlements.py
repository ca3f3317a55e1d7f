"""
Plan entitlements that are not per-call counters: linked GA4 properties and
the historical lookback window.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional

from app.clients.kv_store import KeyValueStore, get_json, set_json
from app.core.plans import Plan, PlanTable
from app.models.usage import LinkedProperty, PropertyLinkRecord
from app.schemas.limits import (
    INVALID_DATE_RANGE,
    LOOKBACK_EXCEEDED,
    RESOURCE_LIMIT_REACHED,
    LimitDecision,
)

logger = logging.getLogger(__name__)


def _parse_date(value: str | date) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip()[:10])
    except (AttributeError, ValueError):
        return None


class EntitlementGuard:
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

    @staticmethod
    def _links_key(identity_key: str) -> str:
        return f"props:{identity_key}"

    async def _load_links(self, identity_key: str) -> PropertyLinkRecord:
        payload = await get_json(self._store, self._links_key(identity_key))
        if not isinstance(payload, dict) or not isinstance(payload.get("properties"), list):
            return PropertyLinkRecord()

        # Entries are validated one by one so a bad entry never drops the good ones.
        properties: List[LinkedProperty] = []
        for entry in payload["properties"]:
            try:
                properties.append(LinkedProperty.model_validate(entry))
            except ValueError:
                logger.warning("Skipping malformed linked property for %s: %r", identity_key, entry)
        return PropertyLinkRecord(properties=properties)

    async def _save_links(self, identity_key: str, record: PropertyLinkRecord) -> None:
        await set_json(
            self._store, self._links_key(identity_key), record.model_dump(by_alias=True)
        )

    async def linked_resources(self, identity_key: str) -> List[LinkedProperty]:
        return (await self._load_links(identity_key)).properties

    async def assert_resource_link(
        self, identity_key: str, plan: Plan, resource_id: str, *, name: str = ""
    ) -> LimitDecision:
        """Allow use of ``resource_id`` if it is linked or can still be linked."""
        limit = self._plans.for_plan(plan).linked_resources
        record = await self._load_links(identity_key)

        if record.find(resource_id) is not None:
            return LimitDecision.allow(remaining=max(0, limit - len(record.properties)))

        if not record.properties:
            # Identities from before explicit linking get their first property linked.
            logger.info("Auto-linking first property for identity=%s", identity_key)
        elif len(record.properties) >= limit:
            return LimitDecision.reject(
                RESOURCE_LIMIT_REACHED,
                (
                    f"Your {plan.value} plan supports {limit} GA4 "
                    f"propert{'y' if limit == 1 else 'ies'}. "
                    "Upgrade or remove one before adding another."
                ),
                plan=plan.value,
                limit=limit,
                used=len(record.properties),
            )

        record.properties.append(LinkedProperty(id=resource_id, name=name))
        await self._save_links(identity_key, record)
        return LimitDecision.allow(remaining=max(0, limit - len(record.properties)))

    def assert_lookback(
        self, plan: Plan, start_date: str | date, *, today: Optional[date] = None
    ) -> LimitDecision:
        """Reject ranges that start before the plan's retention window."""
        window = self._plans.for_plan(plan).lookback_days
        if window is None:
            return LimitDecision.allow()

        parsed = _parse_date(start_date)
        if parsed is None:
            return LimitDecision.reject(
                INVALID_DATE_RANGE, "Invalid start date supplied.", plan=plan.value
            )

        reference = today or datetime.fromtimestamp(self._clock(), tz=timezone.utc).date()
        earliest = reference - timedelta(days=window - 1)
        if parsed < earliest:
            return LimitDecision.reject(
                LOOKBACK_EXCEEDED,
                (
                    f"Your {plan.value} plan includes GA4 data from the last "
                    f"{window} days. Upgrade to Premium for full history."
                ),
                plan=plan.value,
                window_days=window,
            )
        return LimitDecision.allow()

    async def enforce_data_limits(
        self,
        identity_key: str,
        plan: Plan,
        *,
        property_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        today: Optional[date] = None,
    ) -> LimitDecision:
        """Apply the lookback window and the linked-property limit to one request.

        The end date is only checked when no start date is given. Dates are
        checked first so a rejected range never links a property.
        """
        boundary = start_date or end_date
        if boundary:
            decision = self.assert_lookback(plan, boundary, today=today)
            if not decision.ok:
                return decision
        if property_id:
            return await self.assert_resource_link(identity_key, plan, property_id)
        return LimitDecision.allow()


__all__ = ["EntitlementGuard"]
