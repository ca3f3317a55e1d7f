from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from app.clients.kv_store import InMemoryKVStore, get_json, set_json
from app.core.plans import DEFAULT_PLAN_TABLE, Plan, PlanLimits, PlanTable
from app.schemas.limits import INVALID_DATE_RANGE, LOOKBACK_EXCEEDED, RESOURCE_LIMIT_REACHED
from app.services.entitlements import EntitlementGuard

TODAY = date(2025, 6, 30)


def _two_property_table() -> PlanTable:
    return PlanTable(
        {
            Plan.FREE: PlanLimits(25, 10, 2, 90),
            Plan.PREMIUM: PlanLimits(3000, 100, 5, None),
        }
    )


@pytest.mark.anyio
async def test_first_resource_is_auto_linked() -> None:
    store = InMemoryKVStore()
    guard = EntitlementGuard(store, DEFAULT_PLAN_TABLE)

    decision = await guard.assert_resource_link("sid:abc", Plan.FREE, "properties/1", name="Site")

    assert decision.ok
    stored = await get_json(store, "props:sid:abc")
    assert stored["properties"][0]["id"] == "properties/1"
    assert stored["properties"][0]["name"] == "Site"
    assert "addedAt" in stored["properties"][0]


@pytest.mark.anyio
async def test_third_distinct_resource_is_rejected_at_limit_two() -> None:
    guard = EntitlementGuard(InMemoryKVStore(), _two_property_table())

    assert (await guard.assert_resource_link("sid:abc", Plan.FREE, "properties/1")).ok
    assert (await guard.assert_resource_link("sid:abc", Plan.FREE, "properties/2")).ok
    rejected = await guard.assert_resource_link("sid:abc", Plan.FREE, "properties/3")

    assert not rejected.ok
    assert rejected.rejection.code == RESOURCE_LIMIT_REACHED
    assert rejected.rejection.details.limit == 2
    assert [prop.id for prop in await guard.linked_resources("sid:abc")] == [
        "properties/1",
        "properties/2",
    ]


@pytest.mark.anyio
async def test_already_linked_resource_is_idempotent() -> None:
    guard = EntitlementGuard(InMemoryKVStore(), DEFAULT_PLAN_TABLE)

    await guard.assert_resource_link("sid:abc", Plan.FREE, "properties/1")
    again = await guard.assert_resource_link("sid:abc", Plan.FREE, "properties/1")

    assert again.ok
    assert len(await guard.linked_resources("sid:abc")) == 1


@pytest.mark.anyio
async def test_premium_plan_allows_more_resources() -> None:
    guard = EntitlementGuard(InMemoryKVStore(), DEFAULT_PLAN_TABLE)

    for index in range(5):
        assert (await guard.assert_resource_link("sid:abc", Plan.PREMIUM, f"properties/{index}")).ok
    assert not (await guard.assert_resource_link("sid:abc", Plan.PREMIUM, "properties/9")).ok


def test_lookback_boundary_is_inclusive() -> None:
    guard = EntitlementGuard(InMemoryKVStore(), DEFAULT_PLAN_TABLE)

    # 90 day window ending today starts 89 days ago.
    assert guard.assert_lookback(Plan.FREE, "2025-04-02", today=TODAY).ok
    rejected = guard.assert_lookback(Plan.FREE, "2025-04-01", today=TODAY)

    assert not rejected.ok
    assert rejected.rejection.code == LOOKBACK_EXCEEDED
    assert rejected.rejection.details.window_days == 90


def test_premium_lookback_is_unlimited() -> None:
    guard = EntitlementGuard(InMemoryKVStore(), DEFAULT_PLAN_TABLE)

    assert guard.assert_lookback(Plan.PREMIUM, "2015-01-01", today=TODAY).ok


def test_invalid_start_date_is_rejected() -> None:
    guard = EntitlementGuard(InMemoryKVStore(), DEFAULT_PLAN_TABLE)

    rejected = guard.assert_lookback(Plan.FREE, "yesterday-ish", today=TODAY)

    assert not rejected.ok
    assert rejected.rejection.code == INVALID_DATE_RANGE


def test_lookback_uses_clock_when_today_is_omitted() -> None:
    now = datetime(2025, 6, 30, 12, tzinfo=timezone.utc).timestamp()
    guard = EntitlementGuard(InMemoryKVStore(), DEFAULT_PLAN_TABLE, clock=lambda: now)

    assert guard.assert_lookback(Plan.FREE, date(2025, 4, 2)).ok
    assert not guard.assert_lookback(Plan.FREE, date(2025, 4, 1)).ok


@pytest.mark.anyio
async def test_null_fields_in_stored_link_still_count_toward_limit() -> None:
    store = InMemoryKVStore()
    await set_json(
        store,
        "props:sid:a",
        {"properties": [{"id": "p1", "name": None, "addedAt": None}]},
    )
    guard = EntitlementGuard(store, DEFAULT_PLAN_TABLE)

    rejected = await guard.assert_resource_link("sid:a", Plan.FREE, "p2")

    assert not rejected.ok
    assert rejected.rejection.code == RESOURCE_LIMIT_REACHED
    linked = await guard.linked_resources("sid:a")
    assert [(prop.id, prop.name) for prop in linked] == [("p1", "")]


@pytest.mark.anyio
async def test_malformed_entry_does_not_drop_valid_links() -> None:
    store = InMemoryKVStore()
    await set_json(
        store,
        "props:sid:a",
        {"properties": [{"name": "no id"}, {"id": "p1", "name": "Site"}, "junk"]},
    )
    guard = EntitlementGuard(store, DEFAULT_PLAN_TABLE)

    assert [prop.id for prop in await guard.linked_resources("sid:a")] == ["p1"]
    assert not (await guard.assert_resource_link("sid:a", Plan.FREE, "p2")).ok


@pytest.mark.anyio
async def test_data_limits_check_end_date_only_without_start() -> None:
    guard = EntitlementGuard(InMemoryKVStore(), DEFAULT_PLAN_TABLE)

    end_only = await guard.enforce_data_limits(
        "sid:a", Plan.FREE, end_date="2000-01-01", today=TODAY
    )
    recent_start = await guard.enforce_data_limits(
        "sid:a", Plan.FREE, start_date="2025-06-01", end_date="2000-01-01", today=TODAY
    )

    assert end_only.rejection.code == LOOKBACK_EXCEEDED
    assert recent_start.ok


@pytest.mark.anyio
async def test_rejected_range_does_not_link_property() -> None:
    guard = EntitlementGuard(InMemoryKVStore(), DEFAULT_PLAN_TABLE)

    decision = await guard.enforce_data_limits(
        "sid:a", Plan.FREE, property_id="p1", start_date="2001-01-01", today=TODAY
    )

    assert decision.rejection.code == LOOKBACK_EXCEEDED
    assert await guard.linked_resources("sid:a") == []
    assert (
        await guard.enforce_data_limits("sid:a", Plan.FREE, property_id="p1", today=TODAY)
    ).ok
