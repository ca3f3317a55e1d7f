try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import copy
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.clients.analytics_admin import PropertySummary
from app.clients.google_auth import TokenGrant
from app.clients.kv_store import InMemoryKVStore, KVStoreError
from app.core.config import SessionSettings
from app.core.plans import Plan, PlanLimits, PlanTable
from app.main import app
from app.services import (
    CredentialVault,
    EntitlementGuard,
    GoogleTokenRefresher,
    IdentityResolver,
    OAuthFlowController,
    PkceChallengeStore,
    SessionBinder,
    TokenLifecycleManager,
    TokenRecordRepository,
    UsageMeter,
)


class DummyOAuthClient:
    def __init__(self) -> None:
        self.codes: list[str] = []

    def build_authorization_url(self, *, state: str, code_challenge: str) -> str:
        return f"https://oauth.example.com/auth?state={state}&code_challenge={code_challenge}"

    async def exchange_authorization_code(self, code: str, code_verifier: str) -> TokenGrant:
        self.codes.append(code)
        return TokenGrant("access-token", "refresh-token", 3600)

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        return TokenGrant("refreshed-token", None, 3600)


class DummyAdminClient:
    def __init__(self) -> None:
        self.bearers: list[str] = []

    async def list_properties(self, bearer: str) -> list[PropertySummary]:
        self.bearers.append(bearer)
        return [
            PropertySummary(
                property_id="123", display_name="Site", account_id="9", account_name="Acme"
            )
        ]


class Services:
    def __init__(self, settings) -> None:
        self.settings = settings
        self.store = InMemoryKVStore()
        self.oauth = DummyOAuthClient()
        self.admin = DummyAdminClient()
        vault = CredentialVault(secret="route-secret")
        self.binder = SessionBinder(vault, SessionSettings(SESSION_COOKIE_SECURE=False))
        repository = TokenRecordRepository(self.store, vault)
        self.tokens = TokenLifecycleManager(repository, GoogleTokenRefresher(self.oauth))
        self.flow = OAuthFlowController(self.oauth, PkceChallengeStore(self.store), self.tokens)
        table = PlanTable(
            {
                Plan.FREE: PlanLimits(2, 1, 1, 90),
                Plan.PREMIUM: PlanLimits(100, 100, 5, None),
            }
        )
        self.meter = UsageMeter(self.store, table)
        self.guard = EntitlementGuard(self.store, table)
        self.resolver = IdentityResolver(self.store)


@pytest.fixture()
def services():
    from app import dependencies
    from app.core.config import get_settings

    settings = copy.deepcopy(get_settings())
    settings.frontend_base_url = None
    settings.premium_url = "https://example.com/premium"
    bundle = Services(settings)

    app.dependency_overrides.update(
        {
            dependencies.get_app_settings: lambda: settings,
            dependencies.get_session_binder: lambda: bundle.binder,
            dependencies.get_oauth_flow: lambda: bundle.flow,
            dependencies.get_token_manager: lambda: bundle.tokens,
            dependencies.get_usage_meter: lambda: bundle.meter,
            dependencies.get_entitlement_guard: lambda: bundle.guard,
            dependencies.get_identity_resolver: lambda: bundle.resolver,
            dependencies.get_analytics_admin_client: lambda: bundle.admin,
        }
    )

    yield bundle

    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )


async def _connect(client: httpx.AsyncClient) -> str:
    start = await client.get("/api/auth/google/start")
    assert start.status_code == 302
    state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]
    callback = await client.get(
        "/api/auth/google/callback", params={"code": "auth-code", "state": state}
    )
    assert callback.status_code == 302
    return state


@pytest.mark.anyio
async def test_health(services):
    async with _client() as client:
        response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_start_redirects_and_sets_session_cookie(services):
    async with _client() as client:
        response = await client.get("/api/auth/google/start")

    assert response.status_code == 302
    assert response.headers["location"].startswith("https://oauth.example.com/auth?")
    cookie = response.headers["set-cookie"].lower()
    assert cookie.startswith("aa_sid=")
    assert "httponly" in cookie
    assert "samesite=lax" in cookie


@pytest.mark.anyio
async def test_start_can_return_json(services):
    async with _client() as client:
        response = await client.get("/api/auth/google/start", params={"redirect": "false"})

    assert response.status_code == 200
    data = response.json()
    assert data["authorization_url"].startswith("https://oauth.example.com/")
    assert data["state"]
    assert "aa_sid=" in response.headers["set-cookie"]


@pytest.mark.anyio
async def test_full_connect_flow_reports_connected(services):
    async with _client() as client:
        await _connect(client)
        status = await client.get("/api/auth/google/status")

    assert services.oauth.codes == ["auth-code"]
    assert status.json() == {"has_tokens": True, "expired": False, "connected": True}


@pytest.mark.anyio
async def test_callback_success_redirects_to_frontend(services):
    async with _client() as client:
        start = await client.get("/api/auth/google/start")
        state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]
        callback = await client.get(
            "/api/auth/google/callback", params={"code": "auth-code", "state": state}
        )

    assert callback.headers["location"] == "/?connected=1"


@pytest.mark.anyio
async def test_replayed_callback_redirects_to_reconnect(services):
    async with _client() as client:
        state = await _connect(client)
        replay = await client.get(
            "/api/auth/google/callback", params={"code": "auth-code", "state": state}
        )

    assert replay.status_code == 302
    assert replay.headers["location"] == "/start?error=INVALID_STATE"
    assert services.oauth.codes == ["auth-code"]


@pytest.mark.anyio
async def test_provider_error_redirects_to_reconnect(services):
    async with _client() as client:
        response = await client.get(
            "/api/auth/google/callback", params={"error": "access_denied"}
        )

    assert response.status_code == 302
    assert response.headers["location"] == "/start?error=PROVIDER_DENIED"


@pytest.mark.anyio
async def test_status_without_session(services):
    async with _client() as client:
        response = await client.get("/api/auth/google/status")

    assert response.json()["connected"] is False


@pytest.mark.anyio
async def test_disconnect_forgets_tokens(services):
    async with _client() as client:
        await _connect(client)
        sealed = client.cookies.get("aa_sid")
        response = await client.post("/api/auth/google/disconnect")

    session_id = CredentialVault(secret="route-secret").open(sealed)
    status = await services.tokens.status(session_id)
    assert response.json() == {"ok": True, "connected": False}
    assert "max-age=0" in response.headers["set-cookie"].lower()
    assert status.has_tokens is False


@pytest.mark.anyio
async def test_metered_call_requires_connection(services):
    async with _client() as client:
        response = await client.post("/api/usage/ga4")

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_REQUIRED"
    assert response.json()["reconnect_url"] == "/start"


@pytest.mark.anyio
async def test_metered_call_rejects_with_upgrade_payload(services):
    async with _client() as client:
        await _connect(client)
        first = await client.post("/api/usage/ga4")
        second = await client.post("/api/usage/ga4")
        third = await client.post("/api/usage/ga4")
        snapshot = await client.get("/api/usage")

    assert first.json()["remaining"] == 1
    assert second.json()["remaining"] == 0
    assert third.status_code == 429
    body = third.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["details"]["limit"] == 2
    assert body["upgrade"]["upgrade_url"] == "https://example.com/premium"
    assert body["upgrade"]["current_plan"] == "free"
    counters = {counter["kind"]: counter for counter in snapshot.json()["counters"]}
    assert counters["ga4"]["used"] == 2


async def _ga4_used(client: httpx.AsyncClient) -> int:
    snapshot = await client.get("/api/usage")
    counters = {counter["kind"]: counter for counter in snapshot.json()["counters"]}
    return counters["ga4"]["used"]


@pytest.mark.anyio
async def test_metered_call_on_unlinked_property_does_not_count(services):
    async with _client() as client:
        await _connect(client)
        linked = await client.post("/api/usage/ga4", json={"property_id": "properties/1"})
        other = await client.post("/api/usage/ga4", json={"property_id": "properties/2"})
        used = await _ga4_used(client)

    assert linked.status_code == 200
    assert other.status_code == 402
    assert other.json()["code"] == "PROPERTY_LIMIT"
    assert used == 1


@pytest.mark.anyio
async def test_metered_call_outside_lookback_does_not_count(services):
    async with _client() as client:
        await _connect(client)
        old_start = await client.post(
            "/api/usage/ga4",
            json={"property_id": "properties/1", "start_date": "2001-01-01"},
        )
        old_end = await client.post("/api/usage/ga4", json={"end_date": "2001-01-31"})
        used = await _ga4_used(client)
        linked = await client.get("/api/ga4/properties")

    assert old_start.status_code == 402
    assert old_start.json()["code"] == "DATE_RANGE_LIMIT"
    assert old_end.status_code == 402
    assert used == 0
    assert linked.json()["linked"] == []


@pytest.mark.anyio
async def test_unknown_usage_kind_is_rejected(services):
    async with _client() as client:
        response = await client.post("/api/usage/unknown")

    assert response.status_code == 422


@pytest.mark.anyio
async def test_property_selection_enforces_plan_limit(services):
    async with _client() as client:
        first = await client.post(
            "/api/ga4/properties/select", json={"property_id": "properties/1", "name": "A"}
        )
        again = await client.post(
            "/api/ga4/properties/select", json={"property_id": "properties/1"}
        )
        second = await client.post(
            "/api/ga4/properties/select", json={"property_id": "properties/2"}
        )

    assert first.status_code == 200
    assert first.json()["linked"][0]["id"] == "properties/1"
    assert again.status_code == 200
    assert second.status_code == 402
    assert second.json()["code"] == "PROPERTY_LIMIT"
    assert "upgrade" in second.json()


@pytest.mark.anyio
async def test_date_range_check(services):
    async with _client() as client:
        recent = await client.post("/api/ga4/date-range/check", json={"start_date": "2999-01-01"})
        old = await client.post("/api/ga4/date-range/check", json={"start_date": "2001-01-01"})
        invalid = await client.post("/api/ga4/date-range/check", json={"start_date": "nope"})
        end_only = await client.post("/api/ga4/date-range/check", json={"end_date": "2000-01-01"})
        empty = await client.post("/api/ga4/date-range/check", json={})

    assert recent.json() == {"ok": True}
    assert old.status_code == 402
    assert old.json()["code"] == "DATE_RANGE_LIMIT"
    assert invalid.status_code == 400
    assert invalid.json()["code"] == "INVALID_DATE"
    assert end_only.status_code == 402
    assert end_only.json()["code"] == "DATE_RANGE_LIMIT"
    assert empty.json() == {"ok": True}


@pytest.mark.anyio
async def test_csv_exports_are_limited(services):
    async with _client() as client:
        responses = [await client.post("/api/usage/exports") for _ in range(4)]

    assert [response.status_code for response in responses] == [200, 200, 200, 429]
    assert responses[-1].json()["code"] == "CSV_LIMIT"


@pytest.mark.anyio
async def test_property_listing_uses_session_bearer(services):
    async with _client() as client:
        await _connect(client)
        response = await client.get("/api/ga4/properties")

    assert response.status_code == 200
    assert services.admin.bearers == ["access-token"]
    assert response.json()["properties"][0]["property_id"] == "123"


class FailingStore(InMemoryKVStore):
    async def get(self, key: str):
        raise KVStoreError("store down")


@pytest.mark.anyio
async def test_store_failure_fails_closed(services):
    from app import dependencies

    app.dependency_overrides[dependencies.get_identity_resolver] = lambda: IdentityResolver(
        FailingStore()
    )
    async with _client() as client:
        response = await client.get("/api/usage")

    assert response.status_code == 503
    assert response.json()["code"] == "STORAGE_UNAVAILABLE"


def test_allowed_decision_cannot_render_as_limit_response(services):
    from app.api.routes import _limit_response
    from app.schemas import LimitDecision

    with pytest.raises(ValueError):
        _limit_response(LimitDecision.allow(remaining=1), services.settings)
