"""
FastAPI routes for the analytics connector.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from app.clients.analytics_admin import AnalyticsAdminError
from app.clients.google_auth import OAuthTokenExchangeError
from app.clients.kv_store import KVStoreError
from app.core.config import AppSettings
from app.core.errors import ConnectorError
from app.core.plans import Plan, UsageKind
from app.dependencies import (
    AppSettingsDep,
    SessionIdDep,
    get_analytics_admin_client,
    get_entitlement_guard,
    get_identity_resolver,
    get_oauth_flow,
    get_session_binder,
    get_token_manager,
    get_usage_meter,
)
from app.models.usage import UsageIdentity
from app.schemas import (
    ConnectionStatus,
    DateRangePayload,
    LimitDecision,
    MeteredRequestPayload,
    PropertySelectionPayload,
    UpgradePrompt,
    UsageSnapshot,
)
from app.schemas.limits import INVALID_DATE_RANGE, RATE_LIMITED, EXPORT_LIMIT_REACHED

router = APIRouter()
logger = logging.getLogger(__name__)

_QUOTA_CODES = {RATE_LIMITED, EXPORT_LIMIT_REACHED}


def _frontend_url(settings: AppSettings, path: str, **params: str) -> str:
    base = str(settings.frontend_base_url or "").rstrip("/")
    url = f"{base}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return url


def _limit_response(decision: LimitDecision, settings: AppSettings) -> JSONResponse:
    """Render a rejected decision as 429 (quota), 400 (bad input) or 402 (entitlement)."""
    rejection = decision.rejection
    if rejection is None:
        raise ValueError("Only rejected decisions can be rendered as limit responses.")
    if rejection.code in _QUOTA_CODES:
        status = HTTPStatus.TOO_MANY_REQUESTS
    elif rejection.code == INVALID_DATE_RANGE:
        status = HTTPStatus.BAD_REQUEST
    else:
        status = HTTPStatus.PAYMENT_REQUIRED

    body: dict = {"ok": False, "code": rejection.code, "error": rejection.message}
    body["details"] = rejection.details.model_dump(exclude_none=True)
    if status != HTTPStatus.BAD_REQUEST:
        body["upgrade"] = UpgradePrompt(
            message=rejection.message,
            upgrade_url=settings.premium_url,
            current_plan=rejection.details.plan or Plan.FREE.value,
        ).model_dump()
    return JSONResponse(status_code=status, content=body)


def _auth_required(settings: AppSettings) -> JSONResponse:
    return JSONResponse(
        status_code=HTTPStatus.UNAUTHORIZED,
        content={
            "ok": False,
            "code": "AUTH_REQUIRED",
            "error": "Connect Google Analytics to continue.",
            "reconnect_url": _frontend_url(settings, settings.reconnect_path),
        },
    )


async def _identity(
    request: Request,
    session_id: SessionIdDep,
    resolver: Annotated[Any, Depends(get_identity_resolver)],
) -> UsageIdentity:
    return await resolver.resolve(request, session_id)


IdentityDependency = Annotated[UsageIdentity, Depends(_identity)]


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/auth/google/start")
async def start_google_oauth_flow(
    request: Request,
    response: Response,
    binder: Annotated[Any, Depends(get_session_binder)],
    flow: Annotated[Any, Depends(get_oauth_flow)],
    redirect: bool = Query(
        default=True,
        description="When false, respond with JSON instead of redirecting to Google.",
    ),
) -> Any:
    """
    Kick off the PKCE flow, minting a session cookie when the browser has none.
    """
    session_id = binder.ensure(request, response)
    authorization = await flow.start(session_id)

    if not redirect:
        return {"authorization_url": authorization.url, "state": authorization.state}

    redirect_response = RedirectResponse(url=authorization.url, status_code=HTTPStatus.FOUND)
    # A returned Response bypasses the injected one, so the cookie is written again here.
    binder.extend(redirect_response, session_id)
    return redirect_response


@router.get("/auth/google/callback")
async def handle_google_oauth_callback(
    session_id: SessionIdDep,
    binder: Annotated[Any, Depends(get_session_binder)],
    flow: Annotated[Any, Depends(get_oauth_flow)],
    settings: AppSettingsDep,
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
) -> RedirectResponse:
    """Complete the OAuth exchange and send the browser back to the frontend."""
    try:
        await flow.callback(session_id, code=code, state=state, error=error)
    except ConnectorError as exc:
        logger.warning("OAuth callback rejected: %s (%s)", exc.code, exc)
        return RedirectResponse(
            url=_frontend_url(settings, settings.reconnect_path, error=exc.code),
            status_code=HTTPStatus.FOUND,
        )
    except OAuthTokenExchangeError:
        return RedirectResponse(
            url=_frontend_url(settings, settings.reconnect_path, error="TOKEN_EXCHANGE_FAILED"),
            status_code=HTTPStatus.FOUND,
        )
    except KVStoreError as exc:
        logger.error("Storage failure during OAuth callback: %s", exc)
        return RedirectResponse(
            url=_frontend_url(settings, settings.reconnect_path, error="STORAGE_UNAVAILABLE"),
            status_code=HTTPStatus.FOUND,
        )

    response = RedirectResponse(
        url=_frontend_url(settings, "/", connected="1"), status_code=HTTPStatus.FOUND
    )
    binder.extend(response, session_id)
    return response


@router.get("/auth/google/status", response_model=ConnectionStatus)
async def google_connection_status(
    session_id: SessionIdDep,
    tokens: Annotated[Any, Depends(get_token_manager)],
) -> ConnectionStatus:
    """Report whether the session holds a usable Google credential."""
    return await tokens.status(session_id)


@router.post("/auth/google/disconnect", status_code=HTTPStatus.OK)
async def disconnect_google(
    response: Response,
    session_id: SessionIdDep,
    binder: Annotated[Any, Depends(get_session_binder)],
    tokens: Annotated[Any, Depends(get_token_manager)],
) -> dict:
    """Forget stored tokens and clear the session cookie."""
    if session_id:
        await tokens.delete(session_id)
    binder.clear(response)
    return {"ok": True, "connected": False}


@router.get("/usage", response_model=UsageSnapshot)
async def usage_snapshot(
    identity: IdentityDependency,
    meter: Annotated[Any, Depends(get_usage_meter)],
) -> UsageSnapshot:
    return await meter.snapshot(identity.key, Plan.parse(identity.plan))


@router.post("/usage/exports")
async def record_csv_export(
    identity: IdentityDependency,
    meter: Annotated[Any, Depends(get_usage_meter)],
    settings: AppSettingsDep,
) -> Any:
    """Count one CSV export against the rolling weekly allowance."""
    decision = await meter.check_export_allowance(identity.key)
    if not decision.ok:
        return _limit_response(decision, settings)
    return {"ok": True, "remaining": decision.remaining}


@router.post("/usage/{kind}")
async def consume_usage(
    kind: UsageKind,
    identity: IdentityDependency,
    session_id: SessionIdDep,
    tokens: Annotated[Any, Depends(get_token_manager)],
    meter: Annotated[Any, Depends(get_usage_meter)],
    guard: Annotated[Any, Depends(get_entitlement_guard)],
    settings: AppSettingsDep,
    payload: Optional[MeteredRequestPayload] = None,
) -> Any:
    """
    Gate a metered GA4 report or AI summary.

    A connected Google credential and the plan's data entitlements are checked
    before the counter moves, so neither a reconnect nor a rejected property or
    date range burns quota.
    """
    bearer = await tokens.get_bearer(session_id) if session_id else None
    if bearer is None:
        return _auth_required(settings)

    plan = Plan.parse(identity.plan)
    if payload is not None:
        entitlement = await guard.enforce_data_limits(
            identity.key,
            plan,
            property_id=(payload.property_id or "").strip() or None,
            start_date=payload.start_date,
            end_date=payload.end_date,
        )
        if not entitlement.ok:
            return _limit_response(entitlement, settings)

    decision = await meter.check_and_increment(identity.key, plan, kind)
    if not decision.ok:
        return _limit_response(decision, settings)
    return {"ok": True, "kind": kind.value, "remaining": decision.remaining}


@router.get("/ga4/properties")
async def list_ga4_properties(
    identity: IdentityDependency,
    session_id: SessionIdDep,
    tokens: Annotated[Any, Depends(get_token_manager)],
    admin: Annotated[Any, Depends(get_analytics_admin_client)],
    guard: Annotated[Any, Depends(get_entitlement_guard)],
    settings: AppSettingsDep,
) -> Any:
    """List GA4 properties visible to the connected account plus the linked set."""
    bearer = await tokens.get_bearer(session_id) if session_id else None
    if bearer is None:
        return _auth_required(settings)

    try:
        properties = await admin.list_properties(bearer)
    except AnalyticsAdminError as exc:
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY,
            detail=f"Google Analytics Admin API error (status={exc.status_code}).",
        ) from exc

    linked = await guard.linked_resources(identity.key)
    return {
        "ok": True,
        "properties": [prop.model_dump() for prop in properties],
        "linked": [prop.model_dump(by_alias=True) for prop in linked],
    }


@router.post("/ga4/properties/select")
async def select_ga4_property(
    payload: PropertySelectionPayload,
    identity: IdentityDependency,
    guard: Annotated[Any, Depends(get_entitlement_guard)],
    settings: AppSettingsDep,
) -> Any:
    """Link a GA4 property to the identity within the plan's allowance."""
    property_id = payload.property_id.strip()
    if not property_id:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST, detail="property_id is required."
        )
    decision = await guard.assert_resource_link(
        identity.key, Plan.parse(identity.plan), property_id, name=payload.name
    )
    if not decision.ok:
        return _limit_response(decision, settings)
    linked = await guard.linked_resources(identity.key)
    return {
        "ok": True,
        "remaining": decision.remaining,
        "linked": [prop.model_dump(by_alias=True) for prop in linked],
    }


@router.post("/ga4/date-range/check")
async def check_date_range(
    payload: DateRangePayload,
    identity: IdentityDependency,
    guard: Annotated[Any, Depends(get_entitlement_guard)],
    settings: AppSettingsDep,
) -> Any:
    """Validate a requested report range against the plan's lookback window.

    The end date is checked when the range has no start date.
    """
    boundary = payload.start_date or payload.end_date
    if not boundary:
        return {"ok": True}
    decision = guard.assert_lookback(Plan.parse(identity.plan), boundary)
    if not decision.ok:
        return _limit_response(decision, settings)
    return {"ok": True}


__all__ = ["router"]
