"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_analytics_admin_client,
    get_credential_vault,
    get_entitlement_guard,
    get_google_oauth_client,
    get_identity_resolver,
    get_kv_store,
    get_oauth_flow,
    get_pkce_store,
    get_plan_table,
    get_session_binder,
    get_token_manager,
    get_token_refresher,
    get_token_repository,
    get_usage_meter,
)
from .config import (
    AppSettingsDep,
    SessionIdDep,
    SettingsDependency,
    get_app_settings,
    get_session_id,
)

__all__ = [
    "AppSettingsDep",
    "SessionIdDep",
    "SettingsDependency",
    "get_analytics_admin_client",
    "get_app_settings",
    "get_credential_vault",
    "get_entitlement_guard",
    "get_google_oauth_client",
    "get_identity_resolver",
    "get_kv_store",
    "get_oauth_flow",
    "get_pkce_store",
    "get_plan_table",
    "get_session_binder",
    "get_session_id",
    "get_token_manager",
    "get_token_refresher",
    "get_token_repository",
    "get_usage_meter",
]
