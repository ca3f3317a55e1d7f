"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from app.clients import (
    AnalyticsAdminClient,
    GoogleOAuthClient,
    KeyValueStore,
    build_kv_store,
)
from app.core.config import get_settings
from app.core.plans import PlanTable
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


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_kv_store() -> KeyValueStore:
    """Provide the key-value backend selected by configuration."""
    return build_kv_store(_settings().kv)


@lru_cache()
def get_plan_table() -> PlanTable:
    """Provide plan limits, honouring environment overrides."""
    return PlanTable.from_settings(_settings().plans)


@lru_cache()
def get_credential_vault() -> CredentialVault:
    """Provide the AES-GCM sealer used for cookies and stored tokens."""
    return CredentialVault(secret=_settings().security.session_encryption_secret)


@lru_cache()
def get_session_binder() -> SessionBinder:
    return SessionBinder(get_credential_vault(), _settings().session)


@lru_cache()
def get_pkce_store() -> PkceChallengeStore:
    return PkceChallengeStore(
        get_kv_store(), ttl_seconds=_settings().oauth.state_ttl_seconds
    )


@lru_cache()
def get_google_oauth_client() -> GoogleOAuthClient:
    """Create a singleton Google OAuth client."""
    settings = _settings()
    return GoogleOAuthClient(settings.google, settings.oauth)


@lru_cache()
def get_token_repository() -> TokenRecordRepository:
    return TokenRecordRepository(
        get_kv_store(),
        get_credential_vault(),
        ttl_seconds=_settings().session.cookie_max_age_seconds,
    )


@lru_cache()
def get_token_refresher() -> GoogleTokenRefresher:
    return GoogleTokenRefresher(get_google_oauth_client())


@lru_cache()
def get_token_manager() -> TokenLifecycleManager:
    """Provide the bearer-token lifecycle manager."""
    return TokenLifecycleManager(
        get_token_repository(),
        get_token_refresher(),
        refresh_skew_seconds=_settings().oauth.refresh_skew_seconds,
    )


@lru_cache()
def get_oauth_flow() -> OAuthFlowController:
    """Provide the PKCE authorization flow controller."""
    return OAuthFlowController(
        get_google_oauth_client(), get_pkce_store(), get_token_manager()
    )


@lru_cache()
def get_usage_meter() -> UsageMeter:
    return UsageMeter(get_kv_store(), get_plan_table())


@lru_cache()
def get_entitlement_guard() -> EntitlementGuard:
    return EntitlementGuard(get_kv_store(), get_plan_table())


@lru_cache()
def get_identity_resolver() -> IdentityResolver:
    return IdentityResolver(
        get_kv_store(), allow_qa_override=_settings().allow_qa_premium_override
    )


@lru_cache()
def get_analytics_admin_client() -> AnalyticsAdminClient:
    """Provide the GA4 Admin API client."""
    return AnalyticsAdminClient(timeout_seconds=_settings().oauth.provider_timeout_seconds)


__all__ = [
    "get_analytics_admin_client",
    "get_credential_vault",
    "get_entitlement_guard",
    "get_google_oauth_client",
    "get_identity_resolver",
    "get_kv_store",
    "get_oauth_flow",
    "get_pkce_store",
    "get_plan_table",
    "get_session_binder",
    "get_token_manager",
    "get_token_refresher",
    "get_token_repository",
    "get_usage_meter",
]
