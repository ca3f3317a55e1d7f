"""Expose constructed client wrappers."""

from .analytics_admin import AnalyticsAdminClient, AnalyticsAdminError, PropertySummary
from .google_auth import (
    GoogleOAuthClient,
    OAuthRefreshError,
    OAuthTokenExchangeError,
    TokenGrant,
)
from .kv_store import (
    InMemoryKVStore,
    KeyValueStore,
    KVNotConfiguredError,
    KVStoreError,
    RestKVClient,
    SQLiteKVStore,
    build_kv_store,
)

__all__ = [
    "AnalyticsAdminClient",
    "AnalyticsAdminError",
    "GoogleOAuthClient",
    "InMemoryKVStore",
    "KVNotConfiguredError",
    "KVStoreError",
    "KeyValueStore",
    "OAuthRefreshError",
    "OAuthTokenExchangeError",
    "PropertySummary",
    "RestKVClient",
    "SQLiteKVStore",
    "TokenGrant",
    "build_kv_store",
]
