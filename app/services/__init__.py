"""Service layer exports."""

from .credential_vault import CredentialVault
from .entitlements import EntitlementGuard
from .google_tokens import TokenLifecycleManager, TokenRecordRepository
from .identity import IdentityResolver
from .oauth_flow import GoogleTokenRefresher, OAuthFlowController
from .pkce_store import PkceChallengeStore
from .session_binder import SessionBinder
from .usage_meter import UsageMeter

__all__ = [
    "CredentialVault",
    "EntitlementGuard",
    "GoogleTokenRefresher",
    "IdentityResolver",
    "OAuthFlowController",
    "PkceChallengeStore",
    "SessionBinder",
    "TokenLifecycleManager",
    "TokenRecordRepository",
    "UsageMeter",
]
