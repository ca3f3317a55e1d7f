"""
Domain models for OAuth token and PKCE persistence.
"""

import time
from typing import Optional

from pydantic import BaseModel, Field


def _now() -> int:
    return int(time.time())


class TokenRecord(BaseModel):
    """Canonical Google credential held for one session."""

    access_token: str
    refresh_token: Optional[str] = None
    expiry: int = Field(..., description="Access token expiry as epoch seconds.")
    created_at: int = Field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        """A record without a refresh token cannot outlive its access token."""
        return not self.refresh_token

    def is_fresh(self, *, now: int, skew_seconds: int = 60) -> bool:
        return self.expiry - skew_seconds > now

    def is_expired(self, *, now: int) -> bool:
        return self.expiry <= now


class StoredTokenRecord(BaseModel):
    """Serialized form of ``TokenRecord`` with tokens sealed at rest."""

    access_token_encrypted: str
    refresh_token_encrypted: Optional[str] = None
    expiry: int
    created_at: int
    updated_at: int = Field(default_factory=_now)


class PkceChallenge(BaseModel):
    verifier: str
    created_at: int = Field(default_factory=_now)


class OAuthState(BaseModel):
    state: str
    created_at: int = Field(default_factory=_now)


__all__ = ["OAuthState", "PkceChallenge", "StoredTokenRecord", "TokenRecord"]
