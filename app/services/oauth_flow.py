"""
OAuth Authorization Code + PKCE flow against Google.

``start`` binds a verifier and a state nonce to the session, and ``callback``
redeems both exactly once and exchanges the code. ``GoogleTokenRefresher``
mints a new access token from a stored refresh token.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time
from typing import Callable, Optional

from app.clients.google_auth import GoogleOAuthClient, OAuthRefreshError, OAuthTokenExchangeError
from app.core.errors import (
    AuthRequiredError,
    InvalidStateError,
    MissingCallbackParameterError,
    MissingPkceVerifierError,
    ProviderDeniedError,
)
from app.models.oauth import TokenRecord
from app.schemas.auth import AuthorizationRequest
from app.services.google_tokens import TokenLifecycleManager
from app.services.pkce_store import PkceChallengeStore

logger = logging.getLogger(__name__)


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    return _b64url(secrets.token_bytes(32))


def code_challenge_for(verifier: str) -> str:
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state() -> str:
    return _b64url(secrets.token_bytes(24))


class GoogleTokenRefresher:
    """Mints a new access token from a stored refresh token."""

    def __init__(
        self,
        oauth_client: GoogleOAuthClient,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._oauth = oauth_client
        self._clock = clock

    async def refresh(self, record: TokenRecord) -> Optional[TokenRecord]:
        """Return a refreshed record, or ``None`` when the provider refuses.

        Failures are not retried; the caller treats ``None`` as "reconnect".
        """
        if not record.refresh_token:
            return None
        try:
            grant = await self._oauth.refresh_token(record.refresh_token)
        except OAuthRefreshError as exc:
            logger.warning(
                "Token refresh failed (status=%s): %s", exc.status_code, exc.detail
            )
            return None

        return TokenRecord(
            access_token=grant.access_token,
            # Google usually omits refresh_token on refresh responses.
            refresh_token=grant.refresh_token or record.refresh_token,
            expiry=int(self._clock()) + grant.expires_in,
            created_at=record.created_at,
        )


class OAuthFlowController:
    def __init__(
        self,
        oauth_client: GoogleOAuthClient,
        pkce_store: PkceChallengeStore,
        token_manager: TokenLifecycleManager,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._oauth = oauth_client
        self._pkce = pkce_store
        self._tokens = token_manager
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    async def start(self, session_id: str) -> AuthorizationRequest:
        """Persist a fresh verifier and state for the session and build the consent URL."""
        verifier = generate_code_verifier()
        state = generate_state()
        await self._pkce.save_verifier(session_id, verifier)
        await self._pkce.save_state(session_id, state)
        url = self._oauth.build_authorization_url(
            state=state, code_challenge=code_challenge_for(verifier)
        )
        return AuthorizationRequest(url=url, state=state)

    async def callback(
        self,
        session_id: Optional[str],
        *,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> TokenRecord:
        """Redeem the state and verifier, exchange the code and store the tokens.

        The state is consumed before the verifier is popped, so replaying a
        callback fails on the state check and never reaches the provider.
        """
        if error:
            raise ProviderDeniedError(f"Google returned an OAuth error: {error}")
        if not code or not state:
            missing = [name for name, value in (("code", code), ("state", state)) if not value]
            raise MissingCallbackParameterError(
                f"OAuth callback is missing: {', '.join(missing)}"
            )
        if not session_id:
            raise AuthRequiredError("OAuth callback arrived without a session cookie.")

        if not await self._pkce.consume_state(session_id, state):
            raise InvalidStateError("OAuth state is unknown, expired or already used.")

        verifier = await self._pkce.pop_verifier(session_id)
        if not verifier:
            raise MissingPkceVerifierError("PKCE verifier expired or already redeemed.")

        try:
            grant = await self._oauth.exchange_authorization_code(code, verifier)
        except OAuthTokenExchangeError as exc:
            logger.error(
                "Authorization code exchange failed (status=%s): %s",
                exc.status_code,
                exc.detail,
            )
            raise

        now = self._now()
        record = TokenRecord(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expiry=now + grant.expires_in,
            created_at=now,
        )
        await self._tokens.save(session_id, record)
        logger.info("Stored Google credential for session")
        return record


__all__ = [
    "GoogleTokenRefresher",
    "OAuthFlowController",
    "code_challenge_for",
    "generate_code_verifier",
    "generate_state",
]
