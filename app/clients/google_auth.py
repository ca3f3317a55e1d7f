"""
Google OAuth utilities.

These helpers build the PKCE consent URL and perform the token endpoint
calls for the initial code exchange and for silent refresh.
"""

from __future__ import annotations

from typing import Any, Dict, NamedTuple, Optional
from urllib.parse import urlencode

import httpx

from app.core.config import GoogleSettings, OAuthSettings


class OAuthTokenExchangeError(Exception):
    """Raised when the token endpoint rejects an authorization code exchange."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, detail: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class OAuthRefreshError(OAuthTokenExchangeError):
    """Raised when the token endpoint rejects a refresh token."""


class TokenGrant(NamedTuple):
    access_token: str
    refresh_token: Optional[str]
    expires_in: int


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _expires_in(
    token_payload: Dict[str, Any],
    error_cls: type[OAuthTokenExchangeError],
    status_code: int,
) -> int:
    raw = token_payload.get("expires_in")
    try:
        return int(raw or 3600)
    except (TypeError, ValueError) as exc:
        raise error_cls(
            "Token endpoint returned a non-numeric expires_in.",
            status_code=status_code,
            detail=f"expires_in={raw!r}",
        ) from exc


def _provider_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(payload, dict):
        return str(payload.get("error_description") or payload.get("error") or payload)
    return str(payload)


class GoogleOAuthClient:
    """Build Google authorization URLs and talk to the token endpoint."""

    AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"

    def __init__(
        self,
        google_settings: GoogleSettings,
        oauth_settings: OAuthSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._google = google_settings
        self._oauth = oauth_settings
        self._transport = transport

    def build_authorization_url(self, *, state: str, code_challenge: str) -> str:
        """Construct the Google OAuth consent URL for a PKCE flow."""
        params = {
            "client_id": self._google.client_id,
            "redirect_uri": str(self._google.redirect_uri),
            "response_type": "code",
            "scope": " ".join(self._oauth.scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "access_type": "offline",
            # Forces a fresh refresh token even when consent was granted before.
            "prompt": "consent",
            "include_granted_scopes": "true",
        }
        return f"{self.AUTH_BASE_URL}?{urlencode(params)}"

    async def _post_token(self, payload: Dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self._oauth.provider_timeout_seconds, transport=self._transport
        ) as client:
            return await client.post(self.TOKEN_URL, data=payload)

    async def exchange_authorization_code(self, code: str, code_verifier: str) -> TokenGrant:
        """Exchange an authorization code and PKCE verifier for tokens.

        Both an access token and a refresh token are required; a missing
        refresh token means the consent prompt was not forced and is treated
        as a configuration error.
        """
        payload = {
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "code": code,
            "code_verifier": code_verifier,
            "grant_type": "authorization_code",
            "redirect_uri": str(self._google.redirect_uri),
        }

        try:
            response = await self._post_token(payload)
        except httpx.HTTPError as exc:
            raise OAuthTokenExchangeError(
                "Token endpoint unreachable during code exchange.", detail=str(exc)
            ) from exc

        if not response.is_success:
            raise OAuthTokenExchangeError(
                "Token endpoint rejected the authorization code.",
                status_code=response.status_code,
                detail=_provider_detail(response),
            )

        token_payload = _json_body(response)
        access_token = token_payload.get("access_token")
        refresh_token = token_payload.get("refresh_token")

        if not access_token or not refresh_token:
            raise OAuthTokenExchangeError(
                "Incomplete token payload returned from Google.",
                status_code=response.status_code,
                detail="missing access_token or refresh_token",
            )

        expires_in = _expires_in(token_payload, OAuthTokenExchangeError, response.status_code)
        return TokenGrant(access_token, refresh_token, expires_in)

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Refresh the access token using a stored refresh token."""
        payload = {
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._post_token(payload)
        except httpx.HTTPError as exc:
            raise OAuthRefreshError(
                "Token endpoint unreachable during refresh.", detail=str(exc)
            ) from exc

        if not response.is_success:
            raise OAuthRefreshError(
                "Token endpoint rejected the refresh token.",
                status_code=response.status_code,
                detail=_provider_detail(response),
            )

        token_payload = _json_body(response)
        access_token = token_payload.get("access_token")
        if not access_token:
            raise OAuthRefreshError(
                "Incomplete refresh payload returned from Google.",
                status_code=response.status_code,
            )

        return TokenGrant(
            access_token,
            token_payload.get("refresh_token"),
            _expires_in(token_payload, OAuthRefreshError, response.status_code),
        )


__all__ = [
    "GoogleOAuthClient",
    "OAuthRefreshError",
    "OAuthTokenExchangeError",
    "TokenGrant",
]
