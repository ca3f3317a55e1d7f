"""Bind inbound requests to opaque session identifiers carried in a sealed cookie."""

from __future__ import annotations

import logging
import secrets
from typing import Optional

from fastapi import Request, Response

from app.core.config import SessionSettings
from app.core.errors import CredentialVaultError
from app.services.credential_vault import CredentialVault

logger = logging.getLogger(__name__)

SESSION_ID_BYTES = 32


def new_session_id() -> str:
    return secrets.token_urlsafe(SESSION_ID_BYTES)


class SessionBinder:
    """Resolve, mint and clear the session cookie.

    The cookie only ever holds ``vault.seal(session_id)``; tokens stay in the
    key-value store.
    """

    def __init__(self, vault: CredentialVault, settings: SessionSettings) -> None:
        self._vault = vault
        self._settings = settings

    @property
    def cookie_name(self) -> str:
        return self._settings.cookie_name

    def resolve(self, request: Request) -> Optional[str]:
        """Return the session id from the request cookie, or ``None``."""
        sealed = request.cookies.get(self._settings.cookie_name)
        if not sealed:
            return None
        try:
            session_id = self._vault.open(sealed)
        except CredentialVaultError as exc:
            logger.debug("Ignoring unreadable session cookie: %s", exc)
            return None
        return session_id or None

    def ensure(self, request: Request, response: Response) -> str:
        """Resolve the session id, minting and setting a new cookie when absent."""
        session_id = self.resolve(request)
        if session_id:
            return session_id
        session_id = new_session_id()
        self._write_cookie(response, session_id)
        logger.info("Minted new session")
        return session_id

    def extend(self, response: Response, session_id: str) -> None:
        """Re-issue the cookie so its lifetime restarts from now."""
        self._write_cookie(response, session_id)

    def clear(self, response: Response) -> None:
        response.delete_cookie(
            key=self._settings.cookie_name,
            path="/",
            domain=self._settings.cookie_domain,
            secure=self._settings.cookie_secure,
            httponly=True,
            samesite="lax",
        )

    def _write_cookie(self, response: Response, session_id: str) -> None:
        response.set_cookie(
            key=self._settings.cookie_name,
            value=self._vault.seal(session_id),
            max_age=self._settings.cookie_max_age_seconds,
            path="/",
            domain=self._settings.cookie_domain,
            secure=self._settings.cookie_secure,
            httponly=True,
            samesite="lax",
        )


__all__ = ["SESSION_ID_BYTES", "SessionBinder", "new_session_id"]
