"""
Persistence and refresh policy for Google OAuth tokens.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol

from app.clients.kv_store import KeyValueStore, get_json, set_json
from app.core.errors import CredentialVaultError
from app.models.oauth import StoredTokenRecord, TokenRecord
from app.schemas.auth import ConnectionStatus
from app.services.credential_vault import CredentialVault

logger = logging.getLogger(__name__)

DEFAULT_RECORD_TTL_SECONDS = 60 * 60 * 24 * 90


class TokenRefresher(Protocol):
    async def refresh(self, record: TokenRecord) -> Optional[TokenRecord]:
        ...


class TokenRecordRepository:
    """Reads and writes ``tokens:{session}`` with both tokens sealed at rest."""

    def __init__(
        self,
        store: KeyValueStore,
        vault: CredentialVault,
        *,
        ttl_seconds: int = DEFAULT_RECORD_TTL_SECONDS,
    ) -> None:
        self._store = store
        self._vault = vault
        self._ttl = ttl_seconds

    @staticmethod
    def _key(session_id: str) -> str:
        return f"tokens:{session_id}"

    async def get(self, session_id: str) -> Optional[TokenRecord]:
        payload = await get_json(self._store, self._key(session_id))
        if not isinstance(payload, dict):
            return None
        try:
            stored = StoredTokenRecord.model_validate(payload)
            access_token = self._vault.open(stored.access_token_encrypted)
            refresh_token = (
                self._vault.open(stored.refresh_token_encrypted)
                if stored.refresh_token_encrypted
                else None
            )
        except (CredentialVaultError, ValueError) as exc:
            # Usually a rotated secret; the session has to reconnect.
            logger.warning("Stored token record for session is unreadable: %s", exc)
            return None
        return TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            expiry=stored.expiry,
            created_at=stored.created_at,
        )

    async def save(self, session_id: str, record: TokenRecord) -> None:
        stored = StoredTokenRecord(
            access_token_encrypted=self._vault.seal(record.access_token),
            refresh_token_encrypted=(
                self._vault.seal(record.refresh_token) if record.refresh_token else None
            ),
            expiry=record.expiry,
            created_at=record.created_at,
        )
        await set_json(self._store, self._key(session_id), stored.model_dump(), self._ttl)

    async def delete(self, session_id: str) -> None:
        await self._store.delete(self._key(session_id))


class TokenLifecycleManager:
    """Hands out a valid bearer token per session, refreshing when close to expiry."""

    def __init__(
        self,
        repository: TokenRecordRepository,
        refresher: TokenRefresher,
        *,
        refresh_skew_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._repository = repository
        self._refresher = refresher
        self._skew = refresh_skew_seconds
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    async def save(self, session_id: str, record: TokenRecord) -> None:
        await self._repository.save(session_id, record)

    async def delete(self, session_id: str) -> None:
        await self._repository.delete(session_id)

    async def get_bearer(self, session_id: str) -> Optional[str]:
        """Return a usable access token for the session, or ``None``.

        ``None`` always means the caller must send the user through the OAuth
        flow again; stale records are kept after a failed refresh so the next
        request gets another attempt.
        """
        record = await self._repository.get(session_id)
        if record is None:
            return None

        if record.is_fresh(now=self._now(), skew_seconds=self._skew):
            return record.access_token

        if record.is_terminal:
            logger.info("Token record has no refresh token; reconnect required")
            return None

        refreshed = await self._refresher.refresh(record)
        if refreshed is None:
            return None

        if refreshed != record:
            await self._repository.save(session_id, refreshed)
        return refreshed.access_token

    async def status(self, session_id: Optional[str]) -> ConnectionStatus:
        if not session_id:
            return ConnectionStatus(has_tokens=False, expired=True, connected=False)
        record = await self._repository.get(session_id)
        if record is None:
            return ConnectionStatus(has_tokens=False, expired=True, connected=False)
        bearer = await self.get_bearer(session_id)
        if bearer is not None:
            return ConnectionStatus(has_tokens=True, expired=False, connected=True)
        return ConnectionStatus(
            has_tokens=True,
            expired=record.is_expired(now=self._now()),
            connected=False,
        )


__all__ = [
    "DEFAULT_RECORD_TTL_SECONDS",
    "TokenLifecycleManager",
    "TokenRecordRepository",
    "TokenRefresher",
]
