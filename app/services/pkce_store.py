"""Short-lived storage for PKCE verifiers and OAuth state nonces."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from app.clients.kv_store import KeyValueStore, get_json, set_json
from app.models.oauth import OAuthState, PkceChallenge

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600


class PkceChallengeStore:
    """Session-keyed PKCE verifier and state storage with one-time redemption."""

    def __init__(self, store: KeyValueStore, *, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._store = store
        self._ttl = ttl_seconds

    @staticmethod
    def _verifier_key(session_id: str) -> str:
        return f"pkce:{session_id}"

    @staticmethod
    def _state_key(session_id: str) -> str:
        return f"oauth_state:{session_id}"

    async def save_verifier(self, session_id: str, verifier: str) -> None:
        challenge = PkceChallenge(verifier=verifier)
        await set_json(
            self._store, self._verifier_key(session_id), challenge.model_dump(), self._ttl
        )

    async def pop_verifier(self, session_id: str) -> Optional[str]:
        """Return the stored verifier and delete it; ``None`` if absent."""
        key = self._verifier_key(session_id)
        payload = await get_json(self._store, key)
        # Deleted before validation so even a corrupt entry cannot be replayed.
        await self._store.delete(key)
        if not isinstance(payload, dict) or not payload.get("verifier"):
            return None
        return PkceChallenge.model_validate(payload).verifier

    async def save_state(self, session_id: str, state: str) -> None:
        record = OAuthState(state=state)
        await set_json(
            self._store, self._state_key(session_id), record.model_dump(), self._ttl
        )

    async def consume_state(self, session_id: str, state: str) -> bool:
        """Check ``state`` against the stored nonce and delete it either way."""
        key = self._state_key(session_id)
        payload = await get_json(self._store, key)
        if payload is None:
            return False
        await self._store.delete(key)
        stored = payload.get("state") if isinstance(payload, dict) else None
        if not stored:
            return False
        matched = hmac.compare_digest(stored.encode("utf-8"), state.encode("utf-8"))
        if not matched:
            logger.warning("OAuth state mismatch; discarding pending authorization")
        return matched


__all__ = ["DEFAULT_TTL_SECONDS", "PkceChallengeStore"]
