"""
Key-value store clients.

Every durable piece of state (token records, PKCE challenges, usage
counters, linked properties) lives behind the ``KeyValueStore`` protocol:
``get``/``set``/``delete`` on string values with an optional TTL in seconds.
``RestKVClient`` talks to the hosted store; ``SQLiteKVStore`` and
``InMemoryKVStore`` are local substitutes for development and tests.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Tuple
from urllib.parse import quote

import httpx

from app.core.config import KVSettings
from app.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)


class KVStoreError(Exception):
    """Raised when the store rejects a request or cannot be reached."""


class KVNotConfiguredError(KVStoreError):
    """Raised when the REST backend is selected without URL or token."""


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


async def get_json(store: KeyValueStore, key: str) -> Any:
    """Read ``key`` and decode its JSON payload; ``None`` when absent or corrupt."""
    raw = await store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding undecodable value stored under %s", key)
        return None


async def set_json(
    store: KeyValueStore, key: str, value: Any, ttl_seconds: Optional[int] = None
) -> None:
    await store.set(key, json.dumps(value, separators=(",", ":")), ttl_seconds)


class RestKVClient:
    """Client for the hosted store's REST protocol.

    ``GET /get/{key}`` answers ``{"result": <raw string | null>}``;
    ``POST /set/{key}`` takes ``{"value", "expiration_ttl"}``;
    ``POST /del/{key}`` removes the key. All calls carry a bearer token.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout: float = 10.0,
        retry_attempts: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url or not token:
            missing = [
                name
                for name, value in (
                    ("UPSTASH_KV_REST_URL", base_url),
                    ("UPSTASH_KV_REST_TOKEN", token),
                )
                if not value
            ]
            raise KVNotConfiguredError(
                f"Key-value store not configured: missing {', '.join(missing)}"
            )
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._retry = RetryConfig(attempts=retry_attempts, backoff_seconds=0.2)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: KVSettings) -> "RestKVClient":
        return cls(
            base_url=settings.rest_url or "",
            token=settings.rest_token or "",
            timeout=settings.timeout_seconds,
            retry_attempts=settings.retry_attempts,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"Authorization": f"Bearer {self._token}"},
            transport=self._transport,
        )

    async def _call(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        async with self._client() as client:
            try:
                response = await request_with_retry(
                    client.request, method, path, retry_config=self._retry, **kwargs
                )
            except httpx.HTTPStatusError as exc:
                raise KVStoreError(
                    f"Store {method} {path} failed: {exc.response.status_code} "
                    f"{exc.response.text}"
                ) from exc
            except httpx.TransportError as exc:
                raise KVStoreError(f"Store {method} {path} unreachable: {exc}") from exc
        try:
            payload = response.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}

    async def get(self, key: str) -> Optional[str]:
        payload = await self._call("GET", f"/get/{quote(key, safe='')}")
        result = payload.get("result")
        if result is None:
            return None
        return result if isinstance(result, str) else json.dumps(result)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        body: Dict[str, Any] = {"value": value}
        if ttl_seconds:
            body["expiration_ttl"] = int(ttl_seconds)
        await self._call("POST", f"/set/{quote(key, safe='')}", json=body)

    async def delete(self, key: str) -> None:
        await self._call("POST", f"/del/{quote(key, safe='')}")


class SQLiteKVStore:
    """SQLite-backed substitute for the hosted store, with TTL expiry."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
                """
            )

    async def get(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT value, expires_at FROM kv_entries WHERE key = ?",
                (key,),
            ).fetchone()
            if not row:
                return None
            if row["expires_at"] is not None and row["expires_at"] <= time.time():
                conn.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
                return None
        return row["value"]

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = time.time() + ttl_seconds if ttl_seconds else None
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv_entries (key, value, expires_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (key, value, expires_at),
            )

    async def delete(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv_entries WHERE key = ?", (key,))


class InMemoryKVStore:
    """Process-local store. State is lost on restart."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


def build_kv_store(settings: KVSettings) -> KeyValueStore:
    """Instantiate the backend selected by ``KV_BACKEND``."""
    if settings.backend == "sqlite":
        return SQLiteKVStore(settings.sqlite_path)
    if settings.backend == "memory":
        logger.warning("Using in-memory key-value store; state will not survive restarts")
        return InMemoryKVStore()
    return RestKVClient.from_settings(settings)


__all__ = [
    "InMemoryKVStore",
    "KVNotConfiguredError",
    "KVStoreError",
    "KeyValueStore",
    "RestKVClient",
    "SQLiteKVStore",
    "build_kv_store",
    "get_json",
    "set_json",
]
