"""Resolve who a request is metered as, and on which plan."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request

from app.clients.kv_store import KeyValueStore
from app.core.plans import Plan
from app.models.usage import UsageIdentity

logger = logging.getLogger(__name__)

QA_OVERRIDE_HEADER = "x-aa-premium-override"


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",")[0].strip()
    if first_hop:
        return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class IdentityResolver:
    def __init__(self, store: KeyValueStore, *, allow_qa_override: bool = False) -> None:
        self._store = store
        self._allow_qa_override = allow_qa_override

    @staticmethod
    def identity_key(request: Request, session_id: Optional[str]) -> tuple[str, str]:
        if session_id:
            return f"sid:{session_id}", "sid"
        return f"ip:{client_ip(request)}", "ip"

    async def plan_for(self, identity_key: str) -> Plan:
        raw = await self._store.get(f"plan:{identity_key}")
        return Plan.parse(raw)

    def _qa_override_requested(self, request: Request) -> bool:
        value = request.headers.get(QA_OVERRIDE_HEADER, "").strip().lower()
        return value in {"true", "1"}

    async def resolve(self, request: Request, session_id: Optional[str]) -> UsageIdentity:
        """Build the metering identity for a request.

        The QA header only takes effect when the override is enabled in
        settings; otherwise it is ignored and the stored plan applies.
        """
        key, source = self.identity_key(request, session_id)

        if self._qa_override_requested(request):
            if self._allow_qa_override:
                logger.warning("QA premium override applied for identity=%s", key)
                return UsageIdentity(
                    key=key, source=source, plan=Plan.PREMIUM.value, qa_override=True
                )
            logger.info("Ignoring QA premium override header for identity=%s", key)

        plan = await self.plan_for(key)
        return UsageIdentity(key=key, source=source, plan=plan.value)


__all__ = ["IdentityResolver", "QA_OVERRIDE_HEADER", "client_ip"]
