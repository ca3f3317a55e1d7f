"""
Thin Google Analytics Admin API wrapper for listing GA4 properties.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class AnalyticsAdminError(Exception):
    """Raised when the Admin API call fails."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PropertySummary(BaseModel):
    property_id: str
    display_name: str = ""
    account_id: str = ""
    account_name: str = ""


def _strip_prefix(resource: str, prefix: str) -> str:
    return resource[len(prefix):] if resource.startswith(prefix) else resource


class AnalyticsAdminClient:
    ACCOUNT_SUMMARIES_URL = "https://analyticsadmin.googleapis.com/v1beta/accountSummaries"

    def __init__(
        self,
        *,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout_seconds
        self._transport = transport

    async def list_properties(self, bearer: str) -> List[PropertySummary]:
        """Return every GA4 property the bearer can see, across all pages."""
        headers = {"Authorization": f"Bearer {bearer}"}
        properties: List[PropertySummary] = []
        params: Dict[str, Any] = {"pageSize": 200}

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            while True:
                try:
                    response = await client.get(
                        self.ACCOUNT_SUMMARIES_URL, headers=headers, params=params
                    )
                except httpx.HTTPError as exc:
                    raise AnalyticsAdminError(f"Admin API unreachable: {exc}") from exc

                if not response.is_success:
                    logger.warning(
                        "Admin API accountSummaries failed with status %s",
                        response.status_code,
                    )
                    raise AnalyticsAdminError(
                        "Admin API rejected the request.", status_code=response.status_code
                    )

                payload = response.json()
                for account in payload.get("accountSummaries", []):
                    account_id = _strip_prefix(account.get("account", ""), "accounts/")
                    for prop in account.get("propertySummaries", []):
                        properties.append(
                            PropertySummary(
                                property_id=_strip_prefix(
                                    prop.get("property", ""), "properties/"
                                ),
                                display_name=prop.get("displayName", ""),
                                account_id=account_id,
                                account_name=account.get("displayName", ""),
                            )
                        )

                next_token = payload.get("nextPageToken")
                if not next_token:
                    break
                params["pageToken"] = next_token

        return properties


__all__ = ["AnalyticsAdminClient", "AnalyticsAdminError", "PropertySummary"]
