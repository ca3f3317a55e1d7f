"""Schemas related to OAuth flows."""

from __future__ import annotations

from pydantic import BaseModel, Field


class AuthorizationRequest(BaseModel):
    """Authorization URL plus the state it was bound to."""

    url: str = Field(..., description="Google consent URL the browser is sent to.")
    state: str = Field(..., description="Anti-CSRF nonce stored for the session.")


class ConnectionStatus(BaseModel):
    """Whether the current session holds a usable Google credential."""

    has_tokens: bool
    expired: bool
    connected: bool


class PropertySelectionPayload(BaseModel):
    property_id: str = Field(..., description="GA4 property, e.g. 'properties/123'.")
    name: str = ""


class DateRangePayload(BaseModel):
    start_date: str | None = Field(None, description="ISO date (YYYY-MM-DD).")
    end_date: str | None = Field(None, description="ISO date (YYYY-MM-DD).")


class MeteredRequestPayload(DateRangePayload):
    """Optional report scope checked against plan entitlements before metering."""

    property_id: str | None = Field(None, description="GA4 property the call reads.")


__all__ = [
    "AuthorizationRequest",
    "ConnectionStatus",
    "DateRangePayload",
    "MeteredRequestPayload",
    "PropertySelectionPayload",
]
