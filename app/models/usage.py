"""
Domain models for usage counters and linked analytics properties.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class UsageIdentity(BaseModel):
    """Who is being metered and on which plan."""

    key: str = Field(..., description="Stable identity key, e.g. 'sid:<id>'.")
    source: str = Field(..., description="Where the key came from: sid, user or ip.")
    plan: str = "free"
    qa_override: bool = False


class UsageRecord(BaseModel):
    """Monthly counters stored under ``usage:{identity}:{period}``."""

    period: str
    key: str
    plan: str
    counters: Dict[str, int] = Field(default_factory=dict)

    def count(self, field: str) -> int:
        return int(self.counters.get(field, 0))


class LinkedProperty(BaseModel):
    id: str
    name: str = ""
    added_at: str = Field(default_factory=_utc_iso, alias="addedAt")

    model_config = {"populate_by_name": True}

    @field_validator("name", mode="before")
    @classmethod
    def _blank_name(cls, value):
        return "" if value is None else value

    @field_validator("added_at", mode="before")
    @classmethod
    def _default_added_at(cls, value):
        return _utc_iso() if value is None else value


class PropertyLinkRecord(BaseModel):
    properties: List[LinkedProperty] = Field(default_factory=list)

    def find(self, property_id: str) -> Optional[LinkedProperty]:
        for prop in self.properties:
            if prop.id == property_id:
                return prop
        return None


class ExportAllowanceRecord(BaseModel):
    count: int = 0
    started_at: float


__all__ = [
    "ExportAllowanceRecord",
    "LinkedProperty",
    "PropertyLinkRecord",
    "UsageIdentity",
    "UsageRecord",
]
