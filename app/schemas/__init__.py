"""Public schema exports."""

from .auth import (
    AuthorizationRequest,
    ConnectionStatus,
    DateRangePayload,
    MeteredRequestPayload,
    PropertySelectionPayload,
)
from .limits import (
    LimitDecision,
    LimitDetails,
    LimitRejection,
    UpgradePrompt,
    UsageCounter,
    UsageSnapshot,
)

__all__ = [
    "AuthorizationRequest",
    "ConnectionStatus",
    "DateRangePayload",
    "LimitDecision",
    "LimitDetails",
    "LimitRejection",
    "MeteredRequestPayload",
    "PropertySelectionPayload",
    "UpgradePrompt",
    "UsageCounter",
    "UsageSnapshot",
]
