"""
Exception hierarchy for fail-closed paths.

Quota and entitlement rejections are not exceptions; see
``app.schemas.limits.LimitDecision``.
"""

from __future__ import annotations


class ConnectorError(Exception):
    """Base class for errors raised by the connector core."""

    code = "CONNECTOR_ERROR"


class AuthRequiredError(ConnectorError):
    """No usable session or credential; the client must reconnect."""

    code = "AUTH_REQUIRED"


class MissingCallbackParameterError(ConnectorError):
    """The OAuth callback arrived without ``code`` or ``state``."""

    code = "MISSING_CALLBACK_PARAMETER"


class ProviderDeniedError(ConnectorError):
    """The provider redirected back with an ``error`` parameter."""

    code = "PROVIDER_DENIED"


class InvalidStateError(ConnectorError):
    """The callback state was never issued, already consumed or expired."""

    code = "INVALID_STATE"


class MissingPkceVerifierError(ConnectorError):
    """The PKCE verifier for this session expired or was already redeemed."""

    code = "MISSING_PKCE_VERIFIER"


class CredentialVaultError(ValueError):
    """A sealed token could not be opened."""

    code = "INVALID_SEALED_TOKEN"


__all__ = [
    "AuthRequiredError",
    "ConnectorError",
    "CredentialVaultError",
    "InvalidStateError",
    "MissingCallbackParameterError",
    "MissingPkceVerifierError",
    "ProviderDeniedError",
]
