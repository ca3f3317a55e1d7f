"""Authenticated encryption for session cookies and tokens stored at rest."""

from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.errors import CredentialVaultError

NONCE_SIZE = 12
TAG_SIZE = 16
MIN_SEALED_SIZE = NONCE_SIZE + TAG_SIZE + 1


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(token: str) -> bytes:
    padded = token + "=" * (-len(token) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


class CredentialVault:
    """Seal and open short strings with AES-256-GCM.

    Sealed tokens are ``base64url(nonce[12] || tag[16] || ciphertext)``
    without padding. The key is the SHA-256 digest of the configured secret,
    so rotating the secret invalidates every outstanding token.
    """

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Session encryption secret must be provided.")
        key = hashlib.sha256(secret.encode("utf-8")).digest()
        self._aesgcm = AESGCM(key)

    def seal(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` and return a URL-safe token."""
        nonce = os.urandom(NONCE_SIZE)
        # AESGCM appends the tag to the ciphertext.
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return _b64url_encode(nonce + tag + ciphertext)

    def open(self, token: str) -> str:
        """Decrypt a token produced by :meth:`seal`.

        Raises ``CredentialVaultError`` for every malformed or tampered input.
        """
        try:
            raw = _b64url_decode(token)
        except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
            raise CredentialVaultError("Sealed token is not valid base64url.") from exc

        if len(raw) < MIN_SEALED_SIZE:
            raise CredentialVaultError("Sealed token is too short.")

        nonce = raw[:NONCE_SIZE]
        tag = raw[NONCE_SIZE : NONCE_SIZE + TAG_SIZE]
        ciphertext = raw[NONCE_SIZE + TAG_SIZE :]
        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise CredentialVaultError("Sealed token failed authentication.") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CredentialVaultError("Sealed token payload is not text.") from exc


__all__ = ["CredentialVault", "MIN_SEALED_SIZE", "NONCE_SIZE", "TAG_SIZE"]
