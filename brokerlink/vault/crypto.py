"""
AES-256-GCM encryption for stored brokerage credentials.

The key is 32 raw bytes supplied as 64 hex characters in $ENCRYPTION_KEY.
Blob layout (base64 text): IV (12 bytes) + auth tag (16 bytes) + ciphertext.

Rows written before encryption was introduced hold raw JSON; decrypt() passes
them through unchanged so old connections keep working until their next token
refresh rewrites them encrypted.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import secrets
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from brokerlink.errors import ConfigurationError, DecryptionUnrecoverableError

logger = logging.getLogger(__name__)

KEY_ENV_VAR = "ENCRYPTION_KEY"
KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16


def generate_key() -> str:
    """Return a fresh random key as 64 hex characters."""
    return secrets.token_hex(KEY_LENGTH)


def parse_key(hex_key: str | None) -> bytes:
    """Validate a hex key and return its raw bytes. Raises ConfigurationError."""
    if not hex_key:
        raise ConfigurationError(f"{KEY_ENV_VAR} environment variable is not set")
    try:
        key = bytes.fromhex(hex_key.strip())
    except ValueError as e:
        raise ConfigurationError(f"{KEY_ENV_VAR} must be 64 hex characters (32 bytes)") from e
    if len(key) != KEY_LENGTH:
        raise ConfigurationError(f"{KEY_ENV_VAR} must be 64 hex characters (32 bytes), got {len(key)} bytes")
    return key


def _is_legacy_json(text: str) -> bool:
    return text.startswith("{") or text.startswith("[")


class CredentialVault:
    """Encrypts and decrypts credential blobs. Pure CPU, no I/O.

    With no explicit key the vault reads $ENCRYPTION_KEY on every call, so a
    missing or malformed key surfaces at first use rather than at import.
    """

    def __init__(self, hex_key: str | None = None):
        self._hex_key = hex_key

    def _key(self) -> bytes:
        return parse_key(self._hex_key if self._hex_key is not None else os.environ.get(KEY_ENV_VAR))

    def encrypt(self, plaintext: bytes | str) -> str:
        """Encrypt with a fresh random IV. Returns base64(iv + tag + ciphertext)."""
        key = self._key()
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        iv = secrets.token_bytes(IV_LENGTH)
        # AESGCM returns ciphertext + tag; stored layout puts the tag first
        sealed = AESGCM(key).encrypt(iv, plaintext, None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(iv + tag + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> bytes:
        """Decrypt a stored blob. Legacy JSON text is returned unchanged."""
        key = self._key()
        if _is_legacy_json(blob):
            return blob.encode("utf-8")

        try:
            packed = base64.b64decode(blob, validate=True)
            if len(packed) < IV_LENGTH + TAG_LENGTH:
                raise ValueError("Encrypted data too short")
            iv = packed[:IV_LENGTH]
            tag = packed[IV_LENGTH : IV_LENGTH + TAG_LENGTH]
            ciphertext = packed[IV_LENGTH + TAG_LENGTH :]
            return AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except (InvalidTag, ValueError, binascii.Error):
            pass

        # Last resort: a legacy row with leading whitespace or similar
        try:
            json.loads(blob)
        except ValueError:
            logger.error("Credential decryption failed and data is not valid JSON; reconnect required")
            raise DecryptionUnrecoverableError() from None
        return blob.encode("utf-8")

    def encrypt_credentials(self, credentials: Any) -> str:
        """JSON-serialize and encrypt."""
        return self.encrypt(json.dumps(credentials))

    def decrypt_credentials(self, stored: str) -> Any:
        """Decrypt and JSON-parse. Handles legacy plaintext rows."""
        raw = self.decrypt(stored)
        try:
            return json.loads(raw)
        except ValueError as e:
            raise DecryptionUnrecoverableError("Stored credentials are not valid JSON. Please reconnect your account.") from e


# Module-level helpers bound to $ENCRYPTION_KEY
_default_vault = CredentialVault()


def encrypt(plaintext: bytes | str) -> str:
    return _default_vault.encrypt(plaintext)


def decrypt(blob: str) -> bytes:
    return _default_vault.decrypt(blob)


def encrypt_credentials(credentials: Any) -> str:
    return _default_vault.encrypt_credentials(credentials)


def decrypt_credentials(stored: str) -> Any:
    return _default_vault.decrypt_credentials(stored)
