"""
Brokerlink Vault — brokerage credentials encrypted with AES-256-GCM.

Public API:
    vault.encrypt(data)               → base64 blob
    vault.decrypt(blob)               → plaintext bytes (legacy JSON passes through)
    vault.encrypt_credentials(obj)    → base64 blob of the JSON-serialized object
    vault.decrypt_credentials(blob)   → parsed object
    vault.CredentialVault(hex_key)    → instance bound to an explicit key
"""

from __future__ import annotations

from brokerlink.vault.crypto import (
    CredentialVault,
    decrypt,
    decrypt_credentials,
    encrypt,
    encrypt_credentials,
    generate_key,
)

__all__ = [
    "CredentialVault",
    "encrypt",
    "decrypt",
    "encrypt_credentials",
    "decrypt_credentials",
    "generate_key",
]
