"""Vault data models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class CredentialRecord(BaseModel):
    """A stored brokerage connection. The blob is opaque to everything but the vault."""

    provider_id: str
    owner_id: str
    encrypted_blob: str
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
