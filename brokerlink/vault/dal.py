"""
Vault DAL — CRUD on the user_connections table.

Stores one encrypted credential blob per (owner, provider). The blob is
written and read verbatim; encryption happens in brokerlink.vault.crypto.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from brokerlink.vault.models import CredentialRecord

logger = logging.getLogger(__name__)

_COLUMNS = "id, provider, user_id, credentials, created_at, updated_at"


def _get_conn():
    """Get a database connection using the standard Brokerlink config."""
    import psycopg2

    from brokerlink.config import get_config

    cfg = get_config().db
    return psycopg2.connect(**cfg.dict, connect_timeout=5)


def _row_to_record(row) -> CredentialRecord:
    return CredentialRecord(
        id=str(row[0]),
        provider_id=row[1],
        owner_id=str(row[2]),
        encrypted_blob=row[3],
        created_at=row[4],
        updated_at=row[5],
    )


def get_connection_record(owner_id: str, provider_id: str) -> CredentialRecord | None:
    """Return the stored connection or None if the owner never connected."""
    conn = _get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM user_connections WHERE user_id = %s AND provider = %s",
                (owner_id, provider_id),
            )
            row = cur.fetchone()
            return _row_to_record(row) if row else None
    finally:
        conn.close()


def upsert_connection(owner_id: str, provider_id: str, encrypted_blob: str) -> None:
    """Insert a connection or replace its blob."""
    now = datetime.now(UTC)
    conn = _get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO user_connections (user_id, provider, credentials, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id, provider)
                DO UPDATE SET credentials = EXCLUDED.credentials,
                              updated_at = EXCLUDED.updated_at
                """,
                (owner_id, provider_id, encrypted_blob, now, now),
            )
        conn.commit()
    finally:
        conn.close()


def update_credentials(owner_id: str, provider_id: str, encrypted_blob: str) -> bool:
    """Replace the blob after a token refresh. Returns False if the row is gone."""
    conn = _get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                "UPDATE user_connections SET credentials = %s, updated_at = %s "
                "WHERE user_id = %s AND provider = %s",
                (encrypted_blob, datetime.now(UTC), owner_id, provider_id),
            )
            updated = cur.rowcount > 0
        conn.commit()
        if not updated:
            logger.warning("No %s connection for owner %s to update", provider_id, owner_id)
        return updated
    finally:
        conn.close()


def delete_connection(owner_id: str, provider_id: str) -> bool:
    """Delete a connection. Returns True if a row was deleted."""
    conn = _get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                "DELETE FROM user_connections WHERE user_id = %s AND provider = %s",
                (owner_id, provider_id),
            )
            deleted = cur.rowcount > 0
        conn.commit()
        return deleted
    finally:
        conn.close()


def list_providers(owner_id: str) -> list[str]:
    """List the providers an owner has connected."""
    conn = _get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT provider FROM user_connections WHERE user_id = %s ORDER BY provider",
                (owner_id,),
            )
            return [row[0] for row in cur.fetchall()]
    finally:
        conn.close()
