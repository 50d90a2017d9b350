"""
Connection lifecycle: stored blob → vault → adapter → persisted refreshes.

    service = ConnectionService()
    await service.connect("iol", user_id, username="...", password="...")
    positions = await service.run("iol", user_id, lambda a: a.get_positions())

Each adapter opened here persists its re-encrypted credentials from the
session's on_refresh hook, before control returns to the caller. Stored rows
that cannot be decrypted are deleted and surfaced as SessionExpiredError so
the UI prompts a reconnect instead of showing a generic failure.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from types import ModuleType
from typing import Any, TypeVar

import httpx

from brokerlink.brokers import BrokerAdapter, SessionState, Token, get_adapter_class
from brokerlink.errors import (
    CredentialStoreError,
    DecryptionUnrecoverableError,
    NotConnectedError,
    SessionExpiredError,
)
from brokerlink.vault import dal
from brokerlink.vault.crypto import CredentialVault

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectionStatus(StrEnum):
    CONNECTED = "connected"
    EXPIRED = "expired"
    DISCONNECTED = "disconnected"


class ConnectionService:
    """Opens brokerage adapters for an owner and keeps their stored tokens current.

    `store` is anything exposing the brokerlink.vault.dal functions
    (get_connection_record, upsert_connection, update_credentials,
    delete_connection); the DAL module itself by default.
    """

    def __init__(
        self,
        store: Any | ModuleType = dal,
        vault: CredentialVault | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        **adapter_kwargs: Any,
    ):
        self.store = store
        self.vault = vault or CredentialVault()
        self._adapter_kwargs = dict(adapter_kwargs)
        if client is not None:
            self._adapter_kwargs["client"] = client

    def _persister(self, owner_id: str, provider: str, adapter: BrokerAdapter) -> Callable[[Token], Awaitable[None]]:
        async def persist(_token: Token) -> None:
            try:
                blob = self.vault.encrypt_credentials(adapter.export_credentials())
                self.store.update_credentials(owner_id, provider, blob)
            except Exception as e:
                logger.error("Failed to persist refreshed %s credentials for owner %s: %s", provider, owner_id, e)
                raise CredentialStoreError(provider, owner_id) from e
            logger.info("Persisted refreshed %s credentials for owner %s", provider, owner_id)

        return persist

    async def connect(self, provider: str, owner_id: str, **secret: Any) -> BrokerAdapter:
        """Authenticate with the raw secret and store the encrypted credentials."""
        adapter_cls = get_adapter_class(provider)
        adapter = await adapter_cls.connect(**secret, **self._adapter_kwargs)
        blob = self.vault.encrypt_credentials(adapter.export_credentials())
        self.store.upsert_connection(owner_id, adapter.provider, blob)
        adapter.session.on_refresh = self._persister(owner_id, adapter.provider, adapter)
        logger.info("Connected %s for owner %s", adapter.provider, owner_id)
        return adapter

    def _load_credentials(self, provider: str, owner_id: str) -> dict[str, Any]:
        record = self.store.get_connection_record(owner_id, provider)
        if record is None:
            raise NotConnectedError(provider)
        try:
            credentials = self.vault.decrypt_credentials(record.encrypted_blob)
        except DecryptionUnrecoverableError as e:
            logger.error("Unrecoverable %s credentials for owner %s, removing connection", provider, owner_id)
            self.store.delete_connection(owner_id, provider)
            raise SessionExpiredError(provider, "stored credentials unrecoverable") from e
        # Legacy rows may hold a JSON array; only an object carries a session
        if not isinstance(credentials, dict):
            logger.error("Stored %s credentials for owner %s are not an object, removing connection", provider, owner_id)
            self.store.delete_connection(owner_id, provider)
            raise SessionExpiredError(provider, "stored credentials unrecoverable")
        return credentials

    def open(self, provider: str, owner_id: str) -> BrokerAdapter:
        """Build a session-aware adapter from the owner's stored credentials."""
        adapter_cls = get_adapter_class(provider)
        credentials = self._load_credentials(adapter_cls.provider, owner_id)
        adapter = adapter_cls.from_credentials(credentials, **self._adapter_kwargs)
        if adapter.token is None:
            raise NotConnectedError(adapter_cls.provider)
        adapter.session.on_refresh = self._persister(owner_id, adapter_cls.provider, adapter)
        return adapter

    async def run(self, provider: str, owner_id: str, operation: Callable[[BrokerAdapter], Awaitable[T]]) -> T:
        """Open an adapter and run one domain operation on it."""
        adapter = self.open(provider, owner_id)
        try:
            return await operation(adapter)
        except SessionExpiredError:
            logger.warning("%s session expired for owner %s, reconnect required", provider, owner_id)
            raise

    def status(self, provider: str, owner_id: str) -> ConnectionStatus:
        """connected / expired / disconnected, without any network call."""
        try:
            adapter = self.open(provider, owner_id)
        except NotConnectedError:
            return ConnectionStatus.DISCONNECTED
        except SessionExpiredError:
            return ConnectionStatus.DISCONNECTED
        session = adapter.session
        if session.state == SessionState.NEAR_EXPIRY and not session.token.refresh_token:
            return ConnectionStatus.EXPIRED
        return ConnectionStatus.CONNECTED

    def disconnect(self, provider: str, owner_id: str) -> bool:
        deleted = self.store.delete_connection(owner_id, get_adapter_class(provider).provider)
        if deleted:
            logger.info("Disconnected %s for owner %s", provider, owner_id)
        return deleted
