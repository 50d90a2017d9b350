"""
Error taxonomy shared by every integration.

Callers branch on these types: SessionExpiredError and
DecryptionUnrecoverableError mean "prompt the user to reconnect", everything
else is a regular failure. Budget exhaustion on metered providers is never an
exception; those clients return None instead.
"""

from __future__ import annotations


class BrokerlinkError(Exception):
    """Base class for all brokerlink errors."""


class ConfigurationError(BrokerlinkError):
    """Missing or malformed configuration (e.g. the encryption key). Fatal."""


class DecryptionUnrecoverableError(BrokerlinkError):
    """Stored credentials cannot be decrypted nor read as legacy JSON."""

    def __init__(self, message: str = "Stored credentials could not be decrypted. Please reconnect your account."):
        super().__init__(message)


class ValidationError(BrokerlinkError):
    """Bad caller input, rejected before any network call."""


class NotConnectedError(BrokerlinkError):
    """No stored session for this provider."""

    def __init__(self, provider: str = ""):
        self.provider = provider
        super().__init__(f"Not authenticated with {provider.upper()}" if provider else "Not authenticated")


class SessionExpiredError(BrokerlinkError):
    """Refresh failed or is impossible. The user must reconnect."""

    def __init__(self, provider: str = "", reason: str = ""):
        self.provider = provider
        self.reason = reason
        name = provider.upper() if provider else "Broker"
        super().__init__(f"{name} session expired. Please reconnect your account.")


class UpstreamError(BrokerlinkError):
    """Non-2xx response (other than a handled 401) from an upstream API."""

    def __init__(self, status: int, body: str = "", provider: str = ""):
        self.status = status
        self.status_code = status
        self.body = body
        self.provider = provider
        name = provider.upper() if provider else "Upstream"
        super().__init__(f"{name} API error: {status}")


class NetworkError(BrokerlinkError):
    """Transport failure or timeout. Eligible for retry by the executor."""

    def __init__(self, message: str, *, timeout: bool = False):
        self.timeout = timeout
        super().__init__(message)


class CredentialStoreError(BrokerlinkError):
    """Refreshed credentials could not be written back to the store."""

    def __init__(self, provider: str = "", owner_id: str = ""):
        self.provider = provider
        self.owner_id = owner_id
        name = provider.upper() if provider else "Broker"
        super().__init__(f"Could not save refreshed {name} credentials. Please retry.")
