"""
Error taxonomy shared across FinSync.

- ValidationError: caller-supplied data violates an invariant. Never retried.
- NotFoundError: referenced entity does not exist.
- ProviderError: an external provider call failed.
- PersistenceError: a storage operation failed.
"""

from typing import Optional


class FinSyncError(Exception):
    """Base exception for all FinSync errors."""
    pass


class ValidationError(FinSyncError):
    """Caller-supplied data violates an invariant."""
    pass


class NotFoundError(FinSyncError):
    """Referenced entity does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} not found: {entity_id}")


class ProviderError(FinSyncError):
    """An external provider call failed (auth, network, rate limit, not found)."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class ProviderAuthError(ProviderError):
    """Provider rejected our credentials."""
    pass


class ProviderTimeoutError(ProviderError):
    """Provider did not answer within the configured timeout."""
    pass


class ProviderNotSupportedError(ProviderError):
    """Provider does not offer the requested capability."""
    pass


class PersistenceError(FinSyncError):
    """Base exception for storage operations."""
    pass


class DuplicateKeyError(PersistenceError):
    """Attempted to insert a record whose natural key already exists."""
    pass


class StorageConnectionError(PersistenceError):
    """Could not connect to storage backend."""
    pass


class CorruptRecordError(PersistenceError):
    """A stored row holding the key being written cannot be read back."""
    pass
