"""Typed failures raised by the storage engine and the migration tooling."""


class FocusStoreError(Exception):
    """Base exception for storage and migration operations."""


class ConfigurationError(FocusStoreError):
    """Required configuration (a backend, a credential) is missing."""


class StorageUnavailable(ConfigurationError):
    """No backend is configured that can serve the requested operation."""

    def __init__(self, op: str):
        super().__init__(f"Storage unavailable for operation {op}")
        self.op = op


class EntityNotFound(FocusStoreError):
    """The referenced todo, project or record does not exist for this user."""


class MigrationAuthError(FocusStoreError):
    """Bearer credential for the migration surface is missing or wrong."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


class DiscoveryError(FocusStoreError):
    """The legacy keyspace could not be enumerated."""


class LedgerError(FocusStoreError):
    """A migration run update would violate the ledger's invariants."""
