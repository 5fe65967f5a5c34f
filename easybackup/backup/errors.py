"""
Exception taxonomy for backup storage operations.

StorageError
 +-- StoreIOError        remote transport/auth/backend failure
 |    +-- ObjectNotFound  remote object does not exist
 |    +-- NotConfigured   remote store disabled or missing configuration
 +-- LocalIOError        local filesystem failure
 |    +-- LocalFileMissing
 +-- InvalidName         name does not follow the archive naming pattern
"""


class StorageError(Exception):
    """Base class for storage failures."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class StoreIOError(StorageError):
    """Raised when a remote object store operation fails."""
    pass


class ObjectNotFound(StoreIOError):
    """Raised when a remote object does not exist."""
    pass


class NotConfigured(StoreIOError):
    """Raised when the remote store is used while disabled."""
    pass


class LocalIOError(StorageError):
    """Raised when a local filesystem operation fails."""
    pass


class LocalFileMissing(LocalIOError):
    """Raised when a local file to be transferred does not exist."""
    pass


class InvalidName(StorageError, ValueError):
    """Raised when an archive name does not match YYYY-MM-DD_HHMMSS.zip."""
    pass
