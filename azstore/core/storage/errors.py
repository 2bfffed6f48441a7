"""Exception hierarchy for table storage operations."""

from __future__ import annotations


class TableStorageError(Exception):
    """Base exception for table storage errors."""

    pass


class InvalidArgumentError(TableStorageError, ValueError):
    """Raised when a name, key or argument fails validation."""

    pass


class EntryNotFoundError(TableStorageError, KeyError):
    """Raised when a dictionary key has no stored entry."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Key not found"


class DuplicateKeyError(TableStorageError, ValueError):
    """Raised when adding a key that already exists."""

    pass


class TypeConversionError(TableStorageError, TypeError):
    """Raised when a stored value cannot be converted to the requested type."""

    pass


class SerializationError(TableStorageError, TypeError):
    """Raised when a value is neither a native property type nor JSON serializable."""

    pass


class TableServiceError(TableStorageError):
    """Raised when the storage service reports a failure.

    Attributes:
        status_code: HTTP status code reported by the service, if any
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EntityNotFoundError(TableServiceError):
    """Raised when the service reports that an entity does not exist (404)."""

    def __init__(self, message: str, status_code: int | None = 404):
        super().__init__(message, status_code)


class EntityAlreadyExistsError(TableServiceError):
    """Raised when the service reports a conflicting entity (409)."""

    def __init__(self, message: str, status_code: int | None = 409):
        super().__init__(message, status_code)


class TableStorageConnectionError(TableServiceError):
    """Raised when connection to the storage service fails."""

    pass
