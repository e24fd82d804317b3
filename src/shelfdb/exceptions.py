# Custom exceptions for shelfdb

class ShelfError(Exception):
    """Base exception for all application-specific errors."""
    pass


class DatabaseConnectionError(ShelfError):
    """Raised when a database cannot be opened or deleted, or the request is blocked."""
    def __init__(self, name: str, message: str):
        self.name = name
        self.message = message
        super().__init__(f"Database '{name}': {message}")


class VersionError(DatabaseConnectionError):
    """Raised when opening at a version lower than the stored one."""
    def __init__(self, name: str, requested: int, stored: int):
        self.requested = requested
        self.stored = stored
        super().__init__(
            name,
            f"requested version {requested} is less than the existing version {stored}",
        )


class MigrationError(ShelfError):
    """Raised when the live schema does not match the declaration after an upgrade."""

    def __init__(self, message: str, missing: list = None):
        self.missing = missing or []
        super().__init__(message)


class TransactionAbortError(ShelfError):
    """Raised when a transaction is rolled back because one of its requests failed."""
    pass


class ConstraintError(TransactionAbortError):
    """Raised on a duplicate primary key or unique index key."""

    def __init__(self, collection: str, key, index: str = ""):
        self.collection = collection
        self.key = key
        self.index = index
        target = f"index '{index}'" if index else "primary key"
        super().__init__(
            f"Key {key!r} already exists for {target} in collection '{collection}'"
        )


class ValidationError(ShelfError):
    """Raised for invalid input: declarations, constraints, records or snapshots."""
    pass


class NotFoundError(ValidationError):
    """Raised when a collection or index named by the caller does not exist."""
    pass


class DataError(ValidationError):
    """Raised when a value cannot be used as a key."""
    pass


class TransactionInactiveError(ShelfError):
    """Raised when a request is issued through a finished transaction."""
    pass


class ReadOnlyError(ShelfError):
    """Raised for writes in a readonly transaction or schema changes outside an upgrade."""
    pass
