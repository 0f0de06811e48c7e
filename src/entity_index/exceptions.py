"""Exception hierarchy for the entity attribute index."""


class EntityIndexError(Exception):
    """Base class for every error raised by the index."""


class StorageUnavailable(EntityIndexError):
    """Raised when the row store cannot be opened or used.

    Covers refused connections, missing drivers and storage calls that
    exceeded the configured timeout.
    """


class WriteError(EntityIndexError):
    """Raised when the row store rejects an insert or delete."""


class QueryError(EntityIndexError, ValueError):
    """Raised when a search predicate cannot be built from the given input."""
