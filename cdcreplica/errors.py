"""Errors raised by the repositories."""


class RepositoryError(Exception):
    """Base class for repository failures."""

    default_message = "repository error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class NoRowFoundError(RepositoryError):
    """A lookup matched no row."""

    default_message = "no row found"


class NoUpdateRowError(RepositoryError):
    """An update statement affected no row."""

    default_message = "no row updated"


class NoDeleteRowError(RepositoryError):
    """A delete statement affected no row."""

    default_message = "no row deleted"


class MissingTransactionError(RepositoryError):
    """A write was attempted without a transaction connection."""

    default_message = "transaction database is nil"