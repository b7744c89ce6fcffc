"""Replicated user rows: lookups, keyword search, upserts, updates and deletes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from cdcreplica.errors import (
    MissingTransactionError,
    NoDeleteRowError,
    NoRowFoundError,
    NoUpdateRowError,
)
from cdcreplica.sqlquery import (
    PaginationInput,
    PaginationOutput,
    SqlDialect,
    fetch_page,
    ilike_any,
)

TABLE = "users"
READ_COLUMNS = ("id", "name", "email", "phone_number", "password", "is_verified")
SEARCH_COLUMNS = ("name", "email", "CAST(id AS TEXT)")

_UPSERT_COLUMNS = (
    "id",
    "name",
    "email",
    "phone_number",
    "password",
    "is_verified",
    "trace_parent",
    "created_at",
    "updated_at",
)
_UPDATE_COLUMNS = (
    "name",
    "email",
    "phone_number",
    "password",
    "is_verified",
    "trace_parent",
    "updated_at",
)

_UPSERT_SQL = (
    f"INSERT INTO {TABLE} ({', '.join(_UPSERT_COLUMNS)})\n"
    f"VALUES ({', '.join('?' for _ in _UPSERT_COLUMNS)})\n"
    "ON CONFLICT (id) DO UPDATE SET\n"
    + ",\n".join(f"    {column} = EXCLUDED.{column}" for column in _UPSERT_COLUMNS[1:])
    + "\nRETURNING id"
)

_UPDATE_SQL = (
    f"UPDATE {TABLE}\nSET\n"
    + ",\n".join(f"    {column} = ?" for column in _UPDATE_COLUMNS)
    + "\nWHERE id = ?"
)

_DELETE_SQL = f"DELETE FROM {TABLE} WHERE id = ?"


def _text(value: Any) -> str:
    return value or ""


@dataclass
class User:
    """A row of the ``users`` table."""

    id: int = 0
    name: str = ""
    email: str = ""
    phone_number: str = ""
    password: str = field(default_factory=str, repr=False)
    is_verified: bool = False
    trace_parent: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "User":
        """Build a user from a column-name mapping of the read columns."""
        return cls(
            id=int(row["id"]),
            name=_text(row["name"]),
            email=_text(row["email"]),
            phone_number=_text(row["phone_number"]),
            password=_text(row["password"]),
            is_verified=bool(row["is_verified"]),
        )


@dataclass(frozen=True)
class UserLookup:
    """Criteria for a single user; zero or empty values are ignored."""

    id: int = 0
    email: str = ""


@dataclass(frozen=True)
class UserSearch:
    """Keyword search over name, e-mail and id, one page at a time."""

    keyword: str = ""
    pagination: PaginationInput = field(default_factory=PaginationInput)


@dataclass(frozen=True)
class UserPage:
    """One page of users and where it sits in the whole result."""

    pagination: PaginationOutput
    entities: list[User]


class UserRepository:
    """Reads users through ``connection``; writes through the given transaction."""

    def __init__(self, connection: Any, dialect: SqlDialect = SqlDialect.QMARK) -> None:
        self._connection = connection
        self._dialect = dialect

    def _execute(self, connection: Any, sql: str, params: tuple[Any, ...]) -> Any:
        cursor = connection.cursor()
        cursor.execute(self._dialect.convert(sql), params)
        return cursor

    def find_one(self, lookup: UserLookup) -> User:
        """Return the first user matching ``lookup``; raise NoRowFoundError if none."""
        clauses: list[str] = []
        params: list[Any] = []
        if lookup.id != 0:
            clauses.append("id = ?")
            params.append(lookup.id)
        if lookup.email:
            clauses.append("email = ?")
            params.append(lookup.email)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT {', '.join(READ_COLUMNS)} FROM {TABLE}{where}"

        cursor = self._execute(self._connection, sql, tuple(params))
        try:
            row = cursor.fetchone()
        finally:
            cursor.close()
        if row is None:
            raise NoRowFoundError()
        return User.from_row(dict(zip(READ_COLUMNS, row)))

    def find_all(self, search: UserSearch) -> UserPage:
        """Return one page of users whose name, e-mail or id contains the keyword."""
        condition = (
            ilike_any(self._dialect, SEARCH_COLUMNS, search.keyword)
            if search.keyword
            else None
        )
        rows, pagination = fetch_page(
            self._connection,
            self._dialect,
            TABLE,
            READ_COLUMNS,
            condition,
            search.pagination,
        )
        return UserPage(pagination=pagination, entities=[User.from_row(row) for row in rows])

    def upsert(self, entity: User, tx: Any) -> int:
        """Insert the user or overwrite the row with the same id; return the id."""
        if tx is None:
            raise MissingTransactionError(
                "failed to create user, transaction database is nil"
            )
        params = (
            entity.id,
            entity.name,
            entity.email,
            entity.phone_number,
            entity.password,
            entity.is_verified,
            entity.trace_parent,
            entity.created_at,
            entity.updated_at,
        )
        cursor = self._execute(tx, _UPSERT_SQL, params)
        try:
            row = cursor.fetchone()
        finally:
            cursor.close()
        if row is None:
            raise NoRowFoundError()
        return int(row[0])

    def update(self, entity: User, tx: Any) -> None:
        """Overwrite the user's fields, stamping the update time in UTC."""
        if tx is None:
            raise MissingTransactionError(
                "failed to update user, transaction database is nil"
            )
        params = (
            entity.name,
            entity.email,
            entity.phone_number,
            entity.password,
            entity.is_verified,
            entity.trace_parent,
            datetime.now(timezone.utc),
            entity.id,
        )
        cursor = self._execute(tx, _UPDATE_SQL, params)
        try:
            affected = cursor.rowcount
        finally:
            cursor.close()
        if affected == 0:
            raise NoUpdateRowError()

    def delete(self, tx: Any, user_id: int) -> None:
        """Delete the user with ``user_id``; raise NoDeleteRowError if absent."""
        if tx is None:
            raise MissingTransactionError(
                "failed to delete user, transaction database is nil"
            )
        cursor = self._execute(tx, _DELETE_SQL, (user_id,))
        try:
            affected = cursor.rowcount
        finally:
            cursor.close()
        if affected == 0:
            raise NoDeleteRowError()