"""Replicated user address rows: lookups, keyword search, upserts, updates and deletes."""

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

TABLE = "user_addresses"
FIND_ONE_COLUMNS = ("id", "user_id", "full_address")
FIND_ALL_COLUMNS = ("user_id", "full_address", "id")
SEARCH_COLUMNS = ("full_address", "CAST(user_id AS TEXT)")

_FIND_ONE_SQL = "SELECT id, user_id, full_address FROM user_addresses WHERE id = ?"

_UPSERT_SQL = """INSERT INTO user_addresses (
    id, user_id, full_address, trace_parent, created_at, updated_at
)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT (id) DO UPDATE SET
    user_id = EXCLUDED.user_id,
    full_address = EXCLUDED.full_address,
    trace_parent = EXCLUDED.trace_parent,
    created_at = EXCLUDED.created_at,
    updated_at = EXCLUDED.updated_at
RETURNING id"""

_UPDATE_SQL = """UPDATE user_addresses
SET user_id = ?, full_address = ?, trace_parent = ?, updated_at = ?
WHERE id = ?"""

_DELETE_SQL = "DELETE FROM user_addresses WHERE id = ?"


@dataclass
class UserAddress:
    """A row of the ``user_addresses`` table."""

    id: int = 0
    user_id: int = 0
    full_address: int = 0
    trace_parent: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserAddress":
        """Build an address from a column-name mapping of the read columns."""
        return cls(
            id=int(row["id"]),
            user_id=int(row["user_id"] or 0),
            full_address=int(row["full_address"] or 0),
        )


@dataclass(frozen=True)
class AddressLookup:
    """Criteria for a single address, by id."""

    id: int = 0


@dataclass(frozen=True)
class AddressSearch:
    """Keyword search over the address and the owning user id, one page at a time."""

    keyword: str = ""
    pagination: PaginationInput = field(default_factory=PaginationInput)


@dataclass(frozen=True)
class AddressPage:
    """One page of addresses and where it sits in the whole result."""

    pagination: PaginationOutput
    entities: list[UserAddress]


class UserAddressRepository:
    """Reads addresses through ``connection``; writes through the given transaction."""

    def __init__(self, connection: Any, dialect: SqlDialect = SqlDialect.QMARK) -> None:
        self._connection = connection
        self._dialect = dialect

    def _execute(self, connection: Any, sql: str, params: tuple[Any, ...]) -> Any:
        cursor = connection.cursor()
        cursor.execute(self._dialect.convert(sql), params)
        return cursor

    def find_one(self, lookup: AddressLookup) -> UserAddress:
        """Return the address with ``lookup.id``; raise NoRowFoundError if none."""
        cursor = self._execute(self._connection, _FIND_ONE_SQL, (lookup.id,))
        try:
            row = cursor.fetchone()
        finally:
            cursor.close()
        if row is None:
            raise NoRowFoundError()
        return UserAddress.from_row(dict(zip(FIND_ONE_COLUMNS, row)))

    def find_all(self, search: AddressSearch) -> AddressPage:
        """Return one page of addresses whose address or user id contains the keyword."""
        condition = (
            ilike_any(self._dialect, SEARCH_COLUMNS, search.keyword)
            if search.keyword
            else None
        )
        rows, pagination = fetch_page(
            self._connection,
            self._dialect,
            TABLE,
            FIND_ALL_COLUMNS,
            condition,
            search.pagination,
        )
        return AddressPage(
            pagination=pagination,
            entities=[UserAddress.from_row(row) for row in rows],
        )

    def upsert(self, entity: UserAddress, tx: Any) -> int:
        """Insert the address or overwrite the row with the same id; return the id."""
        if tx is None:
            raise MissingTransactionError(
                "failed to create user, transaction database is nil"
            )
        params = (
            entity.id,
            entity.user_id,
            entity.full_address,
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

    def update(self, entity: UserAddress, tx: Any) -> None:
        """Overwrite the address's fields, stamping the update time in UTC."""
        if tx is None:
            raise MissingTransactionError(
                "failed to update user address, transaction database is nil"
            )
        params = (
            entity.user_id,
            entity.full_address,
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

    def delete(self, tx: Any, address_id: int) -> None:
        """Delete the address with ``address_id``; raise NoDeleteRowError if absent."""
        if tx is None:
            raise MissingTransactionError(
                "failed to delete user, transaction database is nil"
            )
        cursor = self._execute(tx, _DELETE_SQL, (address_id,))
        try:
            affected = cursor.rowcount
        finally:
            cursor.close()
        if affected == 0:
            raise NoDeleteRowError()