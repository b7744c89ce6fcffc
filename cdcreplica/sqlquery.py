"""Small SQL helpers: placeholder styles, keyword filters, pagination and transactions."""

from __future__ import annotations

import itertools
import math
import re
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, Sequence

_PLACEHOLDER_PATTERN = re.compile(r"\?\??|%")


class SqlDialect(Enum):
    """Placeholder style of a database driver.

    Statements are written with ``?`` placeholders and converted with
    :meth:`convert`; ``??`` stands for a literal question mark.
    """

    QMARK = "qmark"
    FORMAT = "format"
    DOLLAR = "dollar"

    def convert(self, sql: str) -> str:
        """Rewrite ``?`` placeholders into this dialect's style."""
        if self is SqlDialect.QMARK:
            return sql
        counter = itertools.count(1)

        def replace(match: re.Match[str]) -> str:
            found = match.group()
            if found == "??":
                return "?"
            if found == "%":
                return "%%" if self is SqlDialect.FORMAT else "%"
            if self is SqlDialect.DOLLAR:
                return f"${next(counter)}"
            return "%s"

        return _PLACEHOLDER_PATTERN.sub(replace, sql)


@dataclass(frozen=True)
class Condition:
    """A WHERE fragment written with ``?`` placeholders and its parameters."""

    sql: str
    params: tuple[Any, ...] = ()


@dataclass(frozen=True)
class PaginationInput:
    """Requested page, counted from 1."""

    page: int = 1
    page_size: int = 10

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError(f"page must be at least 1, got {self.page}")
        if self.page_size < 1:
            raise ValueError(f"page_size must be at least 1, got {self.page_size}")

    def offset(self) -> int:
        """Number of rows that come before this page."""
        return (self.page - 1) * self.page_size


@dataclass(frozen=True)
class PaginationOutput:
    """Position of a returned page within the whole result."""

    page: int
    page_size: int
    total_data: int
    total_page: int


def ilike_any(dialect: SqlDialect, columns: Sequence[str], keyword: str) -> Condition | None:
    """Match rows where any column contains ``keyword``, ignoring case.

    Returns ``None`` for an empty keyword, meaning no filter.
    """
    if not columns:
        raise ValueError("at least one column is required")
    if not keyword:
        return None
    # SQLite (the usual qmark driver) has no ILIKE; its LIKE is case-insensitive.
    operator = "LIKE" if dialect is SqlDialect.QMARK else "ILIKE"
    pattern = f"%{keyword}%"
    sql = " OR ".join(f"{column} {operator} ?" for column in columns)
    return Condition(f"({sql})", tuple(pattern for _ in columns))


def build_pagination_output(pagination: PaginationInput, total: int) -> PaginationOutput:
    """Describe the page requested by ``pagination`` within ``total`` rows."""
    if total < 0:
        raise ValueError(f"total must not be negative, got {total}")
    return PaginationOutput(
        page=pagination.page,
        page_size=pagination.page_size,
        total_data=total,
        total_page=math.ceil(total / pagination.page_size),
    )


def fetch_page(
    connection: Any,
    dialect: SqlDialect,
    table: str,
    columns: Sequence[str],
    condition: Condition | None,
    pagination: PaginationInput,
) -> tuple[list[dict[str, Any]], PaginationOutput]:
    """Count the matching rows and fetch one page of them as dictionaries."""
    if not columns:
        raise ValueError("at least one column is required")
    where = f" WHERE {condition.sql}" if condition is not None else ""
    params = condition.params if condition is not None else ()

    cursor = connection.cursor()
    try:
        cursor.execute(dialect.convert(f"SELECT COUNT(*) FROM {table}{where}"), params)
        (total,) = cursor.fetchone()
        cursor.execute(
            dialect.convert(f"SELECT {', '.join(columns)} FROM {table}{where} LIMIT ? OFFSET ?"),
            (*params, pagination.page_size, pagination.offset()),
        )
        rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
    finally:
        cursor.close()
    return rows, build_pagination_output(pagination, int(total))


@contextmanager
def transaction(connection: Any) -> Iterator[Any]:
    """Commit on success, roll back and re-raise on any error."""
    try:
        yield connection
    except BaseException:
        connection.rollback()
        raise
    else:
        connection.commit()