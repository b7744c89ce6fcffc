"""Debezium change events flattened by the ExtractNewRecordState transform."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

_METADATA_PREFIX = "__"


class Operation(str, Enum):
    """Change operations carried in the ``__op`` field."""

    CREATE = "c"
    UPDATE = "u"
    DELETE = "d"
    READ = "r"


class ChangeEventDecodeError(ValueError):
    """The message value is not a decodable change event."""


@dataclass(frozen=True)
class ChangeEvent:
    """A flattened row change: the row's columns plus its metadata."""

    op: str
    table: str = ""
    schema_name: str = ""
    deleted: bool = False
    record: dict[str, Any] = field(default_factory=dict)

    @property
    def operation(self) -> Operation | None:
        """The known operation, or ``None`` when the op code is unsupported."""
        try:
            return Operation(self.op)
        except ValueError:
            return None


def _object(value: Any, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ChangeEventDecodeError(f"{name} must be a JSON object")
    return value


def _text(value: Any, name: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ChangeEventDecodeError(f"{name} must be a string")
    return value


def parse_change_event(raw: bytes | str) -> ChangeEvent:
    """Decode a ``{"schema": ..., "payload": ...}`` change event."""
    try:
        document = json.loads(raw)
    except ValueError as exc:
        raise ChangeEventDecodeError(f"invalid JSON: {exc}") from exc
    document = _object(document, "event") if document is not None else None
    if document is None:
        raise ChangeEventDecodeError("event must be a JSON object")

    schema = _object(document.get("schema"), "schema")
    payload = _object(document.get("payload"), "payload")

    deleted_flag = payload.get("__deleted", False)
    deleted = deleted_flag is True or str(deleted_flag).lower() == "true"

    return ChangeEvent(
        op=_text(payload.get("__op"), "__op"),
        table=_text(payload.get("__table"), "__table"),
        schema_name=_text(schema.get("name"), "schema.name"),
        deleted=deleted,
        record={
            key: value
            for key, value in payload.items()
            if not key.startswith(_METADATA_PREFIX)
        },
    )