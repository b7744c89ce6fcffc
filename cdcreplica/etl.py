"""Replaying change events for users and user addresses into the local database."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Mapping, Protocol

from cdcreplica.debezium import (
    ChangeEvent,
    ChangeEventDecodeError,
    Operation,
    parse_change_event,
)
from cdcreplica.errors import NoRowFoundError
from cdcreplica.messages import Message, ReaderClosedError
from cdcreplica.sqlquery import transaction
from cdcreplica.user_addresses import UserAddress
from cdcreplica.users import User, UserLookup

logger = logging.getLogger(__name__)

SPAN_NAME = "debezium.message.info"

_UPSERT_OPERATIONS = (Operation.CREATE, Operation.UPDATE)


class _ChangeReader(Protocol):
    def fetch_message(self) -> Message: ...

    def commit_messages(self, *messages: Message) -> Any: ...


SpanRecorder = Callable[[str, dict[str, Any]], None]


def _int(record: Mapping[str, Any], key: str) -> int:
    value = record.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ChangeEventDecodeError(f"{key} must be an integer")
    return value


def _str(record: Mapping[str, Any], key: str) -> str:
    value = record.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ChangeEventDecodeError(f"{key} must be a string")
    return value


def _bool(record: Mapping[str, Any], key: str) -> bool:
    value = record.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ChangeEventDecodeError(f"{key} must be a boolean")
    return value


def _time(record: Mapping[str, Any], key: str) -> datetime | None:
    value = record.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ChangeEventDecodeError(f"{key} must be an RFC 3339 timestamp string")
    text = value[:-1] + "+00:00" if value.endswith(("Z", "z")) else value
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise ChangeEventDecodeError(f"{key} is not a valid timestamp: {value!r}") from exc


def user_from_record(record: Mapping[str, Any]) -> User:
    """Build a user from the columns of a change event; absent or null columns stay empty."""
    return User(
        id=_int(record, "id"),
        name=_str(record, "name"),
        email=_str(record, "email"),
        phone_number=_str(record, "phone_number"),
        password=_str(record, "password"),
        is_verified=_bool(record, "is_verified"),
        trace_parent=_str(record, "trace_parent"),
        created_at=_time(record, "created_at"),
        updated_at=_time(record, "updated_at"),
    )


def address_from_record(record: Mapping[str, Any]) -> UserAddress:
    """Build a user address from the columns of a change event."""
    return UserAddress(
        id=_int(record, "id"),
        user_id=_int(record, "user_id"),
        full_address=_int(record, "full_address"),
        trace_parent=_str(record, "trace_parent"),
        created_at=_time(record, "created_at"),
        updated_at=_time(record, "updated_at"),
    )


def span_attributes(event: ChangeEvent, message: Message) -> dict[str, Any]:
    """Trace attributes describing where a change event came from."""
    return {
        "debezium.operation": event.op,
        "debezium.schema": event.schema_name,
        "kafka.topic": message.topic,
        "kafka.partition": str(message.partition),
        "kafka.offset": message.offset,
        "debezium.source.table": event.table,
    }


class EtlService:
    """Applies user and user-address change events inside database transactions.

    ``connection`` is the transactional connection handed to the repositories'
    write methods; ``on_span`` receives each processed message's span name and
    attributes.
    """

    def __init__(
        self,
        users: Any,
        addresses: Any,
        connection: Any,
        on_span: SpanRecorder | None = None,
    ) -> None:
        self._users = users
        self._addresses = addresses
        self._connection = connection
        self._on_span = on_span

    def handle_user_event(self, event: ChangeEvent) -> dict[str, Any]:
        """Upsert or delete the user the event describes; return extra span attributes."""
        entity = user_from_record(event.record)
        operation = event.operation
        with transaction(self._connection) as tx:
            if operation in _UPSERT_OPERATIONS:
                self._users.upsert(entity, tx)
            elif operation is Operation.DELETE:
                self._users.delete(tx, entity.id)
            else:
                logger.warning("unsupported operation %s", event.op)
        return {}

    def handle_user_address_event(self, event: ChangeEvent) -> dict[str, Any]:
        """Upsert or delete the address the event describes; return extra span attributes."""
        entity = address_from_record(event.record)
        operation = event.operation
        attributes: dict[str, Any] = {}
        with transaction(self._connection) as tx:
            if operation in _UPSERT_OPERATIONS:
                try:
                    owner = self._users.find_one(UserLookup(id=entity.user_id))
                except NoRowFoundError:
                    owner = User()
                attributes["user.existing"] = owner.id > 0
                self._addresses.upsert(entity, tx)
            elif operation is Operation.DELETE:
                self._addresses.delete(tx, entity.id)
            else:
                logger.warning("unsupported operation %s", event.op)
        return attributes

    def run_users(self, reader: _ChangeReader, stop_event: threading.Event) -> None:
        """Apply user change events until the reader closes or ``stop_event`` is set."""
        self._run(reader, stop_event, self.handle_user_event)

    def run_user_addresses(
        self, reader: _ChangeReader, stop_event: threading.Event
    ) -> None:
        """Apply user-address change events until the reader closes or ``stop_event`` is set."""
        self._run(reader, stop_event, self.handle_user_address_event)

    def _run(
        self,
        reader: _ChangeReader,
        stop_event: threading.Event,
        handler: Callable[[ChangeEvent], dict[str, Any]],
    ) -> None:
        while not stop_event.is_set():
            try:
                message = reader.fetch_message()
            except ReaderClosedError as exc:
                logger.warning("change reader closed: %s", exc)
                return
            try:
                event = parse_change_event(message.value)
            except ChangeEventDecodeError as exc:
                logger.warning("skipping undecodable message: %s", exc)
                continue
            if stop_event.is_set():
                break
            self._process(reader, message, event, handler)
        logger.info("etl service received shutdown signal")

    def _process(
        self,
        reader: _ChangeReader,
        message: Message,
        event: ChangeEvent,
        handler: Callable[[ChangeEvent], dict[str, Any]],
    ) -> None:
        attributes = span_attributes(event, message)
        try:
            attributes.update(handler(event))
        except ChangeEventDecodeError as exc:
            logger.warning("skipping undecodable message: %s", exc)
            return
        except Exception as exc:  # noqa: BLE001 - one bad event must not stop the loop
            logger.error("failed %s operation: %s", event.op, exc)
        else:
            try:
                reader.commit_messages(message)
            except Exception as exc:  # noqa: BLE001
                logger.error("failed commit %s operation: %s", event.op, exc)
        if self._on_span is not None:
            self._on_span(SPAN_NAME, attributes)