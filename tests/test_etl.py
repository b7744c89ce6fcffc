import json
import threading
from datetime import datetime, timezone

import pytest

from cdcreplica.debezium import ChangeEvent, ChangeEventDecodeError, parse_change_event
from cdcreplica.errors import NoDeleteRowError, NoRowFoundError
from cdcreplica.etl import (
    SPAN_NAME,
    EtlService,
    address_from_record,
    span_attributes,
    user_from_record,
)
from cdcreplica.messages import Message, ReaderClosedError
from cdcreplica.users import User


class FakeConnection:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakeUsers:
    def __init__(self, existing=None, find_error=None, delete_error=None):
        self.existing = existing
        self.find_error = find_error
        self.delete_error = delete_error
        self.upserts = []
        self.deletes = []
        self.lookups = []

    def find_one(self, lookup):
        self.lookups.append(lookup)
        if self.find_error is not None:
            raise self.find_error
        if self.existing is None:
            raise NoRowFoundError()
        return self.existing

    def upsert(self, entity, tx):
        self.upserts.append((entity, tx))
        return entity.id

    def delete(self, tx, user_id):
        if self.delete_error is not None:
            raise self.delete_error
        self.deletes.append((tx, user_id))


class FakeAddresses:
    def __init__(self):
        self.upserts = []
        self.deletes = []

    def upsert(self, entity, tx):
        self.upserts.append((entity, tx))
        return entity.id

    def delete(self, tx, address_id):
        self.deletes.append((tx, address_id))


class FakeReader:
    def __init__(self, messages, final_error=None):
        self.messages = list(messages)
        self.final_error = final_error or ReaderClosedError("closed")
        self.committed = []

    def fetch_message(self):
        if not self.messages:
            raise self.final_error
        return self.messages.pop(0)

    def commit_messages(self, *messages):
        self.committed.extend(messages)


def _message(payload, offset=0, topic="users"):
    value = json.dumps({"schema": {"name": "db.public.users"}, "payload": payload})
    return Message(topic=topic, partition=2, offset=offset, value=value.encode())


def _event(payload):
    return parse_change_event(json.dumps({"schema": {"name": "s"}, "payload": payload}))


def _service(users=None, addresses=None, spans=None):
    connection = FakeConnection()
    recorder = (lambda name, attrs: spans.append((name, attrs))) if spans is not None else None
    service = EtlService(users or FakeUsers(), addresses or FakeAddresses(), connection, recorder)
    return service, connection


def test_user_from_record_reads_all_columns():
    user = user_from_record(
        {
            "id": 7,
            "name": "Ann",
            "email": "ann@example.com",
            "phone_number": "555",
            "password": "password",
            "is_verified": True,
            "trace_parent": "tp",
            "created_at": "2024-01-02T03:04:05Z",
            "updated_at": None,
        }
    )
    assert user.id == 7
    assert user.email == "ann@example.com"
    assert user.password == "password"
    assert user.is_verified is True
    assert user.created_at == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert user.updated_at is None


def test_user_from_record_defaults_missing_columns():
    assert user_from_record({}) == User()


@pytest.mark.parametrize(
    "record",
    [{"id": "7"}, {"id": True}, {"name": 3}, {"is_verified": 1}, {"created_at": 5}, {"created_at": "nope"}],
)
def test_user_from_record_rejects_wrong_types(record):
    with pytest.raises(ChangeEventDecodeError):
        user_from_record(record)


def test_address_from_record_reads_columns():
    address = address_from_record({"id": 3, "user_id": 9, "full_address": 12, "trace_parent": "tp"})
    assert (address.id, address.user_id, address.full_address, address.trace_parent) == (3, 9, 12, "tp")


def test_address_from_record_rejects_text_address():
    with pytest.raises(ChangeEventDecodeError):
        address_from_record({"full_address": "Main street"})


def test_span_attributes_describe_message():
    event = ChangeEvent(op="c", table="users", schema_name="db.public.users")
    message = Message(topic="t", partition=4, offset=99, value=b"")
    assert span_attributes(event, message) == {
        "debezium.operation": "c",
        "debezium.schema": "db.public.users",
        "kafka.topic": "t",
        "kafka.partition": "4",
        "kafka.offset": 99,
        "debezium.source.table": "users",
    }


@pytest.mark.parametrize("op", ["c", "u"])
def test_handle_user_event_upserts(op):
    users = FakeUsers()
    service, connection = _service(users=users)
    result = service.handle_user_event(_event({"__op": op, "id": 5, "name": "Ann"}))
    assert result == {}
    assert [(entity.id, entity.name, tx) for entity, tx in users.upserts] == [(5, "Ann", connection)]
    assert connection.commits == 1


def test_handle_user_event_deletes():
    users = FakeUsers()
    service, connection = _service(users=users)
    service.handle_user_event(_event({"__op": "d", "id": 5}))
    assert users.deletes == [(connection, 5)]
    assert users.upserts == []


@pytest.mark.parametrize("op", ["r", "x"])
def test_handle_user_event_ignores_unsupported_operation(op):
    users = FakeUsers()
    service, connection = _service(users=users)
    service.handle_user_event(_event({"__op": op, "id": 5}))
    assert users.upserts == [] and users.deletes == []
    assert connection.commits == 1


def test_handle_user_event_rolls_back_on_error():
    users = FakeUsers(delete_error=NoDeleteRowError())
    service, connection = _service(users=users)
    with pytest.raises(NoDeleteRowError):
        service.handle_user_event(_event({"__op": "d", "id": 5}))
    assert (connection.commits, connection.rollbacks) == (0, 1)


def test_handle_address_event_reports_existing_owner():
    users = FakeUsers(existing=User(id=9))
    addresses = FakeAddresses()
    service, _ = _service(users=users, addresses=addresses)
    result = service.handle_user_address_event(_event({"__op": "c", "id": 3, "user_id": 9}))
    assert result == {"user.existing": True}
    assert users.lookups[0].id == 9
    assert addresses.upserts[0][0].id == 3


def test_handle_address_event_missing_owner_still_upserts():
    addresses = FakeAddresses()
    service, _ = _service(users=FakeUsers(), addresses=addresses)
    result = service.handle_user_address_event(_event({"__op": "u", "id": 3, "user_id": 9}))
    assert result == {"user.existing": False}
    assert len(addresses.upserts) == 1


def test_handle_address_event_propagates_lookup_failure():
    addresses = FakeAddresses()
    service, connection = _service(users=FakeUsers(find_error=RuntimeError("down")), addresses=addresses)
    with pytest.raises(RuntimeError):
        service.handle_user_address_event(_event({"__op": "c", "id": 3, "user_id": 9}))
    assert addresses.upserts == []
    assert connection.rollbacks == 1


def test_handle_address_event_deletes():
    addresses = FakeAddresses()
    service, connection = _service(addresses=addresses)
    service.handle_user_address_event(_event({"__op": "d", "id": 3}))
    assert addresses.deletes == [(connection, 3)]


def test_run_users_commits_only_successful_messages():
    good = _message({"__op": "c", "id": 1}, offset=1)
    undecodable = Message(topic="users", partition=2, offset=2, value=b"{broken")
    failing = _message({"__op": "d", "id": 2}, offset=3)
    bad_record = _message({"__op": "c", "id": "x"}, offset=4)
    reader = FakeReader([good, undecodable, failing, bad_record])
    users = FakeUsers(delete_error=NoDeleteRowError())
    spans = []
    service, _ = _service(users=users, spans=spans)

    assert service.run_users(reader, threading.Event()) is None
    assert reader.committed == [good]
    assert [attrs["kafka.offset"] for _, attrs in spans] == [1, 3]
    assert {name for name, _ in spans} == {SPAN_NAME}


def test_run_user_addresses_records_owner_attribute():
    message = _message({"__op": "c", "id": 3, "user_id": 9}, offset=5, topic="addresses")
    reader = FakeReader([message])
    spans = []
    service, _ = _service(users=FakeUsers(existing=User(id=9)), spans=spans)
    service.run_user_addresses(reader, threading.Event())
    assert reader.committed == [message]
    assert spans[0][1]["user.existing"] is True
    assert spans[0][1]["kafka.topic"] == "addresses"


def test_run_stops_when_event_set():
    reader = FakeReader([_message({"__op": "c", "id": 1})])
    users = FakeUsers()
    service, _ = _service(users=users)
    stop = threading.Event()
    stop.set()
    service.run_users(reader, stop)
    assert users.upserts == []
    assert reader.committed == []


def test_run_propagates_reader_failure():
    reader = FakeReader([], final_error=ConnectionError("broker down"))
    service, _ = _service()
    with pytest.raises(ConnectionError):
        service.run_users(reader, threading.Event())