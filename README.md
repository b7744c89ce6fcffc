# cdcreplica

`cdcreplica` keeps local copies of user and user-address rows in step with
an upstream service. Upstream row changes arrive as Debezium change events
(with the "extract new record state" transform applied); each event is
applied to a local table inside a transaction, and the message is committed
only once the change has been written. A separate log collector forwards
log messages to a Loki push endpoint, labelled by the message headers.

The library works with any DB-API connection and with any message reader
object that has the methods described below.

## Modules

| Module | Purpose |
| --- | --- |
| `cdcreplica.debezium` | `parse_change_event` decodes a raw event into a `ChangeEvent` (`op`, `table`, `schema_name`, `deleted`, `record`); `Operation` names create, update, delete and read; malformed input raises `ChangeEventDecodeError`. |
| `cdcreplica.messages` | `Message` (topic, partition, offset, value, key, headers) with `header_map()`, and `ReaderClosedError`, which a reader raises once it is closed. |
| `cdcreplica.users` | `User`, `UserLookup`, `UserSearch`, `UserPage` and `UserRepository` with `find_one`, `find_all`, `upsert`, `update` and `delete`. |
| `cdcreplica.user_addresses` | `UserAddress`, `AddressLookup`, `AddressSearch`, `AddressPage` and `UserAddressRepository` with the same operations. |
| `cdcreplica.sqlquery` | `SqlDialect` placeholder styles, `ilike_any` keyword filters, `PaginationInput` / `PaginationOutput`, `fetch_page` and the `transaction` context manager. |
| `cdcreplica.etl` | `EtlService` applies user and user-address change events; `user_from_record`, `address_from_record` and `span_attributes` help it. |
| `cdcreplica.loki` | `LogStream`, `PushRequest`, `LokiSettings`, `load_loki_settings` and `LokiClient`. |
| `cdcreplica.log_collector` | `build_push_request` and `LogCollector`. |
| `cdcreplica.settings` | `load_database_settings`, `load_observability_settings` and `load_kafka_settings`, with `SettingsError`. |
| `cdcreplica.errors` | `RepositoryError` and its subclasses `NoRowFoundError`, `NoUpdateRowError`, `NoDeleteRowError` and `MissingTransactionError`. |

## Configuration

Settings are read from a mapping; with no argument, `os.environ` is used.

```python
from cdcreplica.settings import load_database_settings, load_kafka_settings
from cdcreplica.loki import load_loki_settings

database = load_database_settings()   # raises SettingsError if DATABASE_URI is unset or empty
kafka = load_kafka_settings()
loki = load_loki_settings()
```

Variables read:

- `DATABASE_URI` – connection string for the replica database (required).
- `SERVICE_NAME`, `APP_ENV` – service name and environment.
- `OTEL_EXPORTER_OTLP_ENDPOINT`, `OTEL_EXPORTER_OTLP_USERNAME`, `OTEL_EXPORTER_OTLP_PASSWORD` – trace exporter settings.
- `KAFKA_ADDRS` – comma-separated broker addresses (blanks are dropped).
- `KAFKA_BROKER` – broker for the log topic.
- `KAFKA_SASL_USER`, `KAFKA_SASL_PASS` – SASL credentials.
- `KAFKA_LOG_TOPIC` – topic carrying log messages.
- `KAFKA_ETL_USER`, `KAKFA_ETL_USER_CONSUMER_GROUP` – user change topic and consumer group.
- `KAFKA_ETL_USER_ADDRESS`, `KAKFA_ETL_USER_ADDRESS_CONSUMER_GROUP` – user-address change topic and consumer group.
- `LOKI_ENDPOINT`, `LOKI_USER`, `LOKI_PASS` – Loki push endpoint and basic-auth credentials.

## Repositories

Statements are written with `?` placeholders and rewritten for the driver by
`SqlDialect`: `QMARK` leaves them as they are (for example `sqlite3`),
`FORMAT` turns them into `%s`, and `DOLLAR` into `$1`, `$2`, ….

```python
import sqlite3

from cdcreplica.sqlquery import PaginationInput, SqlDialect, transaction
from cdcreplica.users import User, UserLookup, UserRepository, UserSearch

connection = sqlite3.connect("replica.db")
users = UserRepository(connection, SqlDialect.QMARK)

with transaction(connection) as tx:
    users.upsert(User(id=1, name="Ann", email="ann@example.com"), tx)

user = users.find_one(UserLookup(email="ann@example.com"))
page = users.find_all(UserSearch(keyword="ann", pagination=PaginationInput(page=1, page_size=20)))
print(page.pagination.total_data, [u.name for u in page.entities])
```

- `find_one` raises `NoRowFoundError` when nothing matches.
- `find_all` searches case-insensitively (`ILIKE`, or `LIKE` for `QMARK`):
  users by name, e-mail and id; addresses by address and owning user id.
  It returns one page plus a `PaginationOutput` with the total rows and pages.
- `upsert` inserts or overwrites the row with the same id and returns the id.
- `update` overwrites the row, setting `updated_at` to the current UTC time;
  it raises `NoUpdateRowError` when no row was changed.
- `delete` raises `NoDeleteRowError` when no row was removed.
- Every write raises `MissingTransactionError` when `tx` is `None`.
- `transaction` commits on success and rolls back and re-raises on error.

## Applying change events

`EtlService(users, addresses, connection, on_span=None)` takes the two
repositories and the connection its writes go through.

- `handle_user_event` and `handle_user_address_event` apply one `ChangeEvent`
  in a transaction: create (`c`) and update (`u`) upsert the row by id,
  delete (`d`) removes it, and any other operation is logged and skipped.
  For an address create or update, the owning user is looked up and the
  returned attributes include `user.existing`.
- `run_users(reader, stop_event)` and `run_user_addresses(reader, stop_event)`
  loop until `stop_event` (a `threading.Event`) is set or the reader raises
  `ReaderClosedError`. The reader must provide `fetch_message()` returning a
  `Message` and `commit_messages(*messages)`.

Messages that cannot be decoded are skipped without being committed. A
failed write is logged and its message is left uncommitted; a successful
one is committed. If `on_span` is given, it is called for each processed
message with `"debezium.message.info"` and the attributes from
`span_attributes` (operation, schema, topic, partition, offset, table).

## Forwarding logs to Loki

```python
import threading

from cdcreplica.log_collector import LogCollector
from cdcreplica.loki import LokiClient

stop = threading.Event()
with LokiClient() as client:
    LogCollector(reader, client).start(stop)
```

`reader` must provide `read_message()` returning a `Message`. Each message
becomes one stream whose labels are the message headers and whose single
value is the current time in nanoseconds and the message text.
`LogCollector.start` stops when the reader raises `ReaderClosedError` or when
`stop_event` is found set after a read; other read errors are logged and the
loop goes on.

`LokiClient.send` posts the request as JSON with basic auth. Server errors
(status 500 and above) and connection failures are retried, by default up to
3 more times, waiting 2 s and doubling up to 10 s between attempts. Failures
are logged, never raised; `send` returns the last response, or `None` when
none arrived.

## What the package does not do

- It has no Kafka client: callers supply the reader objects described above.
- It has no command-line program and no HTTP server.
- It creates no database tables and does not open database connections;
  `DatabaseSettings` only holds the URI.
- It does not set up tracing or log shipping from `ObservabilitySettings`;
  those settings are only read. Span data is handed to the `on_span` callback.