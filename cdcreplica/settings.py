"""Service settings read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

LOG_COLLECTOR_GROUP_ID = "consumer-group-log-collector-1"


class SettingsError(Exception):
    """A required setting is missing or invalid."""


@dataclass(frozen=True)
class DatabaseSettings:
    """Database connection settings."""

    uri: str = field(repr=False)


@dataclass(frozen=True)
class ObservabilitySettings:
    """Tracing and logging settings."""

    service_name: str = ""
    env: str = ""
    otlp_endpoint: str = ""
    otlp_username: str = ""
    otlp_password: str = field(default="", repr=False)
    log_mode: str = "json"
    log_level: str = "info"


@dataclass(frozen=True)
class KafkaSettings:
    """Broker addresses, credentials, topics and consumer groups."""

    addrs: tuple[str, ...] = ()
    log_broker: str = ""
    sasl_user: str = ""
    sasl_password: str = field(default="", repr=False)
    log_topic: str = ""
    log_group_id: str = LOG_COLLECTOR_GROUP_ID
    user_topic: str = ""
    user_group: str = ""
    user_address_topic: str = ""
    user_address_group: str = ""


def _environ(environ: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def load_database_settings(environ: Mapping[str, str] | None = None) -> DatabaseSettings:
    """Read the database settings; the connection URI is required."""
    uri = _environ(environ).get("DATABASE_URI", "")
    if not uri:
        raise SettingsError("DATABASE_URI is not set")
    return DatabaseSettings(uri=uri)


def load_observability_settings(
    environ: Mapping[str, str] | None = None,
) -> ObservabilitySettings:
    """Read the tracing and logging settings."""
    env = _environ(environ)
    return ObservabilitySettings(
        service_name=env.get("SERVICE_NAME", ""),
        env=env.get("APP_ENV", ""),
        otlp_endpoint=env.get("OTEL_EXPORTER_OTLP_ENDPOINT", ""),
        otlp_username=env.get("OTEL_EXPORTER_OTLP_USERNAME", ""),
        otlp_password=env.get("OTEL_EXPORTER_OTLP_PASSWORD", ""),
    )


def load_kafka_settings(environ: Mapping[str, str] | None = None) -> KafkaSettings:
    """Read the Kafka settings; KAFKA_ADDRS is a comma-separated list."""
    env = _environ(environ)
    addrs = tuple(
        addr.strip() for addr in env.get("KAFKA_ADDRS", "").split(",") if addr.strip()
    )
    return KafkaSettings(
        addrs=addrs,
        log_broker=env.get("KAFKA_BROKER", ""),
        sasl_user=env.get("KAFKA_SASL_USER", ""),
        sasl_password=env.get("KAFKA_SASL_PASS", ""),
        log_topic=env.get("KAFKA_LOG_TOPIC", ""),
        user_topic=env.get("KAFKA_ETL_USER", ""),
        user_group=env.get("KAKFA_ETL_USER_CONSUMER_GROUP", ""),
        user_address_topic=env.get("KAFKA_ETL_USER_ADDRESS", ""),
        user_address_group=env.get("KAKFA_ETL_USER_ADDRESS_CONSUMER_GROUP", ""),
    )