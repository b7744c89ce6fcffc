"""Pushing log lines to a Loki HTTP endpoint."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

import requests

logger = logging.getLogger(__name__)

DEFAULT_RETRY_COUNT = 3
DEFAULT_RETRY_WAIT = 2.0
DEFAULT_RETRY_MAX_WAIT = 10.0

_NOT_RETRYABLE = (
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidSchema,
    requests.exceptions.InvalidURL,
)


@dataclass
class LogStream:
    """A set of labels and the timestamped lines that carry them."""

    stream: dict[str, str] = field(default_factory=dict)
    values: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class PushRequest:
    """Body of a Loki push: one or more streams."""

    streams: list[LogStream] = field(default_factory=list)

    def to_json(self) -> dict[str, Any]:
        """The request as a JSON-ready mapping in Loki's push format."""
        return {
            "streams": [
                {
                    "stream": dict(stream.stream),
                    "values": [[timestamp, line] for timestamp, line in stream.values],
                }
                for stream in self.streams
            ]
        }


@dataclass(frozen=True)
class LokiSettings:
    """Where to push logs and the basic-auth credentials to use."""

    endpoint: str = ""
    user: str = ""
    password: str = field(default="", repr=False)


def load_loki_settings(environ: Mapping[str, str] | None = None) -> LokiSettings:
    """Read LOKI_ENDPOINT, LOKI_USER and LOKI_PASS."""
    env = os.environ if environ is None else environ
    return LokiSettings(
        endpoint=env.get("LOKI_ENDPOINT", ""),
        user=env.get("LOKI_USER", ""),
        password=env.get("LOKI_PASS", ""),
    )


class LokiClient:
    """Sends push requests, retrying server errors and connection failures.

    Failures are logged rather than raised, so a broken log sink never stops
    the caller.
    """

    def __init__(
        self,
        settings: LokiSettings | None = None,
        *,
        session: requests.Session | None = None,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_wait: float = DEFAULT_RETRY_WAIT,
        retry_max_wait: float = DEFAULT_RETRY_MAX_WAIT,
        timeout: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if retry_count < 0:
            raise ValueError(f"retry_count must not be negative, got {retry_count}")
        self._settings = settings if settings is not None else load_loki_settings()
        self._session = session if session is not None else requests.Session()
        self._retry_count = retry_count
        self._retry_wait = retry_wait
        self._retry_max_wait = retry_max_wait
        self._timeout = timeout
        self._sleep = sleep

    def __enter__(self) -> "LokiClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _backoff(self, retry: int) -> float:
        return min(self._retry_wait * 2 ** (retry - 1), self._retry_max_wait)

    def send(self, request: PushRequest) -> requests.Response | None:
        """Post ``request``; return the last response, or ``None`` if none arrived."""
        body = request.to_json()
        response: requests.Response | None = None
        last_error: Exception | None = None
        for attempt in range(self._retry_count + 1):
            if attempt:
                self._sleep(self._backoff(attempt))
            try:
                response = self._session.post(
                    self._settings.endpoint,
                    json=body,
                    auth=(self._settings.user, self._settings.password),
                    headers={"Content-Type": "application/json"},
                    timeout=self._timeout,
                )
            except _NOT_RETRYABLE as exc:
                logger.error("error send data log to loki: %s", exc)
                return None
            except requests.RequestException as exc:
                last_error = exc
                response = None
                continue
            if response.status_code < 500:
                return response
        if response is None:
            logger.error("error send data log to loki: %s", last_error)
        return response

    def close(self) -> None:
        """Release the HTTP session."""
        try:
            self._session.close()
        except Exception as exc:  # noqa: BLE001 - closing must never raise
            logger.error("error closing http client: %s", exc)