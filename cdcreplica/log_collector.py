"""Forwarding log messages from a topic to Loki."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Protocol

from cdcreplica.loki import LogStream, PushRequest
from cdcreplica.messages import Message, ReaderClosedError

logger = logging.getLogger(__name__)


class _MessageReader(Protocol):
    def read_message(self) -> Message: ...


class _LogSink(Protocol):
    def send(self, request: PushRequest) -> Any: ...


def build_push_request(message: Message, timestamp_ns: int) -> PushRequest:
    """One stream labelled with the message headers, holding the message value."""
    return PushRequest(
        streams=[
            LogStream(
                stream=message.header_map(),
                values=[
                    (str(timestamp_ns), message.value.decode("utf-8", errors="replace"))
                ],
            )
        ]
    )


class LogCollector:
    """Reads log messages and pushes each one to a log sink."""

    def __init__(
        self,
        reader: _MessageReader,
        client: _LogSink,
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        self._reader = reader
        self._client = client
        self._clock = clock

    def handle(self, message: Message) -> PushRequest:
        """Push one message, stamped with the current time; return what was sent."""
        logger.info("received kafka message: %s", message.value.decode("utf-8", "replace"))
        request = build_push_request(message, self._clock())
        self._client.send(request)
        return request

    def start(self, stop_event: threading.Event) -> None:
        """Forward messages until the reader closes or ``stop_event`` is set."""
        logger.info("started log collector...")
        while True:
            try:
                message = self._reader.read_message()
            except ReaderClosedError as exc:
                logger.warning("kafka reader canceled: %s", exc)
                return
            except Exception as exc:  # noqa: BLE001 - a bad read must not stop the loop
                logger.error("error reading kafka message: %s", exc)
                continue
            if stop_event.is_set():
                logger.info("log collector received shutdown signal")
                return
            self.handle(message)