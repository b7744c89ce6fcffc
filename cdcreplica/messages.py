"""Broker messages as seen by the consumers."""

from __future__ import annotations

from dataclasses import dataclass


class ReaderClosedError(Exception):
    """Raised by a message reader once it has been closed or cancelled."""


@dataclass(frozen=True)
class Message:
    """One message read from a topic partition."""

    topic: str
    partition: int
    offset: int
    value: bytes
    key: bytes = b""
    headers: tuple[tuple[str, bytes], ...] = ()

    def header_map(self) -> dict[str, str]:
        """Headers as text; a repeated key keeps its last value."""
        return {
            key: value.decode("utf-8", errors="replace") for key, value in self.headers
        }