from cdcreplica.messages import Message, ReaderClosedError


def make_message(headers=()):
    return Message(topic="logs", partition=0, offset=1, value=b"{}", headers=headers)


def test_header_map_decodes_values():
    message = make_message((("service", b"order-service"), ("env", b"staging")))
    assert message.header_map() == {"service": "order-service", "env": "staging"}


def test_header_map_last_duplicate_wins():
    message = make_message((("level", b"info"), ("level", b"error")))
    assert message.header_map() == {"level": "error"}


def test_header_map_empty():
    assert make_message().header_map() == {}


def test_header_map_replaces_invalid_bytes():
    message = make_message((("raw", b"ok\xff"),))
    assert message.header_map()["raw"].startswith("ok")
    assert "\ufffd" in message.header_map()["raw"]


def test_reader_closed_error_carries_reason():
    error = ReaderClosedError("cancelled")
    assert isinstance(error, Exception)
    assert "cancelled" in str(error)