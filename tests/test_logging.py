import json
import logging

from wa_bot.logging import (
    TEXT_FORMAT,
    MessageContextFilter,
    StructuredFormatter,
    get_sender_key,
    message_context,
)


def _record(message="Matched command #3"):
    record = logging.LogRecord("services.dispatcher", logging.INFO, __file__, 1, message, None, None)
    MessageContextFilter().filter(record)
    return record


def test_context_binds_message_and_sender():
    with message_context("wamid-7", "34600111222@c.us") as cid:
        assert cid == "wamid-7"
        record = _record()
    assert record.correlation_id == "wamid-7"
    assert record.sender_key == "34600111222@c.us"


def test_context_is_reset_on_exit():
    with message_context("wamid-1", "alice"):
        pass
    assert get_sender_key() == ""
    record = _record()
    assert record.sender_key == "-"


def test_missing_message_id_gets_generated():
    with message_context(None, "alice") as cid:
        assert len(cid) == 12


def test_text_format_includes_sender():
    with message_context("wamid-2", "bob"):
        line = logging.Formatter(TEXT_FORMAT).format(_record("hola"))
    assert " | wamid-2 | bob | services.dispatcher | hola" in line


def test_json_lines_carry_sender():
    with message_context("wamid-3", "carol"):
        record = _record()
    record.extra_data = {"outcome": "command_text"}
    entry = json.loads(StructuredFormatter().format(record))
    assert entry["correlation_id"] == "wamid-3"
    assert entry["sender_key"] == "carol"
    assert entry["data"] == {"outcome": "command_text"}
