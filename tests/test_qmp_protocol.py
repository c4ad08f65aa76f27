"""Tests for the QMP line codec and message classification."""

from __future__ import annotations

import json

import pytest

from vmwarden.exceptions import QmpCommandError, QmpProtocolError
from vmwarden.qmp_protocol import (
    QmpCommand,
    QmpEvent,
    QmpResponse,
    decode_line,
    encode_command,
    parse_greeting,
    parse_message,
)

# ============================================================================
# encode_command
# ============================================================================


class TestEncodeCommand:
    """Tests for command serialization."""

    def test_single_newline_terminated_line(self) -> None:
        data = encode_command(QmpCommand(execute="query-status"))
        assert data.endswith(b"\n")
        assert data.count(b"\n") == 1

    def test_without_arguments_omits_key(self) -> None:
        data = encode_command(QmpCommand(execute="qmp_capabilities"))
        assert json.loads(data) == {"execute": "qmp_capabilities"}

    def test_empty_arguments_omitted(self) -> None:
        data = encode_command(QmpCommand(execute="stop", arguments={}))
        assert "arguments" not in json.loads(data)

    def test_with_arguments(self) -> None:
        data = encode_command(QmpCommand(execute="human-monitor-command", arguments={"command-line": "info\nqtree"}))
        # Embedded newlines must be escaped, never break framing
        assert data.count(b"\n") == 1
        assert json.loads(data)["arguments"] == {"command-line": "info\nqtree"}

    def test_empty_command_name_rejected(self) -> None:
        with pytest.raises(ValueError):
            QmpCommand(execute="")


# ============================================================================
# decode_line
# ============================================================================


class TestDecodeLine:
    """Tests for line → JSON object decoding."""

    def test_decodes_object(self) -> None:
        assert decode_line(b'{"return": {}}\n') == {"return": {}}

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(QmpProtocolError, match="Undecodable"):
            decode_line(b"not valid json\n")

    def test_invalid_utf8_raises(self) -> None:
        with pytest.raises(QmpProtocolError):
            decode_line(b'{"return": "\xff\xfe"}\n')

    @pytest.mark.parametrize("line", [b"[]\n", b"42\n", b'"return"\n', b"null\n"])
    def test_non_object_raises(self, line: bytes) -> None:
        with pytest.raises(QmpProtocolError, match="not a JSON object"):
            decode_line(line)


# ============================================================================
# parse_message
# ============================================================================


class TestParseMessage:
    """Tests for response/event classification."""

    def test_return_response(self) -> None:
        message = parse_message({"return": {"running": True}})
        assert isinstance(message, QmpResponse)
        assert message.return_value == {"running": True}
        assert not message.is_error

    def test_return_can_be_any_json(self) -> None:
        message = parse_message({"return": [1, 2, 3]})
        assert isinstance(message, QmpResponse)
        assert message.return_value == [1, 2, 3]

    def test_error_response(self) -> None:
        message = parse_message({"error": {"class": "GenericError", "desc": "device not found"}})
        assert isinstance(message, QmpResponse)
        assert message.is_error
        assert message.error is not None
        assert message.error.error_class == "GenericError"
        assert message.error.desc == "device not found"

    def test_malformed_error_payload_raises(self) -> None:
        with pytest.raises(QmpProtocolError, match="Malformed"):
            parse_message({"error": "boom"})

    def test_event_with_timestamp(self) -> None:
        message = parse_message(
            {
                "event": "SHUTDOWN",
                "data": {"guest": True, "reason": "guest-shutdown"},
                "timestamp": {"seconds": 1700000000, "microseconds": 123456},
            }
        )
        assert isinstance(message, QmpEvent)
        assert message.event == "SHUTDOWN"
        assert message.data["reason"] == "guest-shutdown"
        assert message.timestamp is not None
        assert message.timestamp.microseconds == 123456

    def test_event_without_data(self) -> None:
        message = parse_message({"event": "STOP"})
        assert isinstance(message, QmpEvent)
        assert message.data == {}
        assert message.timestamp is None

    def test_event_never_classified_as_response(self) -> None:
        # An event carrying a stray "return" key is still an event
        message = parse_message({"event": "RESUME", "return": {}})
        assert isinstance(message, QmpEvent)

    @pytest.mark.parametrize("obj", [{}, {"greeting": 1}, {"QMP": {"version": {}, "capabilities": []}}])
    def test_unknown_shape_raises(self, obj: dict[str, object]) -> None:
        with pytest.raises(QmpProtocolError, match="Unknown QMP message type"):
            parse_message(obj)


class TestRaiseForError:
    """Tests for QmpResponse.raise_for_error."""

    def test_success_does_not_raise(self) -> None:
        QmpResponse.model_validate({"return": {}}).raise_for_error("stop")

    def test_error_raises_command_error(self) -> None:
        response = QmpResponse.model_validate({"error": {"class": "CommandNotFound", "desc": "nope"}})
        with pytest.raises(QmpCommandError) as exc_info:
            response.raise_for_error("bogus")
        assert exc_info.value.command == "bogus"
        assert exc_info.value.error_class == "CommandNotFound"
        assert exc_info.value.context["desc"] == "nope"


# ============================================================================
# parse_greeting
# ============================================================================


class TestParseGreeting:
    """Tests for greeting validation."""

    def test_valid_greeting(self) -> None:
        line = b'{"QMP": {"version": {"qemu": {"micro": 0, "minor": 8, "major": 6}}, "capabilities": ["oob"]}}\n'
        greeting = parse_greeting(line)
        assert greeting.qmp.version["qemu"]["major"] == 6
        assert greeting.qmp.capabilities == ["oob"]

    def test_missing_capabilities_raises(self) -> None:
        with pytest.raises(QmpProtocolError, match="Invalid QMP greeting"):
            parse_greeting(b'{"QMP": {"version": {}}}\n')

    def test_response_instead_of_greeting_raises(self) -> None:
        with pytest.raises(QmpProtocolError):
            parse_greeting(b'{"return": {}}\n')

    def test_garbage_raises(self) -> None:
        with pytest.raises(QmpProtocolError):
            parse_greeting(b"hello\n")
