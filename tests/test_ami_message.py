from __future__ import annotations

import re

import pytest

from telephony.ami_message import format_request, new_action_id, parse_message


def test_parse_response_classifies_and_synthesizes_data():
    message = parse_message("Response: Success\r\nActionID: A123456\r\nOutput: line one\r\nOutput: line two")

    assert message.kind == "response"
    assert message.is_success
    assert message.action_id == "A123456"
    assert message.data == "line one\nline two"


def test_parse_response_without_output_has_empty_data():
    message = parse_message("Response: Success\r\nPing: Pong")
    assert message.data == ""


def test_parse_event_has_no_data():
    message = parse_message("Event: Hangup\r\nChannel: SIP/100-0001\r\nCause: 16")

    assert message.kind == "event"
    assert message.event_name == "Hangup"
    assert message["Cause"] == "16"
    assert message.data is None


def test_parse_unhandled_unit():
    assert parse_message("Foo: bar").kind == "unhandled"


def test_parse_trims_and_splits_on_first_colon_only():
    message = parse_message("Event: VarSet\r\n  Value :  a:b:c  ")
    assert message.get("Value") == "a:b:c"


def test_duplicate_headers_are_newline_joined():
    message = parse_message("Event: Status\r\nVariable: A=1\r\nVariable: B=2")
    assert message["Variable"] == "A=1\nB=2"


def test_legacy_command_output_becomes_data():
    raw = "Response: Follows\r\nPrivilege: Command\r\nActionID: A000001\r\nSIP/100 up\nSIP/200 down\n--END COMMAND--"
    message = parse_message(raw)

    assert message.response == "Follows"
    assert message.action_id == "A000001"
    assert message.data == "SIP/100 up\nSIP/200 down"


def test_event_list_markers_are_case_insensitive():
    assert parse_message("Response: Success\r\nEventList: start").starts_event_list
    assert parse_message("Event: StatusComplete\r\nEventList: Complete").completes_event_list


def test_new_action_id_format():
    for _ in range(50):
        assert re.fullmatch(r"A\d{6}", new_action_id())


def test_format_request_appends_exactly_one_action_id():
    wire, action_id = format_request("Ping")

    lines = wire.split("\r\n")
    assert lines[0] == "Action: Ping"
    assert [line for line in lines if line.startswith("ActionID:")] == [f"ActionID: {action_id}"]
    assert wire.endswith("\r\n\r\n")


def test_format_request_honours_caller_action_id_case_insensitively():
    wire, action_id = format_request("Ping", {"actionid": "mine-1"})

    assert action_id == "mine-1"
    assert wire == "Action: Ping\r\nactionid: mine-1\r\n\r\n"


def test_format_request_repeats_sequence_values_in_order():
    wire, _ = format_request(
        "Originate",
        {"Channel": "SIP/100", "Variable": ["A=1", "B=2", "C=3"], "ActionID": "X1"},
    )

    assert wire == (
        "Action: Originate\r\n"
        "Channel: SIP/100\r\n"
        "Variable: A=1\r\n"
        "Variable: B=2\r\n"
        "Variable: C=3\r\n"
        "ActionID: X1\r\n\r\n"
    )


def test_format_request_omits_none_and_lowercases_booleans():
    wire, _ = format_request("Originate", {"Channel": "SIP/1", "Async": True, "EarlyMedia": False, "Exten": None, "ActionID": "X"})

    assert "Async: true\r\n" in wire
    assert "EarlyMedia: false\r\n" in wire
    assert "Exten" not in wire


def test_format_request_rejects_line_breaks_in_values():
    with pytest.raises(ValueError, match="line breaks"):
        format_request("Setvar", {"Value": "a\r\nAction: Logoff"})
