from __future__ import annotations

import asyncio

import pytest

from telephony.ami_message import parse_message
from telephony.correlation import PendingReplies
from telephony.errors import ConnectionClosedError


def _run(coro):
    return asyncio.run(coro)


def test_reply_resolves_matching_request_only():
    async def scenario():
        table = PendingReplies()
        first = table.expect("A1")
        second = table.expect("A2")

        assert table.feed(parse_message("Response: Success\r\nActionID: A2")) is True
        return first.done(), second.result(), len(table)

    first_done, reply, pending = _run(scenario())
    assert first_done is False
    assert reply.action_id == "A2"
    assert pending == 1


def test_event_list_is_assembled_without_markers():
    async def scenario():
        table = PendingReplies()
        future = table.expect("A7")
        units = [
            "Response: Success\r\nActionID: A7\r\nEventList: start\r\nMessage: Channel status will follow",
            "Event: Status\r\nActionID: A7\r\nChannel: SIP/100",
            "Event: Newchannel\r\nChannel: SIP/999",
            "Event: Status\r\nActionID: A7\r\nChannel: SIP/200",
            "Event: Status\r\nActionID: A7\r\nChannel: SIP/300",
            "Event: StatusComplete\r\nActionID: A7\r\nEventList: Complete\r\nItems: 3",
        ]
        for raw in units:
            table.feed(parse_message(raw))
        return await future

    reply = _run(scenario())
    assert reply.event_name == "StatusComplete"
    assert [event["Channel"] for event in reply.events] == ["SIP/100", "SIP/200", "SIP/300"]
    assert not any(event.starts_event_list or event.completes_event_list for event in reply.events)


def test_event_with_pending_action_id_is_not_the_reply():
    async def scenario():
        table = PendingReplies()
        future = table.expect("A3")
        consumed = table.feed(parse_message("Event: OriginateResponse\r\nActionID: A3"))
        table.feed(parse_message("Response: Success\r\nActionID: A3"))
        return consumed, await future

    consumed, reply = _run(scenario())
    assert consumed is False
    assert reply.kind == "response"


def test_late_reply_for_abandoned_id_is_not_consumed():
    async def scenario():
        table = PendingReplies()
        future = table.expect("A4")
        table.abandon("A4")
        consumed = table.feed(parse_message("Response: Success\r\nActionID: A4"))
        return future.cancelled(), consumed, "A4" in table

    assert _run(scenario()) == (True, False, False)


def test_next_message_takes_any_unit():
    async def scenario():
        table = PendingReplies()
        future = table.next_message()
        table.feed(parse_message("Event: FullyBooted"))
        return await future

    assert _run(scenario()).event_name == "FullyBooted"


def test_duplicate_expect_is_rejected():
    async def scenario():
        table = PendingReplies()
        table.expect("A5")
        table.expect("A5")

    with pytest.raises(ValueError, match="already"):
        _run(scenario())


def test_fail_all_propagates_the_error():
    async def scenario():
        table = PendingReplies()
        future = table.expect("A6")
        table.fail_all(ConnectionClosedError())
        await future

    with pytest.raises(ConnectionClosedError):
        _run(scenario())
