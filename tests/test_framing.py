from __future__ import annotations

import asyncio

import pytest

from conftest import feed_reader
from telephony.errors import ConnectionClosedError, FramingError, TransportError
from telephony.framing import LineFramer


def _run(coro):
    return asyncio.run(coro)


def test_read_block_keeps_bytes_past_the_terminator():
    async def scenario():
        reader = feed_reader(
            "Response: Success\r\nActionID: A000001\r\n\r\nEvent: Hangup\r\n\r\nEvent: Part",
            eof=False,
        )
        framer = LineFramer(reader)
        first = await framer.read_block()
        second = await framer.read_block()
        return first, second, framer.buffered

    first, second, leftover = _run(scenario())
    assert first == "Response: Success\r\nActionID: A000001"
    assert second == "Event: Hangup"
    assert leftover == b"Event: Part"


def test_read_block_waits_for_split_terminator():
    async def scenario():
        reader = feed_reader("Event: Newchannel\r\nChannel: SIP/100\r", eof=False)
        asyncio.get_running_loop().call_soon(reader.feed_data, b"\n\r\n")
        return await LineFramer(reader).read_block()

    assert _run(scenario()) == "Event: Newchannel\r\nChannel: SIP/100"


def test_read_block_skips_stray_blank_lines_between_units():
    async def scenario():
        framer = LineFramer(feed_reader("Event: A\r\n\r\n\r\n\r\nEvent: B\r\n\r\n"))
        return [await framer.read_block(), await framer.read_block()]

    assert _run(scenario()) == ["Event: A", "Event: B"]


def test_eof_with_partial_unit_is_a_framing_error():
    async def scenario():
        framer = LineFramer(feed_reader("Response: Succ"))
        await framer.read_block()

    with pytest.raises(FramingError):
        _run(scenario())


def test_eof_between_units_is_a_clean_close():
    async def scenario():
        framer = LineFramer(feed_reader("Event: A\r\n\r\n"))
        await framer.read_block()
        await framer.read_block()

    with pytest.raises(ConnectionClosedError):
        _run(scenario())


def test_read_error_fails_fast_as_transport_error():
    class BrokenReader:
        def __init__(self) -> None:
            self.calls = 0

        async def read(self, n: int) -> bytes:
            self.calls += 1
            raise ConnectionResetError("reset by peer")

    reader = BrokenReader()
    with pytest.raises(TransportError, match="reset by peer"):
        _run(LineFramer(reader).read_line())
    assert reader.calls == 1


def test_read_line_strips_carriage_return():
    async def scenario():
        framer = LineFramer(feed_reader("Asterisk Call Manager/5.0.1\r\nnext\n"))
        return await framer.read_line(), await framer.read_line()

    assert _run(scenario()) == ("Asterisk Call Manager/5.0.1", "next")


def test_read_reply_collects_multiline_body_until_status_code():
    async def scenario():
        framer = LineFramer(
            feed_reader(
                "520-Invalid command syntax.  Proper usage follows:\n"
                "foo\n"
                "bar\n"
                "520 End of proper usage.\n"
                "200 result=1\n"
            )
        )
        return await framer.read_reply(), await framer.read_reply()

    multi, single = _run(scenario())
    assert multi.split("\n") == [
        "520-Invalid command syntax.  Proper usage follows:",
        "foo",
        "bar",
        "520 End of proper usage.",
    ]
    assert single == "200 result=1"


def test_read_reply_gives_up_after_blank_lines():
    async def scenario():
        return await LineFramer(feed_reader("\n" * 5 + "200 result=0\n")).read_reply()

    assert _run(scenario()) == ""


def test_read_reply_skips_hangup_notice():
    async def scenario():
        framer = LineFramer(feed_reader("HANGUP\n200 result=-1\n"))
        reply = await framer.read_reply()
        return reply, framer.hungup

    assert _run(scenario()) == ("200 result=-1", True)


def test_oversized_unit_is_rejected(monkeypatch):
    import telephony.framing as framing

    monkeypatch.setattr(framing, "MAX_UNIT_BYTES", 16)

    async def scenario():
        await LineFramer(feed_reader("Event: " + "x" * 64, eof=False)).read_block()

    with pytest.raises(FramingError, match="exceeds"):
        _run(scenario())
