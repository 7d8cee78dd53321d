"""Byte-stream framing shared by the Manager (AMI) and Gateway (AGI) clients.

AMI units are CRLF header blocks terminated by an empty line. AGI units are
single reply lines, except ``NNN-`` replies whose body runs until a line that
starts with the same status code again.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Final

from telephony.errors import ConnectionClosedError, FramingError, TransportError

LOGGER = logging.getLogger(__name__)


MAX_RECV: Final[int] = 4096
MAX_UNIT_BYTES: Final[int] = 1 << 20
MAX_BLANK_LINES: Final[int] = 5

BLOCK_TERMINATOR: Final[bytes] = b"\r\n\r\n"
LINE_TERMINATOR: Final[bytes] = b"\n"

# Sent by Asterisk on a FastAGI socket when the channel hangs up.
HANGUP_NOTICE: Final[str] = "HANGUP"

_MULTILINE_START = re.compile(r"^(\d+)-")


class LineFramer:
    """Reads complete protocol units from an ``asyncio.StreamReader``.

    Bytes read past the end of a unit are kept in an internal buffer and
    belong to the next unit.
    """

    def __init__(self, reader: asyncio.StreamReader) -> None:
        self._reader = reader
        self._buffer = bytearray()
        self.hungup = False

    @property
    def buffered(self) -> bytes:
        return bytes(self._buffer)

    async def read_block(self) -> str:
        """Return the next AMI block without its blank-line terminator."""

        # Stray empty lines between blocks carry no unit.
        while self._buffer.startswith(b"\r\n"):
            del self._buffer[:2]

        pos = await self._fill_until(BLOCK_TERMINATOR)
        raw = bytes(self._buffer[:pos])
        del self._buffer[: pos + len(BLOCK_TERMINATOR)]
        return raw.decode("utf-8", errors="replace")

    async def read_line(self) -> str:
        """Return the next line with its line terminator removed."""

        pos = await self._fill_until(LINE_TERMINATOR)
        raw = bytes(self._buffer[:pos])
        del self._buffer[: pos + len(LINE_TERMINATOR)]
        return raw.decode("utf-8", errors="replace").rstrip("\r")

    async def read_reply(self) -> str:
        """Return one AGI reply, joining the lines of a multi-line body.

        Returns an empty string when only blank lines arrive.
        """

        blanks = 0
        while True:
            line = (await self.read_line()).strip()
            if line == HANGUP_NOTICE:
                self._mark_hungup()
                continue
            if line:
                break
            blanks += 1
            if blanks >= MAX_BLANK_LINES:
                return ""

        match = _MULTILINE_START.match(line)
        if match is None:
            return line

        code = match.group(1)
        lines = [line]
        blanks = 0
        while True:
            body_line = (await self.read_line()).rstrip()
            lines.append(body_line)
            if body_line.startswith(code):
                break
            blanks = blanks + 1 if not body_line.strip() else 0
            if blanks >= MAX_BLANK_LINES:
                LOGGER.warning("Multi-line %s reply not terminated; continuing with partial body", code)
                break

        return "\n".join(lines).rstrip()

    def _mark_hungup(self) -> None:
        if not self.hungup:
            LOGGER.info("Switch reported channel hangup")
        self.hungup = True

    async def _fill_until(self, separator: bytes) -> int:
        while True:
            pos = self._buffer.find(separator)
            if pos >= 0:
                return pos
            if len(self._buffer) > MAX_UNIT_BYTES:
                raise FramingError(f"Protocol unit exceeds {MAX_UNIT_BYTES} bytes")

            chunk = await self._recv()
            if not chunk:
                if self._buffer.strip():
                    raise FramingError(
                        f"Stream ended with {len(self._buffer)} bytes of an incomplete unit"
                    )
                raise ConnectionClosedError()
            self._buffer += chunk

    async def _recv(self) -> bytes:
        try:
            return await self._reader.read(MAX_RECV)
        except OSError as exc:
            raise TransportError(f"Read failed: {exc}") from exc
