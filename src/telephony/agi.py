"""Asterisk Gateway Interface (AGI) command evaluation.

Typical replies::

    200 result=1
    200 result=4 (supplementary data)
    200 result=4 (supplementary data) foo=bar
    510 Invalid or unknown command
    520-Invalid command syntax.  Proper usage follows:
    ...
    520 End of proper usage.
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Final

from telephony.errors import TransportError
from telephony.framing import LineFramer

LOGGER = logging.getLogger(__name__)


AGIRES_OK: Final[int] = 200
AGIRES_ERR: Final[int] = 500
AGIRES_BADCMD: Final[int] = 510
AGIRES_INVALID: Final[int] = 520

_PLACEHOLDER = re.compile(r"%(?:%|[sdif])")
_NUMERIC = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_STATUS_LINE = re.compile(r"^(?P<code>\d+)(?:(?P<sep>[ -])(?P<text>.*))?$")
# key=value, optionally followed by "(data)" that runs up to the next annotation or the end.
_ANNOTATION = re.compile(
    r"^(?P<key>\w+)=(?P<value>[^\s(]*)(?:\s*\((?P<data>.*?)\)(?=\s+\w+=|\s*$))?",
    re.S,
)


@dataclass(slots=True)
class AgiResult:
    """Parsed AGI reply.

    ``result`` stays a string (or None when the reply carries no result).
    Every ``key=value`` annotation, ``result`` included, is kept in ``fields``.
    """

    code: int
    result: str | None = None
    data: str = ""
    fields: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.code == AGIRES_OK

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.fields.get(key, default)

    def result_int(self, default: int = -1) -> int:
        try:
            return int(self.result) if self.result is not None else default
        except ValueError:
            return default


@dataclass(slots=True)
class AgiEnvironment:
    """The ``agi_*`` variables Asterisk sends before the first command."""

    variables: dict[str, str] = field(default_factory=dict)

    def get(self, name: str, default: str | None = None) -> str | None:
        key = name if name.startswith("agi_") else f"agi_{name}"
        return self.variables.get(key, default)

    @property
    def channel(self) -> str | None:
        return self.get("channel")

    @property
    def unique_id(self) -> str | None:
        return self.get("uniqueid")

    @property
    def enhanced(self) -> bool:
        return self.get("enhanced") == "1.0"

    @property
    def arguments(self) -> list[str]:
        args: list[tuple[int, str]] = []
        for key, value in self.variables.items():
            suffix = key.removeprefix("agi_arg_")
            if suffix != key and suffix.isdigit():
                args.append((int(suffix), value))
        return [value for _, value in sorted(args)]

    @property
    def network_script(self) -> str | None:
        """Script name requested over FastAGI (``agi://host/<script>?...``)."""

        script = self.get("network_script")
        if script:
            return script.split("?", 1)[0].strip("/")

        request = self.get("request") or ""
        if not request.startswith("agi://"):
            return None
        path = request.removeprefix("agi://").partition("/")[2]
        return path.split("?", 1)[0].strip("/") or None


def quote_argument(value: Any) -> str:
    """Render a command argument: numbers bare, everything else quoted."""

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)

    text = str(value)
    if _NUMERIC.fullmatch(text):
        return text
    escaped = text.replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def format_command(template: str, *args: Any) -> str:
    """Apply positional ``%s``/``%d`` substitution to a command template.

    Without ``args`` the template is returned untouched.

    Raises:
        ValueError: If the template has more placeholders than arguments.
    """

    if not args:
        return template

    values = iter(args)

    def substitute(match: re.Match[str]) -> str:
        placeholder = match.group(0)
        if placeholder == "%%":
            return "%"
        try:
            value = next(values)
        except StopIteration:
            raise ValueError(f"Not enough arguments for command template {template!r}") from None
        if placeholder in ("%d", "%i") and isinstance(value, float):
            value = int(value)
        return quote_argument(value)

    return _PLACEHOLDER.sub(substitute, template).strip()


def parse_reply(raw: str) -> AgiResult:
    """Parse one framed reply (possibly multi-line) into an ``AgiResult``.

    Raises:
        ValueError: If the reply does not start with a numeric status code.
    """

    lines = raw.split("\n")
    match = _STATUS_LINE.match(lines[0].strip())
    if match is None:
        raise ValueError(f"Unexpected AGI reply: {raw!r}")

    code = int(match.group("code"))
    text = (match.group("text") or "").strip()

    if match.group("sep") == "-":
        body = lines[1:]
        if body and body[-1].startswith(match.group("code")):
            body = body[:-1]
        text = "\n".join([text, *body]).strip()

    result = AgiResult(code=code, data=text)
    if code == AGIRES_OK:
        _apply_annotations(result, text)
    return result


def _apply_annotations(result: AgiResult, text: str) -> None:
    remaining = text
    data: str | None = None
    while True:
        match = _ANNOTATION.match(remaining)
        if match is None:
            break
        key, value = match.group("key"), match.group("value")
        result.fields[key] = value
        if key == "result":
            result.result = value
        if match.group("data") is not None:
            data = match.group("data")
        remaining = remaining[match.end() :].strip()

    result.data = data if data is not None else remaining


class AgiChannel:
    """Command channel to one AGI session (stdio or FastAGI socket)."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        environment: AgiEnvironment | None = None,
    ) -> None:
        self._framer = LineFramer(reader)
        self._writer = writer
        self._lock = asyncio.Lock()
        self.environment = environment or AgiEnvironment()

    @classmethod
    async def from_stdio(cls) -> AgiChannel:
        """Attach to stdin/stdout, as when Asterisk runs the script via AGI().

        Logging must go to stderr in this mode; stdout carries the protocol.
        """

        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        transport, protocol = await loop.connect_write_pipe(asyncio.streams.FlowControlMixin, sys.stdout)
        writer = asyncio.StreamWriter(transport, protocol, reader, loop)
        return cls(reader, writer)

    @property
    def hungup(self) -> bool:
        """True once the switch has announced a channel hangup."""

        return self._framer.hungup

    async def read_environment(self) -> AgiEnvironment:
        """Read the ``agi_*: value`` header block up to its empty line."""

        variables: dict[str, str] = {}
        while True:
            line = await self._framer.read_line()
            if not line.strip():
                break
            key, _, value = line.partition(":")
            variables[key.strip()] = value.strip()

        self.environment = AgiEnvironment(variables)
        LOGGER.debug("AGI Request: %s", variables)
        return self.environment

    async def evaluate(self, command: str, *args: Any) -> AgiResult:
        """Send one command and parse its reply.

        With ``args``, ``command`` is a positional template (see
        ``format_command``). Status 510/520 and other failures come back as
        results; only transport problems raise.

        Raises:
            TransportError: If the command cannot be written or the stream fails.
            FramingError: If the stream ends in the middle of a reply.
        """

        command = format_command(command, *args)
        broken = AgiResult(code=AGIRES_ERR, result="-1", data=command)

        async with self._lock:
            try:
                self._writer.write(f"{command}\n".encode("utf-8"))
                await self._writer.drain()
            except OSError as exc:
                raise TransportError(f"Send failed: {exc}") from exc

            raw = await self._framer.read_reply()

        if not raw:
            LOGGER.error("evaluate error on read for %s", command)
            return broken

        try:
            result = parse_reply(raw)
        except ValueError:
            LOGGER.error("evaluate error: unparsable reply %r for %s", raw, command)
            return broken

        if result.code == AGIRES_BADCMD:
            LOGGER.warning("AGI returned unknown command error: %s", result.data)
        elif result.code == AGIRES_INVALID:
            LOGGER.warning("AGI returned invalid command syntax error: %s", result.data)
        elif result.code != AGIRES_OK:
            LOGGER.warning("AGI returned unknown error %s: %s", result.code, result.data)

        if result.result_int(default=0) < 0:
            LOGGER.info("%s returned %s", command, result.result)

        return result

    async def close(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as exc:
            LOGGER.debug("Error while closing AGI channel: %s", exc)
