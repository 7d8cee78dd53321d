"""Call-control command set on top of ``AgiChannel.evaluate``."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Final

from config.settings import get_settings
from telephony.agi import AGIRES_OK, AgiChannel, AgiResult

OPTION_DELIMITER: Final[str] = ","

CHANNEL_STATES: Final[dict[int, str]] = {
    0: "Channel is down and available",
    1: "Channel is down, but reserved",
    2: "Channel is off hook",
    3: "Digits (or equivalent) have been dialed",
    4: "Line is ringing",
    5: "Remote end is ringing",
    6: "Line is up",
    7: "Line is busy",
    8: "Digits (or equivalent) have been dialed while offhook",
    9: "Channel has detected an incoming call and is waiting for ring",
}


@dataclass(frozen=True, slots=True)
class CallerId:
    name: str = ""
    protocol: str = ""
    username: str = ""
    host: str = ""
    port: str = ""


def parse_callerid(callerid: str) -> CallerId:
    """Split ``"name" <proto:user@host:port>`` into its parts."""

    name = ""
    rest = callerid.strip()
    if rest[:1] in ('"', "'"):
        quote = rest[0]
        name, _, rest = rest[1:].partition(quote)

    address = rest.strip("<> ")
    user_part, _, host_part = address.partition("@")

    protocol, sep, username = user_part.partition(":")
    if not sep:
        protocol, username = "", user_part

    host, _, port = host_part.partition(":")
    return CallerId(name=name, protocol=protocol, username=username, host=host, port=port)


@dataclass(slots=True)
class DigitBuffer:
    """Keys the caller pressed across a chain of ``fastpass_*`` prompts."""

    digits: str = ""

    def __str__(self) -> str:
        return self.digits

    def __len__(self) -> int:
        return len(self.digits)

    @property
    def last(self) -> str:
        return self.digits[-1:]

    def push(self, result: AgiResult) -> None:
        """Record the escape digit ``result`` reports, if any."""

        code = result.result_int(default=0)
        if result.ok and code > 0:
            self.digits += chr(code)


class AgiSession(AgiChannel):
    """An AGI channel with one coroutine per Asterisk AGI command.

    Every method returns the ``AgiResult`` of ``evaluate`` unless noted.
    """

    # --- Channel ---

    async def answer(self) -> AgiResult:
        """``result`` is 0 on success, -1 on failure."""

        return await self.evaluate("ANSWER")

    async def hangup(self, channel: str = "") -> AgiResult:
        if not channel:
            return await self.evaluate("HANGUP")
        return await self.evaluate("HANGUP %s", channel)

    async def channel_status(self, channel: str = "") -> AgiResult:
        """Status of ``channel`` (or the current one), described in ``data``."""

        result = await self.evaluate(f"CHANNEL STATUS {channel}".strip())
        state = result.result_int()
        if state == -1:
            result.data = f"There is no channel that matches {channel}".strip()
        else:
            result.data = CHANNEL_STATES.get(state, f"Unknown ({result.result})")
        return result

    def caller_id(self) -> CallerId:
        """Caller ID of the current call, from the ``agi_callerid`` request variable."""

        parsed = parse_callerid(self.environment.get("callerid") or "")
        if not parsed.name:
            name = self.environment.get("calleridname") or ""
            if name and name != "unknown":
                parsed = replace(parsed, name=name)
        return parsed

    async def set_autohangup(self, seconds: int = 0) -> AgiResult:
        return await self.evaluate(f"SET AUTOHANGUP {int(seconds)}")

    async def set_callerid(self, callerid: str) -> AgiResult:
        return await self.evaluate(f"SET CALLERID {callerid}")

    async def set_context(self, context: str) -> AgiResult:
        return await self.evaluate(f"SET CONTEXT {context}")

    async def set_extension(self, extension: str) -> AgiResult:
        return await self.evaluate(f"SET EXTENSION {extension}")

    async def set_priority(self, priority: int | str) -> AgiResult:
        return await self.evaluate(f"SET PRIORITY {priority}")

    async def set_dialplan_location(self, context: str, extension: str = "s", priority: int | str = 1) -> None:
        """Continue in the dialplan at ``context,extension,priority`` after the script."""

        await self.set_context(context)
        await self.set_extension(extension)
        await self.set_priority(priority)

    async def set_music(self, enabled: bool = True, music_class: str = "") -> AgiResult:
        state = "ON" if enabled else "OFF"
        return await self.evaluate(f"SET MUSIC {state} {music_class}".strip())

    async def tdd_mode(self, setting: str) -> AgiResult:
        return await self.evaluate(f"TDD MODE {setting}")

    # --- Variables and AstDB ---

    async def get_variable(self, variable: str) -> AgiResult:
        """``result`` is 1 when set; the value is in ``data``."""

        return await self.evaluate(f"GET VARIABLE {variable}")

    async def get_variable_value(self, variable: str) -> str | None:
        result = await self.get_variable(variable)
        return result.data if result.ok and result.result == "1" else None

    async def get_full_variable(self, expression: str, channel: str | None = None) -> AgiResult:
        """Evaluate an expression such as ``${CALLERID(num)}``, optionally on another channel."""

        request = f"{expression} {channel}" if channel else expression
        return await self.evaluate(f"GET FULL VARIABLE {request}")

    async def set_variable(self, variable: str, value: str) -> AgiResult:
        return await self.evaluate("SET VARIABLE %s %s", variable, value)

    async def database_get(self, family: str, key: str) -> AgiResult:
        """``result`` is 1 on success; the value is in ``data``."""

        return await self.evaluate("DATABASE GET %s %s", family, key)

    async def database_put(self, family: str, key: str, value: str) -> AgiResult:
        return await self.evaluate("DATABASE PUT %s %s %s", family, key, value)

    async def database_del(self, family: str, key: str) -> AgiResult:
        return await self.evaluate("DATABASE DEL %s %s", family, key)

    async def database_deltree(self, family: str, keytree: str = "") -> AgiResult:
        if keytree:
            return await self.evaluate("DATABASE DELTREE %s %s", family, keytree)
        return await self.evaluate("DATABASE DELTREE %s", family)

    # --- Media ---

    async def stream_file(self, filename: str, escape_digits: str = "", offset: int = 0) -> AgiResult:
        """Play a sound file; ``result`` is the ASCII code of an escape digit, 0 or -1.

        The sample offset where playback stopped is in ``fields["endpos"]``.
        """

        return await self.evaluate("STREAM FILE %s %s %d", filename, escape_digits, offset)

    async def record_file(
        self,
        filename: str,
        file_format: str,
        escape_digits: str = "",
        timeout: int = -1,
        offset: int | None = None,
        beep: bool = False,
        silence: int | None = None,
    ) -> AgiResult:
        """Record to ``filename``; ``timeout`` is in milliseconds, -1 for none."""

        command = f'RECORD FILE {filename} {file_format} "{escape_digits}" {timeout}'
        if offset is not None:
            command += f" {offset}"
        if beep:
            command += " BEEP"
        if silence is not None:
            command += f" s={silence}"
        return await self.evaluate(command)

    async def get_data(self, filename: str, timeout: int | None = None, max_digits: int | None = None) -> AgiResult:
        """Play ``filename`` and collect DTMF digits into ``result``.

        A timeout of 0 lets Asterisk use the channel default.
        """

        command = f"GET DATA {filename}"
        if timeout is not None or max_digits is not None:
            command += f" {timeout or 0}"
        if max_digits is not None:
            command += f" {max_digits}"
        return await self.evaluate(command)

    async def wait_for_digit(self, timeout: int = -1) -> AgiResult:
        return await self.evaluate(f"WAIT FOR DIGIT {timeout}")

    async def receive_char(self, timeout: int = -1) -> AgiResult:
        return await self.evaluate(f"RECEIVE CHAR {timeout}")

    async def send_text(self, text: str) -> AgiResult:
        return await self.evaluate("SEND TEXT %s", text)

    async def send_image(self, image: str) -> AgiResult:
        return await self.evaluate(f"SEND IMAGE {image}")

    async def menu(self, choices: Mapping[str, str], timeout: int = 2000) -> str | None:
        """Play prompt files until the caller picks one of the ``choices`` keys.

        Returns:
            The chosen key, or None if playback or input failed.
        """

        keys = "".join(choices)
        while True:
            for prompt in choices.values():
                played = await self.stream_file(prompt, keys)
                if played.code != AGIRES_OK or played.result == "-1":
                    return None
                if played.result not in (None, "0"):
                    return chr(played.result_int())

            pressed = await self.get_data("beep", timeout, 1)
            if pressed.code != AGIRES_OK or pressed.result == "-1":
                return None
            if pressed.result and pressed.result in keys:
                return pressed.result

    # --- Say ---

    async def say_alpha(self, text: str, escape_digits: str = "") -> AgiResult:
        return await self.evaluate("SAY ALPHA %s %s", text, escape_digits)

    async def say_digits(self, digits: int | str, escape_digits: str = "") -> AgiResult:
        return await self.evaluate("SAY DIGITS %s %s", digits, escape_digits)

    async def say_number(self, number: int, escape_digits: str = "") -> AgiResult:
        return await self.evaluate("SAY NUMBER %d %s", number, escape_digits)

    async def say_phonetic(self, text: str, escape_digits: str = "") -> AgiResult:
        return await self.evaluate("SAY PHONETIC %s %s", text, escape_digits)

    async def say_time(self, timestamp: int | None = None, escape_digits: str = "") -> AgiResult:
        if timestamp is None:
            timestamp = int(time.time())
        return await self.evaluate("SAY TIME %d %s", timestamp, escape_digits)

    # --- Fastpass prompt chains ---

    async def _fastpass(
        self,
        buffer: DigitBuffer,
        escape_digits: str,
        play: Callable[[], Awaitable[AgiResult]],
        **skipped_fields: str,
    ) -> AgiResult:
        # Skip the prompt once the caller has pressed one of its escape digits.
        if buffer.digits and (not escape_digits or buffer.last in escape_digits):
            code = str(ord(buffer.last))
            return AgiResult(code=AGIRES_OK, result=code, fields={"result": code, **skipped_fields})

        result = await play()
        buffer.push(result)
        return result

    async def fastpass_stream_file(
        self, buffer: DigitBuffer, filename: str, escape_digits: str = "", offset: int = 0
    ) -> AgiResult:
        return await self._fastpass(
            buffer, escape_digits, lambda: self.stream_file(filename, escape_digits, offset), endpos="0"
        )

    async def fastpass_say_digits(self, buffer: DigitBuffer, digits: int | str, escape_digits: str = "") -> AgiResult:
        return await self._fastpass(buffer, escape_digits, lambda: self.say_digits(digits, escape_digits))

    async def fastpass_say_number(self, buffer: DigitBuffer, number: int, escape_digits: str = "") -> AgiResult:
        return await self._fastpass(buffer, escape_digits, lambda: self.say_number(number, escape_digits))

    async def fastpass_say_phonetic(self, buffer: DigitBuffer, text: str, escape_digits: str = "") -> AgiResult:
        return await self._fastpass(buffer, escape_digits, lambda: self.say_phonetic(text, escape_digits))

    async def fastpass_say_time(
        self, buffer: DigitBuffer, timestamp: int | None = None, escape_digits: str = ""
    ) -> AgiResult:
        return await self._fastpass(buffer, escape_digits, lambda: self.say_time(timestamp, escape_digits))

    async def fastpass_get_data(
        self,
        buffer: DigitBuffer,
        filename: str,
        timeout: int | None = None,
        max_digits: int | None = None,
    ) -> AgiResult:
        """Collect digits into ``buffer``, playing ``filename`` only if nothing was pressed yet.

        With digits already buffered, the rest are read one at a time until
        ``max_digits`` is reached, ``#`` is pressed or the wait times out.
        ``result`` is the whole buffer.
        """

        if max_digits is None or len(buffer) < max_digits:
            if not buffer.digits:
                result = await self.get_data(filename, timeout, max_digits)
                if result.ok and result.result:
                    buffer.digits += result.result
                return result

            while max_digits is None or len(buffer) < max_digits:
                pressed = await self.wait_for_digit(-1 if timeout is None else timeout)
                if not pressed.ok:
                    return pressed
                code = pressed.result_int(default=0)
                if code <= 0 or chr(code) == "#":
                    break
                buffer.digits += chr(code)

        return AgiResult(code=AGIRES_OK, result=buffer.digits, fields={"result": buffer.digits})

    # --- Applications ---

    async def exec(self, application: str, options: Sequence[str | int] | str = ()) -> AgiResult:
        """Run a dialplan application; ``result`` is whatever it returns, -2 if unknown."""

        if isinstance(options, str):
            joined = options
        else:
            joined = OPTION_DELIMITER.join(str(option) for option in options)
        return await self.evaluate(f"EXEC {application} {joined}".rstrip())

    async def exec_dial(
        self,
        technology: str,
        identifier: str,
        timeout: int | None = None,
        options: str | None = None,
        url: str | None = None,
    ) -> AgiResult:
        args = [f"{technology}/{identifier}", timeout, options, url]
        # Dial() arguments are positional; keep empty slots for skipped ones.
        while args and args[-1] in (None, ""):
            args.pop()
        return await self.exec("Dial", ["" if arg is None else str(arg) for arg in args])

    async def exec_goto(self, *target: str | int) -> AgiResult:
        """Goto ``[[context,]extension,]priority``."""

        return await self.exec("Goto", list(target))

    async def exec_setlanguage(self, language: str = "en") -> AgiResult:
        return await self.exec("Set", [f"CHANNEL(language)={language}"])

    async def exec_absolutetimeout(self, seconds: int = 0) -> AgiResult:
        return await self.exec("Set", [f"TIMEOUT(absolute)={seconds}"])

    # --- Console ---

    async def noop(self, text: str = "") -> AgiResult:
        return await self.evaluate("NOOP %s", text)

    async def verbose(self, message: str, level: int = 1) -> AgiResult:
        """Log ``message`` on the Asterisk console, one VERBOSE command per line."""

        result = AgiResult(code=AGIRES_OK)
        for line in message.replace("\r\n", "\n").split("\n"):
            result = await self.evaluate("VERBOSE %s %d", line, level)
        return result

    async def conlog(self, message: str, level: int = 1) -> None:
        """Mirror ``message`` to the Asterisk console when ``agi_debug`` is enabled."""

        if get_settings().agi_debug:
            await self.verbose(message, level)
