"""Asterisk Manager (AMI) message parsing and request serialization."""

from __future__ import annotations

import secrets
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Final, Literal

CRLF: Final[str] = "\r\n"

ACTION_ID: Final[str] = "ActionID"
EVENTLIST_START: Final[str] = "start"
EVENTLIST_COMPLETE: Final[str] = "complete"

# Legacy "Response: Follows" command output is a raw chunk ending with this marker.
END_COMMAND_MARKER: Final[str] = "--END COMMAND--"

MessageKind = Literal["event", "response", "unhandled"]


@dataclass(slots=True)
class ManagerMessage:
    """One AMI unit: ordered headers plus the synthesized ``data`` and ``events``.

    Repeated header keys are joined with a newline in arrival order.
    """

    headers: dict[str, str] = field(default_factory=dict)
    data: str | None = None
    events: list[ManagerMessage] = field(default_factory=list)

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.headers.get(key, default)

    def __getitem__(self, key: str) -> str:
        return self.headers[key]

    def __contains__(self, key: object) -> bool:
        return key in self.headers

    @property
    def kind(self) -> MessageKind:
        if "Event" in self.headers:
            return "event"
        if "Response" in self.headers:
            return "response"
        return "unhandled"

    @property
    def event_name(self) -> str | None:
        return self.headers.get("Event")

    @property
    def response(self) -> str | None:
        return self.headers.get("Response")

    @property
    def action_id(self) -> str | None:
        return self.headers.get(ACTION_ID)

    @property
    def is_success(self) -> bool:
        return (self.response or "").lower() == "success"

    @property
    def starts_event_list(self) -> bool:
        return (self.headers.get("EventList") or "").lower() == EVENTLIST_START

    @property
    def completes_event_list(self) -> bool:
        return (self.headers.get("EventList") or "").lower() == EVENTLIST_COMPLETE


def parse_message(raw: str) -> ManagerMessage:
    """Parse a framed AMI block (terminator already removed)."""

    headers: dict[str, str] = {}
    legacy_output: str | None = None

    for line in raw.split(CRLF):
        if END_COMMAND_MARKER in line:
            legacy_output = line[: line.index(END_COMMAND_MARKER)].rstrip("\n")
            continue
        if not line.strip():
            continue

        key, _, value = line.partition(":")
        key = key.strip()
        value = value.strip()
        if key in headers:
            headers[key] = f"{headers[key]}\n{value}"
        else:
            headers[key] = value

    message = ManagerMessage(headers=headers)
    if message.kind == "response":
        message.data = legacy_output if legacy_output is not None else headers.get("Output", "")
    return message


def new_action_id() -> str:
    """Return a random ``A`` + 6 digit correlation id (best-effort unique)."""

    return f"A{secrets.randbelow(1_000_000):06d}"


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    if "\n" in text or "\r" in text:
        raise ValueError(f"AMI header values may not contain line breaks: {text!r}")
    return text


def format_request(action: str, parameters: Mapping[str, Any] | None = None) -> tuple[str, str]:
    """Serialize an action into its wire form.

    Sequence values become one header line per element; ``None`` values are
    omitted. A generated ``ActionID`` is appended unless a parameter key
    matches it case-insensitively.

    Returns:
        The request text (blank-line terminated) and the ActionID in use.
    """

    lines = [f"Action: {format_value(action)}"]
    action_id: str | None = None

    for key, value in (parameters or {}).items():
        if value is None:
            continue
        if isinstance(value, Iterable) and not isinstance(value, (str, bytes)):
            for item in value:
                if item is not None:
                    lines.append(f"{key}: {format_value(item)}")
            continue

        lines.append(f"{key}: {format_value(value)}")
        if key.lower() == ACTION_ID.lower():
            action_id = format_value(value)

    if action_id is None:
        action_id = new_action_id()
        lines.append(f"{ACTION_ID}: {action_id}")

    return CRLF.join(lines) + CRLF + CRLF, action_id
