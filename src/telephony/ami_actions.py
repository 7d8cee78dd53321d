"""Typed records for Asterisk Manager actions.

Each action is a pydantic model whose fields map onto AMI headers. Field
names are snake_case in Python and PascalCase on the wire; the few headers
Asterisk spells differently carry an explicit alias. ``to_fields()`` is the
only serialization path and feeds ``ManagerClient.send_request``.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal


class ManagerAction(BaseModel):
    """Base record: action name plus an optional correlation id."""

    model_config = ConfigDict(
        alias_generator=to_pascal,
        populate_by_name=True,
        extra="forbid",
    )

    action: ClassVar[str]

    action_id: str | None = Field(default=None, alias="ActionID")

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Login(ManagerAction):
    action: ClassVar[str] = "Login"

    username: str
    secret: str
    events: str | None = None


class Logoff(ManagerAction):
    action: ClassVar[str] = "Logoff"


class Ping(ManagerAction):
    action: ClassVar[str] = "Ping"


class Command(ManagerAction):
    """Run a CLI command; output comes back in the reply's ``data``."""

    action: ClassVar[str] = "Command"

    command: str


class Events(ManagerAction):
    action: ClassVar[str] = "Events"

    event_mask: str


class Originate(ManagerAction):
    action: ClassVar[str] = "Originate"

    channel: str
    exten: str | None = None
    context: str | None = None
    priority: int | None = None
    application: str | None = None
    data: str | None = None
    timeout: int | None = Field(default=None, description="Milliseconds to wait for an answer.")
    caller_id: str | None = Field(default=None, alias="CallerID")
    account: str | None = None
    early_media: bool | None = None
    is_async: bool | None = Field(default=None, alias="Async")
    codecs: str | None = None
    variables: list[str] | None = Field(
        default=None,
        alias="Variable",
        description="NAME=value pairs, one Variable header each.",
    )


class Hangup(ManagerAction):
    action: ClassVar[str] = "Hangup"

    channel: str
    cause: int | None = None


class Getvar(ManagerAction):
    action: ClassVar[str] = "Getvar"

    variable: str
    channel: str | None = None


class Setvar(ManagerAction):
    action: ClassVar[str] = "Setvar"

    variable: str
    value: str
    channel: str | None = None


class Status(ManagerAction):
    """Channel status; replies with an EventList of ``Status`` events."""

    action: ClassVar[str] = "Status"

    channel: str | None = None
    variables: str | None = None
    all_variables: bool | None = None


class QueueStatus(ManagerAction):
    action: ClassVar[str] = "QueueStatus"

    queue: str | None = None
    member: str | None = None


class QueueAdd(ManagerAction):
    action: ClassVar[str] = "QueueAdd"

    queue: str
    interface: str
    penalty: int | None = None
    paused: bool | None = None
    member_name: str | None = None
    state_interface: str | None = None


class QueueRemove(ManagerAction):
    action: ClassVar[str] = "QueueRemove"

    queue: str
    interface: str


class Redirect(ManagerAction):
    action: ClassVar[str] = "Redirect"

    channel: str
    exten: str
    context: str
    priority: int
    extra_channel: str | None = None
    extra_exten: str | None = None
    extra_context: str | None = None
    extra_priority: int | None = None


class AbsoluteTimeout(ManagerAction):
    action: ClassVar[str] = "AbsoluteTimeout"

    channel: str
    timeout: int


class ExtensionState(ManagerAction):
    action: ClassVar[str] = "ExtensionState"

    exten: str
    context: str


class MailboxCount(ManagerAction):
    action: ClassVar[str] = "MailboxCount"

    mailbox: str


class MailboxStatus(ManagerAction):
    action: ClassVar[str] = "MailboxStatus"

    mailbox: str


class DBGet(ManagerAction):
    action: ClassVar[str] = "DBGet"

    family: str
    key: str


class DBPut(ManagerAction):
    action: ClassVar[str] = "DBPut"

    family: str
    key: str
    val: str


class DBDel(ManagerAction):
    action: ClassVar[str] = "DBDel"

    family: str
    key: str


class CoreShowChannels(ManagerAction):
    action: ClassVar[str] = "CoreShowChannels"
