"""Asterisk Manager Interface (AMI) client.

One reader task per connection frames and parses everything the switch
sends. Events go to the ``EventDispatcher`` as soon as they arrive; replies
are routed to the request that registered their ActionID. Requests may be
pipelined: writes are serialized, waits are not.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Mapping
from typing import Any

from config.settings import get_settings
from telephony import ami_actions
from telephony.ami_message import ManagerMessage, format_request, parse_message
from telephony.correlation import PendingReplies
from telephony.errors import (
    AuthenticationError,
    ConnectionClosedError,
    HandshakeError,
    ReplyTimeoutError,
    TelephonyError,
    TransportError,
)
from telephony.events import EventDispatcher, EventHandler
from telephony.framing import LineFramer

LOGGER = logging.getLogger(__name__)


def split_server(server: str, default_port: int) -> tuple[str, int]:
    """Split ``host[:port]`` into its parts."""

    host, sep, port = server.rpartition(":")
    if not sep:
        return server, default_port
    return host, int(port)


class ManagerClient:
    """Asyncio AMI client.

    Usage::

        async with ManagerClient("pbx.example.com", username="admin", secret="s3cret") as ami:
            ami.add_event_handler("Hangup", on_hangup)
            reply = await ami.send_request("Ping")

    Event handlers run inside the reader task. A handler that needs to issue
    requests on the same client must schedule them (``asyncio.create_task``)
    instead of awaiting them, or the reader would wait on itself.
    """

    def __init__(
        self,
        server: str | None = None,
        *,
        username: str | None = None,
        secret: str | None = None,
        events: str | None = None,
        request_timeout: float | None = None,
        connect_timeout: float | None = None,
        dispatcher: EventDispatcher | None = None,
    ) -> None:
        settings = get_settings()
        self.server, self.port = split_server(server or settings.ami_host, settings.ami_port)
        self._username = username or settings.ami_username
        self._secret = secret if secret is not None else settings.ami_secret
        self._events = events if events is not None else settings.ami_events
        self._request_timeout = request_timeout if request_timeout is not None else settings.ami_request_timeout
        self._connect_timeout = connect_timeout if connect_timeout is not None else settings.ami_connect_timeout

        self.dispatcher = dispatcher or EventDispatcher()
        self.banner: str | None = None

        self._pending = PendingReplies()
        self._write_lock = asyncio.Lock()
        self._writer: asyncio.StreamWriter | None = None
        self._framer: LineFramer | None = None
        self._reader_task: asyncio.Task | None = None
        self._reader_error: TelephonyError | None = None
        self._logged_in = False

    # --- Connection lifecycle ---

    async def __aenter__(self) -> ManagerClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    @property
    def is_connected(self) -> bool:
        return (
            self._writer is not None
            and self._reader_task is not None
            and not self._reader_task.done()
        )

    @property
    def logged_in(self) -> bool:
        return self._logged_in

    async def connect(
        self,
        server: str | None = None,
        username: str | None = None,
        secret: str | None = None,
    ) -> None:
        """Open the socket, read the banner and log in.

        Raises:
            TransportError: If the socket cannot be opened.
            HandshakeError: If no banner line is received.
            AuthenticationError: If the Login action is refused.
        """

        if server is not None:
            self.server, self.port = split_server(server, self.port)
        username = username or self._username
        secret = secret if secret is not None else self._secret
        if not username or secret is None:
            raise ValueError("AMI_USERNAME/AMI_SECRET not configured")

        await self.disconnect()

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.server, self.port),
                timeout=self._connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            raise TransportError(
                f"Unable to connect to manager {self.server}:{self.port}: {exc}"
            ) from exc

        self._writer = writer
        self._framer = LineFramer(reader)

        try:
            self.banner = await asyncio.wait_for(self._framer.read_line(), timeout=self._connect_timeout)
        except (TelephonyError, asyncio.TimeoutError) as exc:
            await self._close_transport()
            raise HandshakeError() from exc
        if not self.banner.strip():
            await self._close_transport()
            raise HandshakeError()

        LOGGER.info("Connected to manager %s:%s (%s)", self.server, self.port, self.banner)
        self._reader_error = None
        self._reader_task = asyncio.create_task(self._read_loop(), name=f"ami-reader-{self.server}:{self.port}")

        try:
            reply = await self.login(username, secret, events=self._events)
        except TelephonyError:
            await self.disconnect()
            raise

        if not reply.is_success:
            LOGGER.warning("Failed to login as %s: %s", username, reply.get("Message"))
            await self.disconnect()
            raise AuthenticationError(reply.get("Message"))

        self._logged_in = True

    async def disconnect(self) -> None:
        """Log off (only after a successful login) and close the socket."""

        if self._logged_in and self.is_connected:
            try:
                await self.logoff()
            except TelephonyError as exc:
                LOGGER.warning("Logoff failed: %s", exc)
        self._logged_in = False
        await self._close_transport()

    async def listen(self, timeout: float | None = None) -> None:
        """Passively dispatch events until the connection ends or ``timeout`` elapses.

        Raises:
            TransportError, FramingError: If the connection was lost abnormally.
        """

        task = self._reader_task
        if task is None:
            raise TransportError("Not connected")

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            return

        if self._reader_error is not None and not isinstance(self._reader_error, ConnectionClosedError):
            raise self._reader_error

    # --- Event handlers ---

    def add_event_handler(self, event: str, handler: EventHandler) -> bool:
        """Register ``handler`` for ``event`` (case-insensitive) or ``*``."""

        return self.dispatcher.register(event, handler)

    def remove_event_handler(self, event: str, handler: EventHandler | None = None) -> bool:
        return self.dispatcher.unregister(event, handler)

    # --- Requests ---

    async def send_request(
        self,
        action: str,
        parameters: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> ManagerMessage:
        """Send an action and wait for its correlated reply.

        An ``ActionID`` is generated unless ``parameters`` already holds one.
        Replies that open an EventList are returned once the list completes,
        with the interior messages in ``events``.

        Raises:
            TransportError: If the request cannot be written or the connection drops.
            ReplyTimeoutError: If no correlated reply arrives within ``timeout``.
        """

        wire, action_id = format_request(action, parameters)
        writer = self._require_writer()

        future = self._pending.expect(action_id)
        try:
            async with self._write_lock:
                writer.write(wire.encode("utf-8"))
                await writer.drain()
        except OSError as exc:
            self._pending.abandon(action_id)
            raise TransportError(f"Send failed: {exc}") from exc
        except BaseException:
            # Cancelled before the request reached the wire.
            self._pending.abandon(action_id)
            raise

        LOGGER.debug("Sent %s (ActionID %s)", action, action_id)
        return await self._wait(future, action_id, timeout)

    async def send_action(
        self, action: ami_actions.ManagerAction, *, timeout: float | None = None
    ) -> ManagerMessage:
        return await self.send_request(action.action, action.to_fields(), timeout=timeout)

    async def await_reply(self, action_id: str | None = None, *, timeout: float | None = None) -> ManagerMessage:
        """Wait for the reply correlated with ``action_id``.

        Without an id, the very next message is returned, whatever it is.
        """

        self._require_writer()
        if action_id is None:
            future = self._pending.next_message()
            try:
                return await asyncio.wait_for(future, self._request_timeout if timeout is None else timeout)
            except asyncio.TimeoutError as exc:
                raise ReplyTimeoutError() from exc

        return await self._wait(self._pending.expect(action_id), action_id, timeout)

    # --- Actions ---

    async def login(self, username: str, secret: str, *, events: str | None = None) -> ManagerMessage:
        return await self.send_action(ami_actions.Login(username=username, secret=secret, events=events))

    async def logoff(self) -> bool:
        reply = await self.send_action(ami_actions.Logoff())
        return (reply.response or "").lower() == "goodbye"

    async def ping(self) -> ManagerMessage:
        return await self.send_action(ami_actions.Ping())

    async def command(self, command: str, action_id: str | None = None) -> ManagerMessage:
        """Run a CLI command; the output is in the reply's ``data``."""

        return await self.send_action(ami_actions.Command(command=command, action_id=action_id))

    async def events(self, event_mask: str) -> ManagerMessage:
        return await self.send_action(ami_actions.Events(event_mask=event_mask))

    async def originate(self, channel: str, **fields: Any) -> ManagerMessage:
        return await self.send_action(ami_actions.Originate(channel=channel, **fields))

    async def hangup(self, channel: str, cause: int | None = None) -> ManagerMessage:
        return await self.send_action(ami_actions.Hangup(channel=channel, cause=cause))

    async def getvar(self, variable: str, channel: str | None = None) -> ManagerMessage:
        return await self.send_action(ami_actions.Getvar(variable=variable, channel=channel))

    async def setvar(self, variable: str, value: str, channel: str | None = None) -> ManagerMessage:
        return await self.send_action(ami_actions.Setvar(variable=variable, value=value, channel=channel))

    async def status(self, channel: str | None = None, variables: str | None = None) -> ManagerMessage:
        return await self.send_action(ami_actions.Status(channel=channel, variables=variables))

    async def queue_status(self, queue: str | None = None, member: str | None = None) -> ManagerMessage:
        return await self.send_action(ami_actions.QueueStatus(queue=queue, member=member))

    async def db_get(self, family: str, key: str) -> str | None:
        """Return the AstDB value, or None if the key does not exist."""

        reply = await self.send_action(ami_actions.DBGet(family=family, key=key))
        if not reply.is_success:
            return None
        for event in reply.events:
            if (event.event_name or "").lower() == "dbgetresponse":
                return event.get("Val")
        return reply.get("Val")

    async def db_put(self, family: str, key: str, value: str) -> bool:
        reply = await self.send_action(ami_actions.DBPut(family=family, key=key, val=value))
        return reply.is_success

    # --- Internal I/O ---

    def _require_writer(self) -> asyncio.StreamWriter:
        if self._reader_error is not None:
            raise self._reader_error
        if self._writer is None or not self.is_connected:
            raise TransportError("Not connected")
        return self._writer

    async def _wait(
        self,
        future: asyncio.Future[ManagerMessage],
        action_id: str,
        timeout: float | None,
    ) -> ManagerMessage:
        try:
            return await asyncio.wait_for(future, self._request_timeout if timeout is None else timeout)
        except asyncio.TimeoutError as exc:
            self._pending.abandon(action_id)
            raise ReplyTimeoutError(action_id) from exc
        except asyncio.CancelledError:
            self._pending.abandon(action_id)
            raise

    async def _read_loop(self) -> None:
        framer = self._framer
        if framer is None:
            return

        try:
            while True:
                message = parse_message(await framer.read_block())
                await self._handle_message(message)
        except ConnectionClosedError as exc:
            LOGGER.info("Manager %s:%s closed the connection", self.server, self.port)
            self._reader_error = exc
            self._pending.fail_all(exc)
        except TelephonyError as exc:
            LOGGER.error("Manager connection to %s:%s lost: %s", self.server, self.port, exc)
            self._reader_error = exc
            self._pending.fail_all(exc)

    async def _handle_message(self, message: ManagerMessage) -> None:
        kind = message.kind
        if kind == "unhandled":
            LOGGER.warning("Unhandled response packet from Manager: %s", message.headers)
            return

        if kind == "event":
            await self.dispatcher.dispatch(message, self.server, self.port)

        consumed = self._pending.feed(message)
        if not consumed and kind == "response":
            LOGGER.warning(
                "Dropping reply for unknown or abandoned ActionID %s: %s",
                message.action_id,
                message.response,
            )

    async def _close_transport(self) -> None:
        task, self._reader_task = self._reader_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._pending.fail_all(ConnectionClosedError())

        writer, self._writer = self._writer, None
        self._framer = None
        if writer is not None:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()
