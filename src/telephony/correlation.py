"""Routing of AMI replies to the requests waiting for them.

A single reader task feeds every parsed message into ``PendingReplies``.
Requests register their ActionID before writing, then await the returned
future. Replies opening an ``EventList`` are held back until the list
completes; the terminal message is delivered with the interior messages
attached as ``events``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from telephony.ami_message import ManagerMessage

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PendingReply:
    future: asyncio.Future[ManagerMessage]
    collecting: bool = False
    events: list[ManagerMessage] = field(default_factory=list)


class PendingReplies:
    """ActionID-keyed table of outstanding requests."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingReply] = {}
        self._next_waiters: list[asyncio.Future[ManagerMessage]] = []

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._pending

    def expect(self, action_id: str) -> asyncio.Future[ManagerMessage]:
        """Register a request; must be called before the request is written."""

        if action_id in self._pending:
            raise ValueError(f"ActionID {action_id} already has a pending request")
        future: asyncio.Future[ManagerMessage] = asyncio.get_running_loop().create_future()
        self._pending[action_id] = PendingReply(future=future)
        return future

    def next_message(self) -> asyncio.Future[ManagerMessage]:
        """Return a future resolved with the next message, whatever it is."""

        future: asyncio.Future[ManagerMessage] = asyncio.get_running_loop().create_future()
        self._next_waiters.append(future)
        return future

    def abandon(self, action_id: str) -> None:
        entry = self._pending.pop(action_id, None)
        if entry is not None and not entry.future.done():
            entry.future.cancel()
        if entry is not None:
            LOGGER.debug("Abandoned ActionID %s", action_id)

    def feed(self, message: ManagerMessage) -> bool:
        """Offer a parsed message; return True if a waiter consumed it."""

        waiters, self._next_waiters = self._next_waiters, []
        consumed = False
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(message)
                consumed = True

        action_id = message.action_id
        if not action_id:
            return consumed

        entry = self._pending.get(action_id)
        if entry is None:
            return consumed
        if entry.future.done():
            # The waiter gave up (timeout or cancellation) before we got here.
            del self._pending[action_id]
            return consumed

        if not entry.collecting:
            # Events sharing the ActionID (e.g. OriginateResponse) are never the reply itself.
            if message.kind == "event":
                return consumed
            if message.starts_event_list:
                entry.collecting = True
                return True
            self._resolve(action_id, message)
            return True

        if message.completes_event_list:
            message.events = entry.events
            self._resolve(action_id, message)
        else:
            entry.events.append(message)
        return True

    def fail_all(self, exc: BaseException) -> None:
        """Fail every waiter, e.g. when the connection is lost."""

        entries, self._pending = self._pending, {}
        waiters, self._next_waiters = self._next_waiters, []
        for entry in entries.values():
            if not entry.future.done():
                entry.future.set_exception(exc)
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(exc)

    def _resolve(self, action_id: str, message: ManagerMessage) -> None:
        entry = self._pending.pop(action_id)
        entry.future.set_result(message)
