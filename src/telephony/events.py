"""Registry and dispatch of unsolicited AMI events."""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Callable
from typing import Any, Final

from telephony.ami_message import ManagerMessage

LOGGER = logging.getLogger(__name__)

WILDCARD: Final[str] = "*"

# handler(event_name, message, server, port); may return an awaitable.
EventHandler = Callable[[str, ManagerMessage, str, int], Any]


class EventDispatcher:
    """Maps lower-cased event names (or ``*``) to ordered handler lists.

    Handlers for the exact event name take precedence; the ``*`` handlers
    only run for events without a dedicated registration.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._lock = threading.Lock()

    def register(self, event: str, handler: EventHandler) -> bool:
        key = event.lower()
        with self._lock:
            self._handlers.setdefault(key, []).append(handler)
        return True

    def unregister(self, event: str, handler: EventHandler | None = None) -> bool:
        """Remove one handler, or every handler of ``event`` when none is given."""

        key = event.lower()
        with self._lock:
            handlers = self._handlers.get(key)
            if handlers is None:
                LOGGER.info("%s handlers are not defined.", key)
                return False

            if handler is None:
                del self._handlers[key]
                return True

            try:
                handlers.remove(handler)
            except ValueError:
                LOGGER.info("Handler %r is not registered for %s.", handler, key)
                return False
            if not handlers:
                del self._handlers[key]
            return True

    def handlers_for(self, event: str) -> tuple[EventHandler, ...]:
        key = event.lower()
        with self._lock:
            return tuple(self._handlers.get(key) or self._handlers.get(WILDCARD) or ())

    async def dispatch(self, message: ManagerMessage, server: str, port: int) -> int:
        """Invoke the handlers for ``message`` in registration order.

        Returns:
            The number of handlers that ran to completion.
        """

        name = (message.event_name or "").lower()
        LOGGER.debug("Got event.. %s", name)

        handlers = self.handlers_for(name)
        if not handlers:
            LOGGER.debug("No event handler for event '%s'", name)
            return 0

        completed = 0
        for handler in handlers:
            if not callable(handler):
                LOGGER.warning("Skipping non-callable handler %r for event '%s'", handler, name)
                continue

            try:
                result = handler(name, message, server, port)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                LOGGER.exception("Event handler %r failed for event '%s'", handler, name)
                continue
            completed += 1
        return completed
