from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
from collections.abc import Awaitable, Callable

from config.settings import get_settings
from telephony.agi_commands import AgiSession
from telephony.errors import TelephonyError

LOGGER = logging.getLogger(__name__)

AgiHandler = Callable[[AgiSession], Awaitable[None]]


class FastAgiServer:
    """TCP listener for ``AGI(agi://host[:port]/<script>)`` dialplan calls.

    Each connection gets its own ``AgiSession``; the script name selects the
    handler registered with ``route``.
    """

    def __init__(self, host: str | None = None, port: int | None = None) -> None:
        settings = get_settings()
        self.host = host or settings.fastagi_host
        self.port = port if port is not None else settings.fastagi_port
        self._routes: dict[str, AgiHandler] = {}
        self._server: asyncio.Server | None = None

    @property
    def sockets(self) -> list[tuple[str, int]]:
        if self._server is None:
            return []
        return [sock.getsockname()[:2] for sock in self._server.sockets]

    def route(self, name: str) -> Callable[[AgiHandler], AgiHandler]:
        def decorator(handler: AgiHandler) -> AgiHandler:
            self.add_route(name, handler)
            return handler

        return decorator

    def add_route(self, name: str, handler: AgiHandler) -> None:
        self._routes[name.strip("/")] = handler

    async def start(self) -> asyncio.Server:
        self._server = await asyncio.start_server(self._handle_connection, self.host, self.port)
        LOGGER.info("FastAGI server listening on %s", self.sockets)
        return self._server

    async def close(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None

    async def run_forever(self) -> None:
        server = await self.start()
        async with server:
            await server.serve_forever()

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        session = AgiSession(reader, writer)
        try:
            environment = await session.read_environment()
            script = environment.network_script or ""
            handler = self._routes.get(script)
            if handler is None:
                LOGGER.warning("No FastAGI handler for script %r from %s", script, peer)
                return

            LOGGER.info("FastAGI %s for %s (%s)", script, environment.channel, peer)
            await handler(session)
        except TelephonyError as exc:
            LOGGER.warning("FastAGI session from %s ended: %s", peer, exc)
        except Exception:
            LOGGER.exception("FastAGI handler failed for %s", peer)
        finally:
            await session.close()


def load_server(target: str) -> FastAgiServer:
    """Import ``package.module:attribute`` and return the server it names."""

    module_name, _, attribute = target.partition(":")
    module = importlib.import_module(module_name)
    server = getattr(module, attribute or "server")
    if not isinstance(server, FastAgiServer):
        raise TypeError(f"{target} is not a FastAgiServer")
    return server


def _parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="FastAGI server for Asterisk AGI() calls")
    parser.add_argument("app", help="Server to run, as 'package.module:attribute'")
    parser.add_argument("--host", default=settings.fastagi_host)
    parser.add_argument("--port", type=int, default=settings.fastagi_port)
    return parser.parse_args()


async def _amain() -> None:
    args = _parse_args()
    server = load_server(args.app)
    server.host, server.port = args.host, args.port
    await server.run_forever()


def main() -> None:
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(_amain())


if __name__ == "__main__":
    main()
