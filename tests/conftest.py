from __future__ import annotations

import asyncio
import inspect
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

BANNER = "Asterisk Call Manager/5.0.1"


def ami_block(*lines: str) -> str:
    return "\r\n".join(lines) + "\r\n\r\n"


def default_responder(request: dict[str, str]) -> str:
    action = request.get("Action", "")
    action_id = request.get("ActionID", "")
    if action == "Login":
        if request.get("Secret") == "secret":
            return ami_block("Response: Success", f"ActionID: {action_id}", "Message: Authentication accepted")
        return ami_block("Response: Error", f"ActionID: {action_id}", "Message: Authentication failed")
    if action == "Logoff":
        return ami_block("Response: Goodbye", f"ActionID: {action_id}", "Message: Thanks for all the fish.")
    return ami_block("Response: Success", f"ActionID: {action_id}")


class FakeManager:
    """Scripted in-process AMI peer on 127.0.0.1.

    ``responder`` maps each parsed request to the raw text written back; it
    may be a coroutine function.
    """

    def __init__(self, responder=None, *, banner: str | None = BANNER) -> None:
        self.responder = responder or default_responder
        self.banner = banner
        self.requests: list[dict[str, str]] = []
        self.raw_requests: list[str] = []
        self._server: asyncio.Server | None = None
        self._writer: asyncio.StreamWriter | None = None

    async def start(self) -> str:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        host, port = self._server.sockets[0].getsockname()[:2]
        return f"{host}:{port}"

    async def push(self, text: str) -> None:
        assert self._writer is not None
        self._writer.write(text.encode("utf-8"))
        await self._writer.drain()

    async def drop(self) -> None:
        if self._writer is not None:
            self._writer.close()

    async def close(self) -> None:
        await self.drop()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    def actions(self) -> list[str]:
        return [request.get("Action", "") for request in self.requests]

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writer = writer
        if self.banner is not None:
            writer.write(f"{self.banner}\r\n".encode("utf-8"))
            await writer.drain()

        while True:
            try:
                raw = (await reader.readuntil(b"\r\n\r\n")).decode("utf-8")
            except (asyncio.IncompleteReadError, ConnectionError):
                break

            self.raw_requests.append(raw)
            request: dict[str, str] = {}
            for line in raw.strip().split("\r\n"):
                key, _, value = line.partition(":")
                request.setdefault(key.strip(), value.strip())
            self.requests.append(request)

            reply = self.responder(request)
            if inspect.isawaitable(reply):
                reply = await reply
            if reply:
                writer.write(reply.encode("utf-8"))
                try:
                    await writer.drain()
                except ConnectionError:
                    break


class RecordingWriter:
    """Stands in for ``asyncio.StreamWriter`` on the AGI command side."""

    def __init__(self) -> None:
        self.buffer = bytearray()
        self.closed = False

    @property
    def lines(self) -> list[str]:
        return self.buffer.decode("utf-8").splitlines()

    def write(self, data: bytes) -> None:
        self.buffer += data

    async def drain(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None

    def get_extra_info(self, name: str, default=None):
        return default


def feed_reader(*chunks: str, eof: bool = True) -> asyncio.StreamReader:
    """Return a reader pre-loaded with ``chunks``; call inside a running loop."""

    reader = asyncio.StreamReader()
    for chunk in chunks:
        reader.feed_data(chunk.encode("utf-8"))
    if eof:
        reader.feed_eof()
    return reader


@pytest.fixture()
def fake_manager():
    return FakeManager


@pytest.fixture(autouse=True)
def _fresh_settings():
    from config.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
