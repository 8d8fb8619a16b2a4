"""
Pytest configuration and shared fixtures for electrumx_client tests.

This module provides:
- Custom pytest markers for test categorization
- An in-memory socket and a scripted ElectrumX server used instead of real
  network connections
- Small async helpers for timer-driven tests
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import pytest

from electrumx_client.exceptions import RpcChannelClosedError, RpcTransportError
from electrumx_client.transport import SimpleSocket


def pytest_configure(config: pytest.Config) -> None:
    """
    Register custom pytest markers.

    This function is called during pytest initialization to register
    custom markers that can be used to categorize and filter tests.
    """
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (timer-driven tests with real delays)",
    )
    config.addinivalue_line(
        "markers",
        "network: mark test as network test (uses local sockets)",
    )


# ============================================================================
# In-memory transport
# ============================================================================

_EOF = object()

# handler result meaning "never answer this request"
NO_REPLY = object()


class FakeSocket(SimpleSocket):
    """
    SimpleSocket backed by a queue.

    Every request sent through the socket is passed to ``responder``; the
    returned response dict (if any) is queued for ``recv``. Batches are
    answered with a single list, like ElectrumX does.
    """

    def __init__(self, responder: Callable[[dict[str, Any]], Any] | None = None) -> None:
        self.sent: list[Any] = []
        self.responder = responder
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: Any) -> None:
        if self._closed:
            raise RpcChannelClosedError("Cannot send on closed socket")
        self.sent.append(message)
        if self.responder is None:
            return

        if isinstance(message, list):
            replies = [self.responder(item) for item in message]
            replies = [reply for reply in replies if reply is not None]
            if replies:
                self.push(replies)
        else:
            reply = self.responder(message)
            if reply is not None:
                self.push(reply)

    async def recv(self) -> Any:
        item = await self._incoming.get()
        if item is _EOF:
            raise RpcChannelClosedError("Connection closed by server")
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._incoming.put_nowait(_EOF)

    def push(self, message: Any) -> None:
        """Queue a message as if the server had sent it."""
        self._incoming.put_nowait(message)

    def drop(self) -> None:
        """Simulate the server closing the connection."""
        self._incoming.put_nowait(_EOF)

    def sent_methods(self) -> list[str]:
        methods = []
        for message in self.sent:
            items = message if isinstance(message, list) else [message]
            methods.extend(item["method"] for item in items)
        return methods


class FakeElectrumServer:
    """
    Scripted ElectrumX server handing out FakeSockets.

    ``handlers`` maps method names to functions of the params list; a handler
    may return NO_REPLY to leave the request unanswered, or raise
    ``RemoteFailure`` to answer with a JSON-RPC error.
    """

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.connect_attempts = 0
        self.refuse = False
        self.handlers: dict[str, Callable[[list[Any]], Any]] = {
            "server.version": lambda params: ["ElectrumX 1.16.0", params[1]],
            "server.ping": lambda params: None,
        }

    async def open(self) -> FakeSocket:
        self.connect_attempts += 1
        if self.refuse:
            raise RpcTransportError("Could not connect: connection refused")
        sock = FakeSocket(self.respond)
        self.sockets.append(sock)
        return sock

    @property
    def current(self) -> FakeSocket:
        return self.sockets[-1]

    def respond(self, request: dict[str, Any]) -> dict[str, Any] | None:
        handler = self.handlers.get(request["method"], lambda params: {"echo": params})
        try:
            result = handler(request.get("params", []))
        except RemoteFailure as e:
            return {
                "jsonrpc": "2.0",
                "id": request["id"],
                "error": {"code": e.code, "message": e.message},
            }
        if result is NO_REPLY:
            return None
        return {"jsonrpc": "2.0", "id": request["id"], "result": result}

    def notify(self, method: str, params: Any) -> None:
        self.current.push({"jsonrpc": "2.0", "method": method, "params": params})


class RemoteFailure(Exception):
    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


# ============================================================================
# Shared Fixtures
# ============================================================================


@pytest.fixture
def electrum_server() -> FakeElectrumServer:
    """Create a scripted server with default handshake and ping handlers."""
    return FakeElectrumServer()


async def wait_until(
    predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.005
) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail(f"condition not met within {timeout}s")
        await asyncio.sleep(interval)


async def hang_forever() -> Any:
    await asyncio.Event().wait()
    raise AssertionError("unreachable")
