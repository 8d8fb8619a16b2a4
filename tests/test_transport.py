"""
Tests for the newline-delimited JSON transport over local TCP sockets.

This test module covers:
- Round trips of single and batch messages
- Peer close and oversized lines
- Connection failures
"""

from __future__ import annotations

import asyncio
import json

import pytest
import pytest_asyncio

from electrumx_client.config import ServerConfig
from electrumx_client.exceptions import (
    RpcChannelClosedError,
    RpcMessageTooLargeError,
    RpcTransportError,
)
from electrumx_client.schemas import JsonRpcRequest
from electrumx_client.transport import JsonStreamSocket, open_socket

pytestmark = pytest.mark.network


class LineServer:
    """Local TCP server that records lines and sends scripted replies."""

    def __init__(self) -> None:
        self.received: list[object] = []
        self.replies: asyncio.Queue[bytes | None] = asyncio.Queue()
        self.server: asyncio.base_events.Server | None = None
        self.port = 0

    async def start(self) -> None:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]

    async def _handle(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        reading = asyncio.create_task(self._read(reader))
        try:
            while True:
                reply = await self.replies.get()
                if reply is None:
                    break
                writer.write(reply)
                await writer.drain()
        finally:
            reading.cancel()
            writer.close()

    async def _read(self, reader: asyncio.StreamReader) -> None:
        while True:
            line = await reader.readline()
            if not line:
                return
            self.received.append(json.loads(line))

    async def stop(self) -> None:
        self.replies.put_nowait(None)
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()


@pytest_asyncio.fixture
async def line_server() -> LineServer:
    server = LineServer()
    await server.start()
    yield server
    await server.stop()


def local(port: int) -> ServerConfig:
    return ServerConfig("127.0.0.1", port, protocol="tcp", open_timeout=2.0)


# ============================================================================
# Round Trip
# ============================================================================


class TestRoundTrip:
    """Test sending and receiving JSON lines."""

    @pytest.mark.asyncio
    async def test_send_and_recv(self, line_server: LineServer) -> None:
        """
        Verifies that:
        - open_socket returns a JsonStreamSocket for "tcp"
        - Dicts, batches and pydantic models are sent as one line each
        - A reply line is decoded
        """
        sock = await open_socket(local(line_server.port))
        assert isinstance(sock, JsonStreamSocket)

        await sock.send({"jsonrpc": "2.0", "id": 1, "method": "server.ping", "params": []})
        await sock.send([{"jsonrpc": "2.0", "id": 2, "method": "server.banner", "params": []}])
        await sock.send(JsonRpcRequest(id=3, method="server.features", params=[]))

        line_server.replies.put_nowait(b'{"jsonrpc": "2.0", "id": 1, "result": null}\n')
        reply = await asyncio.wait_for(sock.recv(), timeout=2.0)
        assert reply == {"jsonrpc": "2.0", "id": 1, "result": None}

        for _ in range(200):
            if len(line_server.received) == 3:
                break
            await asyncio.sleep(0.01)

        first, batch, model = line_server.received
        assert first["method"] == "server.ping"
        assert isinstance(batch, list) and batch[0]["id"] == 2
        assert model["method"] == "server.features"
        assert model["id"] == 3

        await sock.close()
        await sock.close()
        assert sock.closed

    @pytest.mark.asyncio
    async def test_peer_close(self, line_server: LineServer) -> None:
        """
        Verifies that:
        - EOF from the server raises RpcChannelClosedError
        """
        sock = await open_socket(local(line_server.port))

        line_server.replies.put_nowait(None)

        with pytest.raises(RpcChannelClosedError):
            await asyncio.wait_for(sock.recv(), timeout=2.0)
        await sock.close()

    @pytest.mark.asyncio
    async def test_oversized_line(self, line_server: LineServer) -> None:
        """
        Verifies that:
        - A line longer than max_message_size raises RpcMessageTooLargeError
        """
        sock = await open_socket(local(line_server.port), max_message_size=64)

        payload = json.dumps({"jsonrpc": "2.0", "id": 1, "result": "x" * 200})
        line_server.replies.put_nowait(payload.encode() + b"\n")

        with pytest.raises(RpcMessageTooLargeError):
            await asyncio.wait_for(sock.recv(), timeout=2.0)
        await sock.close()


# ============================================================================
# Connection Failures
# ============================================================================


class TestConnectionFailures:
    """Test sockets that cannot be opened."""

    @pytest.mark.asyncio
    async def test_refused(self) -> None:
        """
        Verifies that:
        - A refused connection is reported as RpcTransportError
        """
        probe = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = probe.sockets[0].getsockname()[1]
        probe.close()
        await probe.wait_closed()

        with pytest.raises(RpcTransportError):
            await open_socket(local(port))
