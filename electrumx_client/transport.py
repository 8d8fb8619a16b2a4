"""
Socket wrappers that give the RPC channel a common JSON send/recv interface.

ElectrumX serves the same JSON-RPC protocol over several transports:

- "tcp" / "tls": one JSON document (object or batch array) per line
- "ws" / "wss": one JSON document per WebSocket text frame

Both are exposed through ``SimpleSocket`` so the channel never needs to know
which one it is talking to.
"""

from __future__ import annotations

import asyncio
import json
import ssl
from abc import ABC, abstractmethod
from contextlib import suppress
from typing import TYPE_CHECKING, Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .exceptions import (
    RpcChannelClosedError,
    RpcMessageTooLargeError,
    RpcTransportError,
)
from .logger import get_logger
from .utils import pydantic_serialize

if TYPE_CHECKING:
    from .config import ServerConfig

logger = get_logger(__name__)

# Default maximum message size: 10MB
DEFAULT_MAX_MESSAGE_SIZE = 10 * 1024 * 1024  # 10 MB

LINE_TERMINATOR = b"\n"


class SimpleSocket(ABC):
    """
    Abstract base class for the sockets used by RpcChannel.

    Implementations own framing and JSON (de)serialization: ``send`` takes a
    dict, a list of dicts (batch) or a pydantic model, ``recv`` returns the
    decoded JSON document.

    Notes
    -----
    Subclasses must implement send(), recv() and close(). ``recv`` must raise
    RpcChannelClosedError when the peer closes the connection.
    """

    @property
    def closed(self) -> bool:
        """
        Check if the connection is closed.

        Returns
        -------
        bool
            True if the socket is closed, False otherwise.
        """
        return False

    def _serialize(self, message: Any) -> str:
        if isinstance(message, (dict, list)):
            return json.dumps(message)
        return pydantic_serialize(message, exclude_none=True)

    def _deserialize(self, buffer: str | bytes) -> Any:
        if isinstance(buffer, bytes):
            buffer = buffer.decode("utf-8")

        logger.debug(f"Deserializing message: {buffer}")
        return json.loads(buffer)

    @abstractmethod
    async def send(self, message: Any) -> None:
        """
        Serialize and send a message.

        Parameters
        ----------
        message : Any
            A dict, a list (batch) or a pydantic model.
        """
        ...

    @abstractmethod
    async def recv(self) -> Any:
        """
        Receive and deserialize the next message.

        Raises
        ------
        RpcChannelClosedError
            If the peer closed the connection.
        RpcMessageTooLargeError
            If the message exceeds the configured size limit.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """
        Close the connection. Safe to call more than once.
        """
        ...


class JsonStreamSocket(SimpleSocket):
    """
    Newline-delimited JSON over an asyncio stream (plain TCP or TLS).

    Parameters
    ----------
    reader : asyncio.StreamReader
        Stream reader, created with ``limit`` >= max_message_size.
    writer : asyncio.StreamWriter
        Stream writer for the same connection.
    max_message_size : int, optional
        Maximum allowed line size in bytes (default is 10MB).
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._max_message_size = max_message_size

    @property
    def closed(self) -> bool:
        return self._writer.is_closing()

    async def send(self, message: Any) -> None:
        if self.closed:
            raise RpcChannelClosedError("Cannot send on closed socket")
        data = self._serialize(message).encode("utf-8") + LINE_TERMINATOR
        self._writer.write(data)
        await self._writer.drain()

    async def recv(self) -> Any:
        logger.debug("Waiting for line...")
        try:
            line = await self._reader.readline()
        except ValueError as e:
            # StreamReader.readline() wraps LimitOverrunError in ValueError
            raise RpcMessageTooLargeError(
                f"Incoming line exceeds limit ({self._max_message_size} bytes)"
            ) from e

        if not line:
            raise RpcChannelClosedError("Connection closed by server")

        if len(line) > self._max_message_size:
            logger.error(
                f"Received message exceeds size limit: {len(line)} bytes "
                f"(limit: {self._max_message_size} bytes)"
            )
            raise RpcMessageTooLargeError(
                f"Incoming message size ({len(line)} bytes) exceeds limit "
                f"({self._max_message_size} bytes)"
            )

        return self._deserialize(line)

    async def close(self) -> None:
        if self._writer.is_closing():
            return
        self._writer.close()
        with suppress(ConnectionError, OSError):
            await self._writer.wait_closed()


class JsonWebSocket(SimpleSocket):
    """
    JSON text frames over a ``websockets`` client connection.

    Parameters
    ----------
    websocket : Any
        A connection returned by ``websockets.connect``.
    max_message_size : int, optional
        Maximum allowed message size in bytes (default is 10MB).
    """

    def __init__(
        self, websocket: Any, max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    ) -> None:
        self._websocket = websocket
        self._max_message_size = max_message_size
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or getattr(self._websocket, "closed", False) is True

    async def send(self, message: Any) -> None:
        try:
            await self._websocket.send(self._serialize(message))
        except ConnectionClosed as e:
            self._closed = True
            raise RpcChannelClosedError(f"WebSocket closed: {e}") from e

    async def recv(self) -> Any:
        logger.debug("Waiting for message...")
        try:
            message = await self._websocket.recv()
        except ConnectionClosed as e:
            self._closed = True
            raise RpcChannelClosedError(f"WebSocket closed: {e}") from e

        message_size: int
        if isinstance(message, str):
            message_size = len(message.encode("utf-8"))
        elif isinstance(message, bytes):
            message_size = len(message)
        else:
            message_size = 0

        if message_size > self._max_message_size:
            logger.error(
                f"Received message exceeds size limit: {message_size} bytes "
                f"(limit: {self._max_message_size} bytes)"
            )
            raise RpcMessageTooLargeError(
                f"Incoming message size ({message_size} bytes) exceeds limit "
                f"({self._max_message_size} bytes)"
            )

        return self._deserialize(message)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with suppress(ConnectionClosed, WebSocketException, OSError):
            await self._websocket.close()


def _make_ssl_context(server: ServerConfig) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if not server.ssl_verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


async def open_socket(
    server: ServerConfig,
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    websocket_kwargs: dict[str, Any] | None = None,
) -> SimpleSocket:
    """
    Open a connection to ``server`` and wrap it in the matching SimpleSocket.

    Raises
    ------
    RpcTransportError
        If the connection cannot be established within ``server.open_timeout``.
    """
    ssl_context = _make_ssl_context(server) if server.uses_tls else None
    logger.info(f"Connecting to {server.uri}...")
    try:
        if server.is_websocket:
            connect_kwargs = dict(websocket_kwargs or {})
            connect_kwargs.setdefault("open_timeout", server.open_timeout)
            connect_kwargs["max_size"] = max_message_size
            if ssl_context is not None:
                connect_kwargs["ssl"] = ssl_context
            raw_ws = await websockets.connect(server.uri, **connect_kwargs)
            return JsonWebSocket(raw_ws, max_message_size=max_message_size)

        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(
                server.host, server.port, ssl=ssl_context, limit=max_message_size
            ),
            timeout=server.open_timeout,
        )
        return JsonStreamSocket(reader, writer, max_message_size=max_message_size)

    except (OSError, asyncio.TimeoutError, WebSocketException) as err:
        logger.info(f"Connection to {server.uri} failed - {err}")
        raise RpcTransportError(f"Could not connect to {server.uri}: {err}") from err
