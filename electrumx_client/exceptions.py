"""
Exception classes for electrumx_client.

This module defines all custom exceptions raised by the library.
All exceptions inherit from RpcError, which inherits from Exception.
"""

from __future__ import annotations

from typing import Any


class RpcError(Exception):
    """
    Base exception for all RPC-related errors.

    Catching this exception will catch all library-specific errors.
    """


class RpcTransportError(RpcError):
    """
    Raised when the underlying socket cannot be opened.

    Covers DNS failures, refused connections, TLS handshake failures and
    open timeouts. The initial connect is never retried automatically; a
    failed reconnect counts as a new detected connection failure and is
    handled by the persistence policy.
    """


class RpcChannelClosedError(RpcError):
    """
    Raised when attempting to use a channel that has been closed.

    Pending calls are rejected with this error when the connection drops,
    either because the server went away, the keepalive probe timed out, or
    close() was called.
    """


class RpcInvalidStateError(RpcError):
    """
    Raised when an RPC operation is attempted in an invalid state.

    Examples of invalid states:
    - Calling protocol methods before init_electrum() or connect()
    - Calling methods after close() has been called
    - Opening a channel twice
    """


class RemoteError(RpcError):
    """
    Raised when the server answers a call with a JSON-RPC error object.

    Attributes
    ----------
    code : int | None
        JSON-RPC error code reported by the server.
    message : str
        Human-readable message reported by the server.
    data : Any
        Optional extra error payload.
    """

    def __init__(self, code: int | None, message: str, data: Any = None) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


class KeepaliveTimeoutError(RpcError):
    """
    Raised internally when a keepalive probe does not settle in time.

    This error is never returned to an unrelated caller: it is handed to the
    connection manager, which closes the channel and applies the
    persistence policy.
    """

    def __init__(self, message: str = "keepalive ping timeout") -> None:
        super().__init__(message)


class RpcMessageTooLargeError(RpcError):
    """
    Raised when a received message exceeds the configured size limit.

    The size limit is checked before deserialization so that a misbehaving
    server cannot exhaust memory with a single frame.
    """


class RpcBackpressureError(RpcError):
    """
    Raised when the channel has too many pending requests.

    The caller should wait for outstanding calls to complete before sending
    more.
    """
