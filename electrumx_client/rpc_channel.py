"""
RPC channel over a single ElectrumX connection - request/response calls,
batch calls and delivery of server push notifications.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from typing import TYPE_CHECKING, Any

from ._internal.promise_manager import RpcPromiseManager
from ._internal.protocol_handler import RpcProtocolHandler
from .exceptions import (
    RemoteError,
    RpcChannelClosedError,
    RpcInvalidStateError,
    RpcMessageTooLargeError,
)
from .logger import get_logger
from .schemas import BatchItemResult, JsonRpcRequest
from .utils import gen_uid, pydantic_dump

if TYPE_CHECKING:
    from typing_extensions import TypeAlias

    from .transport import SimpleSocket

# Type aliases for callbacks (using string quotes for forward references)
OnClosedCallback: TypeAlias = Callable[["RpcChannel", "BaseException | None"], Awaitable[None]]
OnNotificationCallback: TypeAlias = Callable[[str, Any], Awaitable[None]]
SocketFactory: TypeAlias = Callable[[], Awaitable["SimpleSocket"]]

logger = get_logger("RPC_CHANNEL")


class RpcChannel:
    """
    A JSON-RPC channel bound to one physical connection.

    The channel is single-use: it is opened once, and once closed (by the
    peer, by a transport error or explicitly) it stays closed. Reconnecting
    means building a new channel.

    Parameters
    ----------
    socket_factory : Callable[[], Awaitable[SimpleSocket]]
        Coroutine function opening the underlying socket.
    channel_id : str | None, optional
        Identifier used in logs. Defaults to a random UUID.
    max_pending_requests : int | None, optional
        Maximum number of calls awaiting responses before
        RpcBackpressureError is raised. Defaults to 1000.
    closed_callbacks : list[OnClosedCallback] | None, optional
        Called once with (channel, reason) after an opened channel closes.
    notification_callbacks : list[OnNotificationCallback] | None, optional
        Called with (method, params) for every server push.
    """

    def __init__(
        self,
        socket_factory: SocketFactory,
        channel_id: str | None = None,
        max_pending_requests: int | None = None,
        closed_callbacks: list[OnClosedCallback] | None = None,
        notification_callbacks: list[OnNotificationCallback] | None = None,
    ) -> None:
        logger.debug("Initializing RPC channel...")
        self._socket_factory = socket_factory
        self.socket: SimpleSocket | None = None
        self.id = channel_id if channel_id is not None else gen_uid()

        self._promise_manager = RpcPromiseManager(
            max_pending_requests=max_pending_requests
        )
        self._protocol_handler = RpcProtocolHandler(
            self._promise_manager, self.on_notification
        )

        self._closed_callbacks: list[OnClosedCallback] = closed_callbacks or []
        self._notification_callbacks: list[OnNotificationCallback] = (
            notification_callbacks or []
        )

        # ElectrumX request ids: increasing integers starting at 1
        self._ids = itertools.count(1)
        self._read_task: asyncio.Task[None] | None = None
        self._close_task: asyncio.Task[None] | None = None
        # notification deliveries run off the reader so callbacks may make calls
        self._notification_tasks: set[asyncio.Task[None]] = set()
        self._opened = False
        self._closing = False
        self._close_lock = asyncio.Lock()
        self.close_reason: BaseException | None = None

    async def open(self) -> None:
        """
        Open the underlying socket and start reading.

        Raises
        ------
        RpcTransportError
            If the socket cannot be opened.
        RpcInvalidStateError
            If the channel was already opened or closed.
        RpcChannelClosedError
            If close() was called while the socket was opening.
        """
        if self._opened or self.is_closed():
            raise RpcInvalidStateError(
                f"Channel {self.id} cannot be opened twice; build a new channel"
            )
        try:
            self.socket = await self._socket_factory()
        except BaseException:
            # never opened - no closed callbacks for this channel
            self._promise_manager.close()
            raise
        if self._closing:
            # close() ran while the socket was opening
            with suppress(ConnectionError, OSError, RpcChannelClosedError):
                await self.socket.close()
            raise RpcChannelClosedError(f"Channel {self.id} was closed while opening")
        self._opened = True
        self._read_task = asyncio.create_task(self._reader())
        logger.debug(f"Channel {self.id} opened")

    @property
    def is_open(self) -> bool:
        return self._opened and not self.is_closed()

    def is_closed(self) -> bool:
        return self._promise_manager.is_closed()

    async def wait_until_closed(self) -> bool:
        return await self._promise_manager.wait_until_closed()

    def _ensure_open(self) -> None:
        if not self._opened:
            raise RpcInvalidStateError("connection not established")
        if self.is_closed():
            raise RpcChannelClosedError(f"Channel {self.id} is closed")

    async def send_raw(self, data: dict[str, Any] | list[dict[str, Any]]) -> None:
        """
        Send an already-built request (or batch) over the socket.

        A socket error closes the channel in the background and is raised to
        the caller as RpcChannelClosedError.
        """
        if self.is_closed() or self.socket is None:
            raise RpcChannelClosedError("Cannot send on closed channel")
        try:
            await self.socket.send(data)
        except (ConnectionError, OSError) as e:
            self._close_task = asyncio.create_task(self.close(e))
            raise RpcChannelClosedError(f"Send failed: {e}") from e

    def _build_request(self, method: str, params: Sequence[Any]) -> JsonRpcRequest:
        return JsonRpcRequest(id=next(self._ids), method=method, params=list(params))

    async def call(self, method: str, params: Sequence[Any] | None = None) -> Any:
        """
        Call a remote method and wait for its result.

        Args:
            method: ElectrumX method name, e.g. "server.ping"
            params: Positional parameters

        Returns:
            The ``result`` member of the response

        Raises:
            RpcInvalidStateError: If the channel was never opened
            RpcChannelClosedError: If the channel is or becomes closed
            RpcBackpressureError: If too many calls are pending
            RemoteError: If the server answered with an error object
        """
        self._ensure_open()
        request = self._build_request(method, params or [])
        promise = self._promise_manager.create_promise(request)

        logger.debug(f"Sending JSON-RPC request: {request}")
        try:
            await self.send_raw(pydantic_dump(request, exclude_none=True))
        except BaseException:
            self._promise_manager.discard(promise.call_id)
            raise

        response = await self._promise_manager.wait_for_response(promise)
        if response.error is not None:
            raise RemoteError(
                response.error.code, response.error.message, response.error.data
            )
        return response.result

    async def call_batch(
        self,
        method: str,
        params_list: Sequence[Any],
        secondary_param: Any = None,
    ) -> list[BatchItemResult]:
        """
        Call ``method`` once per element of ``params_list`` in a single batch.

        Each request gets ``[param]`` as parameters, or
        ``[param, secondary_param]`` when ``secondary_param`` is given.
        Per-item errors do not fail the batch; they are reported in the
        matching BatchItemResult.

        Returns:
            One BatchItemResult per element of ``params_list``, in order
        """
        self._ensure_open()
        if not params_list:
            return []

        requests = [
            self._build_request(
                method, [param] if secondary_param is None else [param, secondary_param]
            )
            for param in params_list
        ]
        promises = []
        try:
            for request in requests:
                promises.append(self._promise_manager.create_promise(request))
            logger.debug(f"Sending JSON-RPC batch of {len(requests)} x {method}")
            await self.send_raw(
                [pydantic_dump(request, exclude_none=True) for request in requests]
            )
        except BaseException:
            for promise in promises:
                self._promise_manager.discard(promise.call_id)
            raise

        responses = await asyncio.gather(
            *(self._promise_manager.wait_for_response(p) for p in promises)
        )
        return [
            BatchItemResult(param=param, result=response.result, error=response.error)
            for param, response in zip(params_list, responses)
        ]

    async def close(self, reason: BaseException | None = None) -> None:
        """
        Close the channel and clean up resources.

        Idempotent. Pending calls are rejected with RpcChannelClosedError and,
        if the channel had been opened, closed callbacks fire exactly once.

        Args:
            reason: The error that caused the closure, if any
        """
        async with self._close_lock:
            if self._closing:
                logger.debug(f"Channel {self.id} already closed/closing, skipping")
                return
            self._closing = True

        logger.debug(f"Closing channel {self.id}...")
        self.close_reason = reason
        self._promise_manager.close(reason)
        self._cancel_notification_tasks()

        if self._read_task is not None and self._read_task is not asyncio.current_task():
            self._read_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._read_task

        if self.socket is not None:
            with suppress(ConnectionError, OSError, RpcChannelClosedError):
                await self.socket.close()

        if self._opened:
            await self._invoke_callbacks(self._closed_callbacks, self, reason)
        logger.debug(f"Channel {self.id} closed")

    async def _reader(self) -> None:
        """
        Background task reading messages until the connection ends.
        """
        if self.socket is None:
            raise RpcInvalidStateError("Channel must be opened before reading")

        reason: BaseException | None = None
        try:
            while True:
                try:
                    message = await self.socket.recv()
                except ValueError as e:
                    # undecodable JSON - the framing is intact, keep reading
                    logger.error(f"Dropping undecodable message: {e}")
                    continue
                await self._protocol_handler.handle_message(message)

        except asyncio.CancelledError:
            logger.debug(f"Channel {self.id} reader cancelled")
            return

        except RpcChannelClosedError as e:
            logger.info(f"Connection was terminated: {e}")
            reason = e

        except RpcMessageTooLargeError as e:
            logger.error(f"Closing channel {self.id}: {e}")
            reason = e

        except (ConnectionError, OSError) as e:
            logger.info(f"Connection lost: {type(e).__name__}: {e}")
            reason = e

        await self.close(reason)

    def add_closed_callback(self, callback: OnClosedCallback) -> None:
        self._closed_callbacks.append(callback)

    def add_notification_callback(self, callback: OnNotificationCallback) -> None:
        self._notification_callbacks.append(callback)

    def remove_notification_callback(self, callback: OnNotificationCallback) -> bool:
        try:
            self._notification_callbacks.remove(callback)
            return True
        except ValueError:
            return False

    async def on_notification(self, method: str, params: Any) -> None:
        """
        Schedule notification callbacks for a server push.

        Callbacks run in their own task, never on the reader task, so a
        callback awaiting a call on this channel gets its response. Pending
        deliveries are cancelled when the channel closes.
        """
        task = asyncio.create_task(
            self._invoke_callbacks(self._notification_callbacks, method, params)
        )
        self._notification_tasks.add(task)
        task.add_done_callback(self._notification_tasks.discard)

    def _cancel_notification_tasks(self) -> None:
        current = asyncio.current_task()
        for task in list(self._notification_tasks):
            if task is not current:
                task.cancel()

    async def _invoke_callbacks(
        self,
        callbacks: list[OnClosedCallback] | list[OnNotificationCallback],
        *args: Any,
    ) -> None:
        """Invoke callbacks in order; a failing callback is logged, not raised."""
        for callback in list(callbacks):
            try:
                await callback(*args)
            except Exception as e:
                callback_name = getattr(callback, "__name__", str(callback))
                logger.error(
                    f"Callback {callback_name} failed: {type(e).__name__}: {e}",
                    exc_info=True,
                )

    def get_pending_count(self) -> int:
        return self._promise_manager.get_pending_count()
