"""
Promise management component for tracking RPC requests and responses.

This module handles the lifecycle of RPC promises, including request tracking,
response matching by id, and rejection of everything pending on channel
closure.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from ..exceptions import RpcBackpressureError, RpcChannelClosedError
from ..logger import get_logger

if TYPE_CHECKING:
    from ..schemas import JsonRpcRequest, JsonRpcResponse

logger = get_logger("RPC_PROMISE_MANAGER")

# Default maximum number of pending requests per channel
# This prevents resource exhaustion from request flooding
DEFAULT_MAX_PENDING_REQUESTS = 1000


class RpcPromise:
    """
    Future and id wrapper that holds the state of a pending request.

    Attributes:
        created_at: Timestamp when the promise was created
    """

    def __init__(self, request: JsonRpcRequest) -> None:
        self._request = request
        self._id = request.id
        # resolved with the matching response, or rejected on channel close
        self._future: asyncio.Future[JsonRpcResponse] = (
            asyncio.get_running_loop().create_future()
        )
        self.created_at = time.time()

    @property
    def request(self) -> JsonRpcRequest:
        return self._request

    @property
    def call_id(self) -> str:
        return str(self._id) if self._id is not None else ""

    def age(self) -> float:
        """
        Get the age of this promise in seconds.
        """
        return time.time() - self.created_at

    def done(self) -> bool:
        return self._future.done()

    def resolve(self, response: JsonRpcResponse) -> None:
        if not self._future.done():
            self._future.set_result(response)

    def reject(self, error: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(error)

    async def wait(self) -> JsonRpcResponse:
        """
        Wait for the matching response.

        Raises:
            RpcChannelClosedError: If the channel closed first
        """
        return await self._future


class RpcPromiseManager:
    """
    Manages the lifecycle of RPC promises for tracking requests and responses.

    This component handles:
    - Creating and storing promises for outgoing requests
    - Enforcing max pending request limits (backpressure)
    - Matching incoming responses to pending requests
    - Rejecting pending requests on channel closure

    No per-call timeout is imposed: a call waits until its response arrives
    or the channel closes.
    """

    def __init__(self, max_pending_requests: int | None = None) -> None:
        """
        Initialize the promise manager.

        Args:
            max_pending_requests: Maximum number of pending requests allowed.
                                 If None, uses DEFAULT_MAX_PENDING_REQUESTS (1000).
        """
        # Pending requests - id-mapped to promise
        self._requests: dict[str, RpcPromise] = {}
        # Internal event signaling channel closure
        self._closed = asyncio.Event()
        self._max_pending_requests = (
            max_pending_requests
            if max_pending_requests is not None
            else DEFAULT_MAX_PENDING_REQUESTS
        )

    def create_promise(self, request: JsonRpcRequest) -> RpcPromise:
        """
        Create and store a promise for a request.

        Args:
            request: The JSON-RPC request to create a promise for

        Returns:
            A new RpcPromise instance

        Raises:
            RpcChannelClosedError: If the manager is already closed
            RpcBackpressureError: If max pending requests limit is reached
            ValueError: If the request ID is already in use
        """
        if self.is_closed():
            raise RpcChannelClosedError("Cannot send request on closed channel")

        call_id = str(request.id) if request.id is not None else ""

        # Check backpressure limit BEFORE creating the promise
        if len(self._requests) >= self._max_pending_requests:
            raise RpcBackpressureError(
                f"Channel backpressure: maximum pending requests ({self._max_pending_requests}) "
                f"reached. Wait for responses before sending more requests. "
                f"Current pending: {len(self._requests)}"
            )

        if call_id in self._requests:
            raise ValueError(
                f"Request ID collision detected: '{call_id}' is already in use for a pending request."
            )

        promise = RpcPromise(request)
        self._requests[call_id] = promise
        return promise

    def store_response(self, response: JsonRpcResponse) -> bool:
        """
        Resolve the promise waiting for ``response``.

        Returns:
            True if the response matched a pending request, False otherwise
        """
        if response.id is None:
            return False

        promise = self._requests.pop(str(response.id), None)
        if promise is None:
            # Response for unknown request - caller gave up or duplicate response
            logger.debug(f"Dropping response for unknown request id {response.id}")
            return False

        promise.resolve(response)
        return True

    def discard(self, call_id: str) -> None:
        """
        Forget a pending call without resolving it (e.g. its send failed).
        """
        self._requests.pop(call_id, None)

    async def wait_for_response(self, promise: RpcPromise) -> JsonRpcResponse:
        """
        Wait for the response matching ``promise``.

        Raises:
            RpcChannelClosedError: If the channel closes before the response arrives
        """
        try:
            return await promise.wait()
        finally:
            self._requests.pop(promise.call_id, None)

    def close(self, reason: BaseException | None = None) -> None:
        """
        Signal closure and reject all waiting promises.

        Args:
            reason: Optional error that caused the closure, chained as the
                    cause of the RpcChannelClosedError handed to waiters.
        """
        if self._closed.is_set():
            return
        self._closed.set()

        pending = list(self._requests.values())
        self._requests.clear()
        for promise in pending:
            error = RpcChannelClosedError(
                f"Channel closed before response for call {promise.call_id} could be received"
            )
            error.__cause__ = reason
            promise.reject(error)

    def is_closed(self) -> bool:
        return self._closed.is_set()

    async def wait_until_closed(self) -> bool:
        return await self._closed.wait()

    def get_pending_count(self) -> int:
        return len(self._requests)

    def get_max_pending_requests(self) -> int:
        return self._max_pending_requests
