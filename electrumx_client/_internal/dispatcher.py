"""
Request dispatcher: the single path every outgoing call takes.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Callable

from ..exceptions import RpcInvalidStateError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from ..connection_manager import Session
    from ..rpc_channel import RpcChannel
    from ..schemas import BatchItemResult
    from .keepalive import KeepaliveMonitor


class RequestDispatcher:
    """
    Stamps the session's last-call time and re-arms keepalive.

    Before a call is handed to the current channel, ``time_last_call`` is set
    to the current monotonic time. After the call resolves successfully the
    keepalive monitor is re-armed. Failures propagate to the caller unchanged
    and do not re-arm.

    Args:
        channel_provider: Returns the current channel, or None before connect
        session: Session whose ``time_last_call`` is stamped
        keepalive: Monitor re-armed after each successful call
        clock: Monotonic clock shared with the keepalive monitor
    """

    def __init__(
        self,
        channel_provider: Callable[[], RpcChannel | None],
        session: Session,
        keepalive: KeepaliveMonitor,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channel_provider = channel_provider
        self._session = session
        self._keepalive = keepalive
        self._clock = clock

    def _require_channel(self) -> RpcChannel:
        channel = self._channel_provider()
        if channel is None:
            raise RpcInvalidStateError("connection not established")
        return channel

    async def request(self, method: str, params: Sequence[Any] | None = None) -> Any:
        channel = self._require_channel()
        self._session.time_last_call = self._clock()
        result = await channel.call(method, list(params or []))
        self._keepalive.arm()
        return result

    async def request_batch(
        self,
        method: str,
        params_list: Sequence[Any],
        secondary_param: Any = None,
    ) -> list[BatchItemResult]:
        channel = self._require_channel()
        self._session.time_last_call = self._clock()
        results = await channel.call_batch(method, params_list, secondary_param)
        self._keepalive.arm()
        return results
