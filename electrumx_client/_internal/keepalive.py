"""
Keepalive component for detecting silently dead ElectrumX connections.

This module provides KeepaliveMonitor, which probes the server with
``server.ping`` once a connection has been silent for a while and escalates
to the connection manager when a probe never settles.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import TYPE_CHECKING, Any, Callable

from ..config import RpcKeepaliveConfig
from ..exceptions import KeepaliveTimeoutError
from ..logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable

logger = get_logger(__name__)


class KeepaliveMonitor:
    """
    Idle timer plus probe watchdog for one session.

    Every successful call re-arms the idle timer (``arm()``). When the idle
    timer expires and the last call started more than ``silence_window``
    seconds ago, a ``server.ping`` probe is sent and a watchdog of
    ``probe_timeout`` seconds is started:

    - probe resolves first: the watchdog is cancelled
    - probe rejects first: the reason is logged, the watchdog is cancelled,
      the connection is left alone
    - watchdog fires first: ``on_timeout`` is called once with
      KeepaliveTimeoutError

    Each timer is an asyncio task used as its cancellation handle. There is
    at most one idle task and one watchdog task at any time.

    Parameters
    ----------
    last_call : Callable[[], float]
        Returns the monotonic start time of the most recent call, 0 if none.
    ping_fn : Callable[[], Awaitable[Any]]
        Sends the probe. Expected to go through the request dispatcher so
        that a successful probe re-arms the monitor.
    on_timeout : Callable[[BaseException], Any]
        Called (and awaited if it returns an awaitable) when a probe times out.
    config : RpcKeepaliveConfig | None, optional
        Timer durations. Defaults to RpcKeepaliveConfig().
    clock : Callable[[], float], optional
        Monotonic clock, same one used to stamp ``last_call``.

    Usage
    -----
    ```python
    monitor = KeepaliveMonitor(
        last_call=lambda: session.time_last_call,
        ping_fn=client.server_ping,
        on_timeout=manager.on_connection_error,
    )
    monitor.arm()
    ```
    """

    def __init__(
        self,
        last_call: Callable[[], float],
        ping_fn: Callable[[], Awaitable[Any]],
        on_timeout: Callable[[BaseException], Any],
        config: RpcKeepaliveConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._last_call = last_call
        self._ping_fn = ping_fn
        self._on_timeout = on_timeout
        self._config = config or RpcKeepaliveConfig()
        self._clock = clock

        self._idle_task: asyncio.Task[None] | None = None
        self._probe_task: asyncio.Task[None] | None = None
        self._watchdog_task: asyncio.Task[None] | None = None
        self._disabled = False

    @property
    def config(self) -> RpcKeepaliveConfig:
        return self._config

    def configure(self, config: RpcKeepaliveConfig) -> None:
        """Replace the timer durations. Takes effect on the next ``arm()``."""
        self._config = config

    @property
    def is_armed(self) -> bool:
        return self._idle_task is not None and not self._idle_task.done()

    @property
    def is_probing(self) -> bool:
        return self._watchdog_task is not None and not self._watchdog_task.done()

    @property
    def is_disabled(self) -> bool:
        return self._disabled

    def arm(self) -> None:
        """
        (Re)start the idle timer with a full silence window.
        """
        if self._disabled or not self._config.enabled:
            return
        self._start_idle(self._config.silence_window)

    def _start_idle(self, delay: float) -> None:
        _cancel(self._idle_task)
        self._idle_task = asyncio.create_task(self._idle(delay))

    async def _idle(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._idle_task = None
        self._on_silence()

    def _on_silence(self) -> None:
        if self._disabled:
            return

        last_call = self._last_call()
        if last_call == 0:
            return

        window = self._config.silence_window
        elapsed = self._clock() - last_call
        if elapsed < window:
            # a call started inside the window has not completed yet
            self._start_idle(window - elapsed)
            return

        if self.is_probing:
            return
        logger.debug(f"Connection silent for {elapsed:.1f}s, sending keepalive ping")
        self._watchdog_task = asyncio.create_task(
            self._watchdog(self._config.probe_timeout)
        )
        self._probe_task = asyncio.create_task(self._probe())

    async def _probe(self) -> None:
        try:
            await self._ping_fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"keepalive ping failed because of {type(e).__name__}: {e}")

        if self._probe_task is asyncio.current_task():
            self._probe_task = None
            self._cancel_watchdog()

    async def _watchdog(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        self._watchdog_task = None
        if self._disabled:
            return

        error = KeepaliveTimeoutError()
        logger.error(f"No answer to keepalive ping within {timeout}s, failing connection")
        result = self._on_timeout(error)
        if inspect.isawaitable(result):
            await result

    def _cancel_watchdog(self) -> None:
        watchdog, self._watchdog_task = self._watchdog_task, None
        _cancel(watchdog)

    def cancel(self) -> None:
        """
        Cancel the idle timer, any in-flight probe and its watchdog.

        The monitor can be armed again afterwards.
        """
        idle, self._idle_task = self._idle_task, None
        probe, self._probe_task = self._probe_task, None
        _cancel(idle)
        _cancel(probe)
        self._cancel_watchdog()

    def disable(self) -> None:
        """
        Cancel everything and ignore every later ``arm()`` and timer expiry.
        """
        self._disabled = True
        self.cancel()


def _cancel(task: asyncio.Task[Any] | None) -> None:
    # never cancel the task we are running in; it finishes on its own
    if task is not None and not task.done() and task is not asyncio.current_task():
        task.cancel()
