"""
Connection lifecycle of an ElectrumX session.

ConnectionManager owns the Session, builds a fresh RpcChannel for every
(re)connect, performs the ``server.version`` handshake and reacts to
connection failures according to the session's PersistencePolicy.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from .config import (
    HandshakeParams,
    PersistencePolicy,
    RpcKeepaliveConfig,
    RpcReconnectConfig,
)
from .exceptions import RpcError, RpcInvalidStateError, RpcTransportError
from .logger import get_logger

if TYPE_CHECKING:
    from ._internal.dispatcher import RequestDispatcher
    from ._internal.keepalive import KeepaliveMonitor
    from .rpc_channel import RpcChannel
    from .subscriptions import SubscriptionRegistry

logger = get_logger(__name__)

# Server-push listeners dropped on every connection loss. The server forgets
# these subscriptions with the connection; the caller re-subscribes.
RESET_ON_CLOSE_EVENTS = (
    "blockchain.headers.subscribe",
    "blockchain.scripthash.subscribe",
)


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


@dataclass
class Session:
    """
    Mutable per-connection-lineage state.

    Attributes
    ----------
    time_last_call : float
        Monotonic start time of the most recent call, 0 if none since the
        last (re)initialization.
    protocol_version : str | None
        Protocol version negotiated by the last handshake.
    persistence_policy : PersistencePolicy | None
        The policy object carried across reconnects. None means "always
        reconnect".
    handshake_params : HandshakeParams | None
        Client identity replayed on every reconnect.
    state : SessionState
        Lifecycle state; CLOSED is terminal.
    reconnect_count : int
        Number of automatic or explicit reconnects performed.
    """

    time_last_call: float = 0.0
    protocol_version: str | None = None
    persistence_policy: PersistencePolicy | None = None
    handshake_params: HandshakeParams | None = None
    state: SessionState = SessionState.IDLE
    reconnect_count: int = 0


class ConnectionManager:
    """
    Opens, re-opens and closes the session's RPC channel.

    Every connect builds a new channel from ``channel_factory``. Closed events
    of replaced channels are ignored, so a single connection loss is handled
    exactly once. After a loss the manager waits ``settle_delay`` seconds and
    then applies the persistence policy:

    1. policy is None: reconnect
    2. ``max_retry > 0``: decrement it and reconnect
    3. a callback is set: call it (once per loss)
    4. otherwise: stay disconnected

    Parameters
    ----------
    channel_factory : Callable[[], RpcChannel]
        Builds a new, unopened channel.
    registry : SubscriptionRegistry
        Receives server pushes; some events are reset on connection loss.
    session : Session
        Session state shared with the dispatcher and keepalive monitor.
    dispatcher : RequestDispatcher
        Used for the ``server.version`` handshake.
    keepalive : KeepaliveMonitor
        Cancelled on connection loss, disabled on close.
    reconnect : RpcReconnectConfig | None, optional
        Reconnect pacing. Defaults to RpcReconnectConfig().
    """

    def __init__(
        self,
        channel_factory: Callable[[], RpcChannel],
        registry: SubscriptionRegistry,
        session: Session,
        dispatcher: RequestDispatcher,
        keepalive: KeepaliveMonitor,
        reconnect: RpcReconnectConfig | None = None,
    ) -> None:
        self._channel_factory = channel_factory
        self._registry = registry
        self._session = session
        self._dispatcher = dispatcher
        self._keepalive = keepalive
        self._reconnect_config = reconnect or RpcReconnectConfig()

        self._channel: RpcChannel | None = None
        self._settle_task: asyncio.Task[None] | None = None

    @property
    def session(self) -> Session:
        return self._session

    @property
    def channel(self) -> RpcChannel | None:
        return self._channel

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def is_connected(self) -> bool:
        return (
            self._session.state is SessionState.OPEN
            and self._channel is not None
            and self._channel.is_open
        )

    @property
    def is_closed(self) -> bool:
        return self._session.state is SessionState.CLOSED

    @property
    def reconnect_pending(self) -> bool:
        return self._settle_task is not None and not self._settle_task.done()

    def _ensure_not_closed(self) -> None:
        if self.is_closed:
            raise RpcInvalidStateError(
                "Session is closed. Create a new client to reconnect."
            )

    async def connect(self) -> RpcChannel:
        """
        Open a new channel, replacing the current one.

        The initial connect is never retried here.

        Raises
        ------
        RpcTransportError
            If the socket cannot be opened.
        RpcInvalidStateError
            If the session is closed.
        """
        self._ensure_not_closed()
        self._session.state = SessionState.CONNECTING

        channel = self._channel_factory()
        channel.add_closed_callback(self._on_channel_closed)
        channel.add_notification_callback(self._registry.emit)

        previous, self._channel = self._channel, channel
        if previous is not None and not previous.is_closed():
            # stale now - its closed event is ignored
            await previous.close()

        try:
            await channel.open()
        except BaseException:
            if self._channel is channel and not self.is_closed:
                self._session.state = SessionState.DISCONNECTED
            raise

        if self.is_closed:
            # close() ran while the socket was opening
            await channel.close()
            raise RpcInvalidStateError("Session was closed while connecting")

        self._session.state = SessionState.OPEN
        logger.debug(f"Channel {channel.id} connected")
        return channel

    async def init_session(
        self,
        handshake_params: HandshakeParams,
        persistence_policy: PersistencePolicy | None,
        keepalive: RpcKeepaliveConfig | None = None,
        reconnect: RpcReconnectConfig | None = None,
    ) -> Any:
        """
        Store session parameters, connect and perform the handshake.

        An already open channel (e.g. from ``async with``) is reused.

        Parameters
        ----------
        handshake_params : HandshakeParams
            Client name and requested protocol version for ``server.version``.
        persistence_policy : PersistencePolicy | None
            Reaction to connection failures. None means "always reconnect".
            The same object is kept across reconnects.
        keepalive : RpcKeepaliveConfig | None, optional
            Per-session override of the keepalive timings.
        reconnect : RpcReconnectConfig | None, optional
            Per-session override of the reconnect pacing.

        Returns
        -------
        Any
            The ``server.version`` result, normally
            ``[server_software, protocol_version]``.
        """
        self._ensure_not_closed()
        # a pending reconnect would replace the channel opened here
        self._cancel_settle()
        self._session.handshake_params = handshake_params
        self._session.persistence_policy = persistence_policy
        self._session.time_last_call = 0.0
        if keepalive is not None:
            self._keepalive.configure(keepalive)
        if reconnect is not None:
            self._reconnect_config = reconnect

        if not self.is_connected:
            await self.connect()
        return await self._handshake(handshake_params)

    async def _handshake(self, params: HandshakeParams) -> Any:
        result = await self._dispatcher.request(
            "server.version", [params.client_name, params.protocol_version]
        )
        self._session.protocol_version = _negotiated_version(
            result, params.protocol_version
        )
        logger.debug(
            f"Handshake done, protocol version {self._session.protocol_version}"
        )
        return result

    async def _on_channel_closed(
        self, channel: RpcChannel, reason: BaseException | None
    ) -> None:
        if channel is not self._channel:
            logger.debug(f"Ignoring close of replaced channel {channel.id}")
            return
        self.on_connection_closed(reason)

    def on_connection_closed(self, reason: BaseException | None = None) -> None:
        """
        Handle a detected connection loss.

        Cancels keepalive timers, drops header/scripthash listeners and
        schedules the persistence policy after ``settle_delay`` seconds.
        """
        if self.is_closed:
            return
        if self.reconnect_pending:
            logger.debug("Connection loss already being handled")
            return

        logger.info(f"Connection lost: {reason}" if reason else "Connection lost")
        self._session.state = SessionState.DISCONNECTED
        self._keepalive.cancel()
        for event in RESET_ON_CLOSE_EVENTS:
            self._registry.unsubscribe_all(event)

        self._settle_task = asyncio.create_task(
            self._apply_policy_after(self._reconnect_config.settle_delay)
        )

    async def _apply_policy_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._settle_task = None
        if self.is_closed:
            return

        policy = self._session.persistence_policy
        if policy is None:
            await self.reconnect()
        elif policy.max_retry > 0:
            policy.consume()
            await self.reconnect()
        elif policy.callback is not None:
            await self._invoke_policy_callback(policy)
        else:
            logger.info("Retry budget exhausted, connection stays closed")

    async def _invoke_policy_callback(self, policy: PersistencePolicy) -> None:
        try:
            result = policy.callback()  # type: ignore[misc]
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"Persistence callback failed: {type(e).__name__}: {e}", exc_info=True
            )

    async def on_connection_error(self, error: BaseException) -> None:
        """
        Fail the current connection with ``error``.

        Closing the channel raises its closed event, which reaches
        on_connection_closed exactly once.
        """
        if self.is_closed:
            return
        logger.error(f"Connection error: {type(error).__name__}: {error}")
        channel = self._channel
        if channel is not None and not channel.is_closed():
            await channel.close(error)

    async def reconnect(self) -> Any:
        """
        Open a fresh channel and replay the handshake with the stored parameters.

        The same PersistencePolicy object is kept, so the remaining retry
        budget carries forward. A transport that cannot be opened counts as a
        new connection loss; other handshake errors are logged.

        Returns
        -------
        Any
            The handshake result, or None if the reconnect failed.
        """
        if self.is_closed:
            return None
        params = self._session.handshake_params
        if params is None:
            raise RpcInvalidStateError("reconnect() called before init_session()")

        logger.info("electrum reconnect")
        self._session.reconnect_count += 1
        self._session.time_last_call = 0.0
        try:
            await self.connect()
            return await self._handshake(params)
        except RpcError as e:
            if self.is_closed:
                logger.debug(f"Reconnect abandoned, session closed: {e}")
            elif isinstance(e, RpcTransportError):
                logger.warning(f"Reconnect failed: {e}")
                self.on_connection_closed(e)
            else:
                logger.error(
                    f"Handshake after reconnect failed: {type(e).__name__}: {e}"
                )
        return None

    async def close(self) -> None:
        """
        Close the session for good. Idempotent.

        After close no timer fires, no reconnect happens and the persistence
        callback is never invoked.
        """
        if self.is_closed:
            logger.debug("Close already in progress, skipping duplicate call")
            return

        logger.info("Closing ElectrumX session...")
        self._session.state = SessionState.CLOSED
        self._keepalive.disable()

        self._cancel_settle()

        if self._channel is not None:
            await self._channel.close()

    def _cancel_settle(self) -> None:
        settle, self._settle_task = self._settle_task, None
        if settle is not None and not settle.done() and settle is not asyncio.current_task():
            settle.cancel()


def _negotiated_version(result: Any, requested: str) -> str:
    if isinstance(result, (list, tuple)) and len(result) >= 2 and isinstance(result[1], str):
        return result[1]
    return requested
