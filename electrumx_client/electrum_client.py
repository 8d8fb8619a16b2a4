"""
ElectrumClient: a long-lived, self-healing session to an ElectrumX server.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from ._internal.dispatcher import RequestDispatcher
from ._internal.keepalive import KeepaliveMonitor
from ._internal.rpc_retry import RpcRetryManager
from .config import ElectrumClientConfig, HandshakeParams, PersistencePolicy
from .connection_manager import ConnectionManager, Session, SessionState
from .electrum_methods import ElectrumMethods
from .logger import get_logger
from .rpc_channel import RpcChannel, SocketFactory
from .subscriptions import Listener, SubscriptionRegistry
from .transport import open_socket

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .config import RpcKeepaliveConfig, RpcReconnectConfig, ServerConfig
    from .schemas import BatchItemResult
    from .transport import SimpleSocket

logger = get_logger(__name__)


class _DefaultPolicy:
    """Marker for "use PersistencePolicy()"; None already means "always reconnect"."""


DEFAULT_POLICY: Any = _DefaultPolicy()


class ElectrumClient(ElectrumMethods):
    """
    Client session for an ElectrumX server.

    The client keeps one logical session alive across physical connections:
    idle connections are probed with ``server.ping``, dead ones are detected
    and the connection is re-established according to the session's
    PersistencePolicy, replaying the ``server.version`` handshake.
    Subscriptions to ``blockchain.headers.subscribe`` and
    ``blockchain.scripthash.subscribe`` are dropped on every connection loss;
    re-subscribe from the persistence callback or after ``is_connected``.

    Parameters
    ----------
    server : ServerConfig
        Server address and transport.
    config : ElectrumClientConfig | None, optional
        Behaviour configuration. Defaults to ElectrumClientConfig().
    socket_factory : SocketFactory | None, optional
        Coroutine function returning a connected SimpleSocket. Defaults to
        opening ``server`` with ``transport.open_socket``.

    Examples
    --------
    Using the client as a context manager::

        server = ServerConfig("electrum.example.org", 50002)
        async with ElectrumClient(server) as client:
            await client.init_electrum("my-wallet", "1.4")
            client.subscribe("blockchain.headers.subscribe", on_header)
            tip = await client.blockchain_headers_subscribe()

    Giving up after three reconnects::

        def on_give_up():
            print("server unreachable")

        await client.init_electrum(
            "my-wallet", "1.4", PersistencePolicy(max_retry=3, callback=on_give_up)
        )
    """

    def __init__(
        self,
        server: ServerConfig,
        config: ElectrumClientConfig | None = None,
        socket_factory: SocketFactory | None = None,
    ) -> None:
        self.server = server

        # Initialize and validate configuration
        self.config = config or ElectrumClientConfig()
        self.config.validate()

        self._socket_factory = socket_factory or self._open_socket
        self._retry_manager = RpcRetryManager.from_config(self.config.retry)

        session = Session()
        self._registry = SubscriptionRegistry()
        self._keepalive = KeepaliveMonitor(
            last_call=lambda: session.time_last_call,
            ping_fn=self.server_ping,
            on_timeout=self._on_keepalive_timeout,
            config=self.config.keepalive,
            clock=time.monotonic,
        )
        self._dispatcher = RequestDispatcher(
            channel_provider=lambda: self._manager.channel,
            session=session,
            keepalive=self._keepalive,
            clock=time.monotonic,
        )
        self._manager = ConnectionManager(
            channel_factory=self._new_channel,
            registry=self._registry,
            session=session,
            dispatcher=self._dispatcher,
            keepalive=self._keepalive,
            reconnect=self.config.reconnect,
        )

    async def _open_socket(self) -> SimpleSocket:
        return await open_socket(
            self.server,
            max_message_size=self.config.backpressure.max_message_size,
            websocket_kwargs=self.config.websocket_kwargs,
        )

    def _new_channel(self) -> RpcChannel:
        return RpcChannel(
            self._socket_factory,
            max_pending_requests=self.config.backpressure.max_pending_requests,
        )

    async def _on_keepalive_timeout(self, error: BaseException) -> None:
        await self._manager.on_connection_error(error)

    @property
    def session(self) -> Session:
        return self._manager.session

    @property
    def state(self) -> SessionState:
        return self._manager.state

    @property
    def protocol_version(self) -> str | None:  # type: ignore[override]
        return self._manager.session.protocol_version

    @property
    def is_connected(self) -> bool:
        return self._manager.is_connected

    @property
    def subscriptions(self) -> SubscriptionRegistry:
        return self._registry

    async def connect(self) -> ElectrumClient:
        """
        Open the connection without handshaking.

        Raises
        ------
        RpcTransportError
            If the server cannot be reached. Not retried.
        """
        await self._manager.connect()
        return self

    async def init_electrum(
        self,
        client_name: str,
        protocol_version: str,
        persistence_policy: PersistencePolicy | None = DEFAULT_POLICY,
        keepalive: RpcKeepaliveConfig | None = None,
        reconnect: RpcReconnectConfig | None = None,
    ) -> Any:
        """
        Connect (if needed) and announce the client with ``server.version``.

        Parameters
        ----------
        client_name : str
            Client software name sent to the server.
        protocol_version : str
            Requested protocol version, e.g. "1.4".
        persistence_policy : PersistencePolicy | None, optional
            Defaults to ``PersistencePolicy(max_retry=1000)``. Pass None to
            reconnect forever.
        keepalive, reconnect : optional
            Per-session overrides of the client configuration.

        Returns
        -------
        Any
            The ``server.version`` result.
        """
        if persistence_policy is DEFAULT_POLICY:
            persistence_policy = PersistencePolicy()
        logger.debug(f"Initializing session as {client_name} (protocol {protocol_version})")
        return await self.init_session(
            HandshakeParams(client_name, protocol_version),
            persistence_policy,
            keepalive=keepalive,
            reconnect=reconnect,
        )

    async def init_session(
        self,
        handshake_params: HandshakeParams,
        persistence_policy: PersistencePolicy | None,
        keepalive: RpcKeepaliveConfig | None = None,
        reconnect: RpcReconnectConfig | None = None,
    ) -> Any:
        return await self._manager.init_session(
            handshake_params, persistence_policy, keepalive=keepalive, reconnect=reconnect
        )

    async def reconnect(self) -> Any:
        return await self._manager.reconnect()

    async def request(self, method: str, params: Sequence[Any] | None = None) -> Any:
        """
        Call ``method`` with positional ``params`` and return its result.

        Raises
        ------
        RpcInvalidStateError
            Before the first connect.
        RpcChannelClosedError
            If the connection is lost before the response arrives.
        RemoteError
            If the server answers with an error.
        """
        return await self._dispatcher.request(method, params)

    async def request_batch(
        self,
        method: str,
        params_list: Sequence[Any],
        secondary_param: Any = None,
    ) -> list[BatchItemResult]:
        return await self._dispatcher.request_batch(
            method, params_list, secondary_param
        )

    def subscribe(self, event: str, listener: Listener) -> None:
        """
        Register ``listener`` for server pushes named ``event``.

        This only routes notifications; the server-side subscription is made
        with the matching ``*_subscribe`` call.
        """
        self._registry.subscribe(event, listener)

    def unsubscribe(self, event: str, listener: Listener) -> bool:
        return self._registry.unsubscribe(event, listener)

    def unsubscribe_all(self, event: str) -> None:
        self._registry.unsubscribe_all(event)

    async def close(self) -> None:
        """
        Close the session for good. Idempotent.

        No reconnect, keepalive probe or persistence callback happens
        afterwards.
        """
        await self._manager.close()

    async def __aenter__(self) -> ElectrumClient:
        """
        Connect, retrying with tenacity if ``config.retry.enabled``.
        """
        connect_with_retry = self._retry_manager.wrap(self.connect)
        return await connect_with_retry()

    async def __aexit__(self, *args: Any, **kwargs: Any) -> None:
        await self.close()
