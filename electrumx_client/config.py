"""Configuration dataclasses for the ElectrumX session client.

This module provides immutable, validated configuration objects for the
server endpoint, keepalive probing, reconnect pacing, backpressure and
caller-side connect retry, plus the two per-session value objects:
``HandshakeParams`` and the mutable ``PersistencePolicy``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

SUPPORTED_PROTOCOLS = ("tcp", "tls", "ws", "wss")


@dataclass(frozen=True)
class ServerConfig:
    """Where and how to reach the ElectrumX server.

    Parameters
    ----------
    host : str
        Server hostname or IP address.
    port : int
        Server port (e.g. 50001 for tcp, 50002 for tls, 50004 for wss).
    protocol : str, default "tls"
        One of "tcp", "tls" (newline-delimited JSON over a stream socket) or
        "ws", "wss" (JSON text frames over a WebSocket).
    open_timeout : float, default 30.0
        Seconds allowed for the socket (and TLS / WebSocket handshake) to open.
    ssl_verify : bool, default True
        Verify the server certificate for "tls" and "wss". Many public
        ElectrumX servers use self-signed certificates; set to False for those.
    ws_path : str, default "/"
        Request path used for "ws" / "wss" connections.

    Examples
    --------
    >>> config = ServerConfig(host="electrum.example.org", port=50002)
    >>> config.uri
    'tls://electrum.example.org:50002'

    >>> config = ServerConfig(host="localhost", port=50003, protocol="ws")
    >>> config.uri
    'ws://localhost:50003/'
    """

    host: str
    port: int
    protocol: str = "tls"
    open_timeout: float = 30.0
    ssl_verify: bool = True
    ws_path: str = "/"

    def __post_init__(self) -> None:
        if self.protocol not in SUPPORTED_PROTOCOLS:
            raise ValueError(
                f"Invalid protocol: '{self.protocol}'. "
                f"Supported values: {', '.join(SUPPORTED_PROTOCOLS)}"
            )

        if not 0 < self.port < 65536:
            raise ValueError(f"port must be in 1..65535, got {self.port}")

        if self.open_timeout <= 0:
            raise ValueError(f"open_timeout must be positive, got {self.open_timeout}")

    @property
    def uses_tls(self) -> bool:
        return self.protocol in ("tls", "wss")

    @property
    def is_websocket(self) -> bool:
        return self.protocol in ("ws", "wss")

    @property
    def uri(self) -> str:
        if self.is_websocket:
            return f"{self.protocol}://{self.host}:{self.port}{self.ws_path}"
        return f"{self.protocol}://{self.host}:{self.port}"

    def validate(self) -> None:
        """Explicitly validate the configuration.

        Validation is automatically performed in __post_init__, so this is
        typically not needed.
        """


@dataclass(frozen=True)
class RpcKeepaliveConfig:
    """Configuration for idle-connection liveness probing.

    After ``silence_window`` seconds without a completed call the session
    sends a ``server.ping`` probe. If the probe neither resolves nor rejects
    within ``probe_timeout`` seconds the connection is treated as dead.

    Parameters
    ----------
    silence_window : float, default 5.0
        Seconds of silence after the last completed call before probing.
    probe_timeout : float, default 9.0
        Seconds a probe may stay in flight before the connection is failed.
    enabled : bool, default True
        Set to False to disable probing entirely.

    Examples
    --------
    >>> config = RpcKeepaliveConfig(silence_window=30.0, probe_timeout=10.0)
    >>> config.validate()
    """

    silence_window: float = 5.0
    probe_timeout: float = 9.0
    enabled: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        Raises
        ------
        ValueError
            If silence_window or probe_timeout is not positive.
        """
        if self.silence_window <= 0:
            raise ValueError(
                f"silence_window must be positive, got {self.silence_window}"
            )

        if self.probe_timeout <= 0:
            raise ValueError(f"probe_timeout must be positive, got {self.probe_timeout}")

    def validate(self) -> None:
        """Explicitly validate the configuration.

        Validation is already done in __post_init__.
        """


@dataclass(frozen=True)
class RpcReconnectConfig:
    """Pacing of automatic reconnection.

    Parameters
    ----------
    settle_delay : float, default 1.0
        Seconds to wait after a detected connection failure before the
        persistence policy is applied. Prevents tight reconnect loops.
    """

    settle_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.settle_delay < 0:
            raise ValueError(
                f"settle_delay must be non-negative, got {self.settle_delay}"
            )

    def validate(self) -> None:
        """Explicitly validate the configuration."""


@dataclass(frozen=True)
class RpcBackpressureConfig:
    """Configuration for backpressure management and message limits.

    Parameters
    ----------
    max_pending_requests : int, default 1000
        Maximum number of calls awaiting a response. Further calls raise
        RpcBackpressureError until responses arrive.
    max_message_size : int, default 10485760
        Maximum size in bytes of a single incoming message (default 10MB).

    Examples
    --------
    >>> config = RpcBackpressureConfig(
    ...     max_pending_requests=500,
    ...     max_message_size=5 * 1024 * 1024,  # 5MB
    ... )
    >>> config.validate()
    """

    max_pending_requests: int = 1000
    max_message_size: int = 10 * 1024 * 1024  # 10MB

    def __post_init__(self) -> None:
        if self.max_pending_requests <= 0:
            raise ValueError(
                f"max_pending_requests must be positive, got {self.max_pending_requests}"
            )

        if self.max_message_size <= 0:
            raise ValueError(
                f"max_message_size must be positive, got {self.max_message_size}"
            )

    def validate(self) -> None:
        """Explicitly validate the configuration."""


@dataclass(frozen=True)
class RpcRetryConfig:
    """Caller-side retry of the *initial* connect.

    The connection manager never retries the initial connect itself. This
    configuration only applies to ``async with ElectrumClient(...)``, which
    wraps its connect in a tenacity retry when ``enabled`` is True.

    Parameters
    ----------
    enabled : bool, default False
        Whether the context-manager connect is retried.
    max_attempts : int, default 5
        Maximum number of attempts (including the first one).
    min_wait : float, default 0.1
        Minimum wait in seconds before the first retry.
    max_wait : float, default 30.0
        Cap on the exponential backoff between attempts.
    jitter : bool, default True
        Randomize the backoff to avoid synchronized retries.

    Examples
    --------
    >>> config = RpcRetryConfig(enabled=True, max_attempts=3)
    >>> config.validate()
    """

    enabled: bool = False
    max_attempts: int = 5
    min_wait: float = 0.1
    max_wait: float = 30.0
    jitter: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        Raises
        ------
        ValueError
            If max_attempts is not positive, if min_wait or max_wait are negative,
            or if max_wait is less than min_wait.
        """
        if self.max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {self.max_attempts}")

        if self.min_wait < 0:
            raise ValueError(f"min_wait must be non-negative, got {self.min_wait}")

        if self.max_wait < 0:
            raise ValueError(f"max_wait must be non-negative, got {self.max_wait}")

        if self.max_wait < self.min_wait:
            raise ValueError(
                f"max_wait ({self.max_wait}s) must be >= min_wait ({self.min_wait}s)"
            )

    def validate(self) -> None:
        """Explicitly validate the configuration."""


@dataclass(frozen=True)
class ElectrumClientConfig:
    """Complete configuration for ElectrumClient behavior.

    Parameters
    ----------
    keepalive : RpcKeepaliveConfig, default RpcKeepaliveConfig()
        Idle probing. Can be overridden per session in init_session().
    reconnect : RpcReconnectConfig, default RpcReconnectConfig()
        Reconnect pacing. Can be overridden per session in init_session().
    backpressure : RpcBackpressureConfig, default RpcBackpressureConfig()
        Pending-call and message-size limits of the RPC channel.
    retry : RpcRetryConfig, default RpcRetryConfig()
        Caller-side connect retry used by the async context manager.
    websocket_kwargs : dict[str, Any], default {}
        Extra keyword arguments for ``websockets.connect`` ("ws"/"wss" only).

    Examples
    --------
    >>> config = ElectrumClientConfig(
    ...     keepalive=RpcKeepaliveConfig(silence_window=10.0),
    ...     retry=RpcRetryConfig(enabled=True),
    ... )
    >>> config.validate()
    """

    keepalive: RpcKeepaliveConfig = field(default_factory=RpcKeepaliveConfig)
    reconnect: RpcReconnectConfig = field(default_factory=RpcReconnectConfig)
    backpressure: RpcBackpressureConfig = field(default_factory=RpcBackpressureConfig)
    retry: RpcRetryConfig = field(default_factory=RpcRetryConfig)
    websocket_kwargs: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """Validate all sub-configurations.

        Raises
        ------
        ValueError
            If any sub-configuration validation fails.
        """
        self.keepalive.validate()
        self.reconnect.validate()
        self.backpressure.validate()
        self.retry.validate()


@dataclass(frozen=True)
class HandshakeParams:
    """Client identity announced with ``server.version``.

    Kept by the session so the handshake can be replayed after every
    reconnect.
    """

    client_name: str
    protocol_version: str


@dataclass
class PersistencePolicy:
    """How a session reacts to detected connection failures.

    ``max_retry`` is decremented once per automatic reconnect. When it is
    exhausted, ``callback`` (if any) is invoked once per further failure
    instead of reconnecting; without a callback the session stays closed.
    Passing ``None`` instead of a policy object means "always reconnect".

    The object is mutable: the same instance is carried across
    reconnects so that the remaining retry budget carries forward.

    Parameters
    ----------
    max_retry : int, default 1000
        Remaining automatic reconnects. Never negative.
    callback : Callable[[], Any] | None, default None
        Zero-argument function (or coroutine function) invoked when the
        retry budget is exhausted.

    Examples
    --------
    >>> policy = PersistencePolicy(max_retry=2)
    >>> policy.consume()
    >>> policy.max_retry
    1
    """

    max_retry: int = 1000
    callback: Callable[[], Any] | None = None

    def __post_init__(self) -> None:
        if self.max_retry < 0:
            raise ValueError(f"max_retry must be non-negative, got {self.max_retry}")

    @property
    def exhausted(self) -> bool:
        return self.max_retry <= 0

    def consume(self) -> None:
        """Use up one retry. Stops at zero."""
        if self.max_retry > 0:
            self.max_retry -= 1
