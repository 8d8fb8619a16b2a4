"""
electrumx_client - asyncio session client for ElectrumX servers

Keeps a JSON-RPC session to an ElectrumX server alive across connection
failures: idle connections are probed, dead ones are replaced according to a
persistence policy, and server pushes are routed to local listeners.
"""

# Configuration classes
from electrumx_client.config import (
    ElectrumClientConfig,
    HandshakeParams,
    PersistencePolicy,
    RpcBackpressureConfig,
    RpcKeepaliveConfig,
    RpcReconnectConfig,
    RpcRetryConfig,
    ServerConfig,
)

# Session lifecycle
from electrumx_client.connection_manager import (
    ConnectionManager,
    Session,
    SessionState,
)
from electrumx_client.electrum_client import ElectrumClient
from electrumx_client.electrum_methods import ElectrumMethods

# Exceptions
from electrumx_client.exceptions import (
    KeepaliveTimeoutError,
    RemoteError,
    RpcBackpressureError,
    RpcChannelClosedError,
    RpcError,
    RpcInvalidStateError,
    RpcMessageTooLargeError,
    RpcTransportError,
)

# Logging utilities
from electrumx_client.logger import LoggingModes, get_logger, logging_config
from electrumx_client.rpc_channel import (
    OnClosedCallback,
    OnNotificationCallback,
    RpcChannel,
)

# JSON-RPC schemas
from electrumx_client.schemas import (
    BatchItemResult,
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
)
from electrumx_client.subscriptions import SubscriptionRegistry

# Socket abstractions (for advanced usage)
from electrumx_client.transport import (
    JsonStreamSocket,
    JsonWebSocket,
    SimpleSocket,
    open_socket,
)

# Utility functions
from electrumx_client.utils import gen_uid

__version__ = "0.1.0"

__all__ = [
    "BatchItemResult",
    "ConnectionManager",
    "ElectrumClient",
    "ElectrumClientConfig",
    "ElectrumMethods",
    "HandshakeParams",
    "JsonRpcError",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "JsonStreamSocket",
    "JsonWebSocket",
    "KeepaliveTimeoutError",
    "LoggingModes",
    "OnClosedCallback",
    "OnNotificationCallback",
    "PersistencePolicy",
    "RemoteError",
    "RpcBackpressureConfig",
    "RpcBackpressureError",
    "RpcChannel",
    "RpcChannelClosedError",
    "RpcError",
    "RpcInvalidStateError",
    "RpcKeepaliveConfig",
    "RpcMessageTooLargeError",
    "RpcReconnectConfig",
    "RpcRetryConfig",
    "RpcTransportError",
    "ServerConfig",
    "Session",
    "SessionState",
    "SimpleSocket",
    "SubscriptionRegistry",
    "gen_uid",
    "get_logger",
    "logging_config",
    "open_socket",
]
