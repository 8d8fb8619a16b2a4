"""
Protocol handler component for incoming JSON-RPC message routing.

This module parses messages read from the socket and routes them either to
the promise manager (responses, including batch responses) or to the
notification callback (server pushes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from ..logger import get_logger
from ..schemas import JsonRpcNotification, JsonRpcResponse
from ..utils import pydantic_parse

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .promise_manager import RpcPromiseManager

logger = get_logger("RPC_PROTOCOL")


class RpcProtocolHandler:
    """
    Routes incoming JSON-RPC messages.

    This component:
    - Parses incoming messages into responses/notifications
    - Resolves pending calls through the promise manager
    - Hands server pushes to the notification callback
    - Drops (and logs) anything it cannot interpret
    """

    def __init__(
        self,
        promise_manager: RpcPromiseManager,
        notification_callback: Callable[[str, Any], Awaitable[None]],
    ) -> None:
        """
        Initialize the protocol handler.

        Args:
            promise_manager: Component for managing request/response promises
            notification_callback: Async function called with (method, params)
                                   for every server push
        """
        self._promise_manager = promise_manager
        self._on_notification = notification_callback

    async def handle_message(self, data: Any) -> None:
        """
        Route an incoming message to the appropriate handler.

        - list: a batch response, every element is handled as a response
        - dict with "method" and no id: a notification
        - dict with "result" or "error": a response

        Malformed messages are logged and dropped; they never close the
        channel.
        """
        logger.debug(f"Processing received message: {data}")
        if isinstance(data, list):
            for item in data:
                await self.handle_message(item)
            return

        try:
            if not isinstance(data, dict):
                raise ValueError(f"Expected dict or list, got {type(data)}")

            if "method" in data:
                if data.get("id") is not None:
                    # ElectrumX never calls client methods; nothing can answer this
                    logger.warning(
                        f"Ignoring server request for method '{data.get('method')}'"
                    )
                    return
                notification = pydantic_parse(JsonRpcNotification, data)
                await self.handle_notification(notification)
                return

            if "result" in data or "error" in data:
                response = pydantic_parse(JsonRpcResponse, data)
                self.handle_response(response)
                return

            raise ValueError(f"Unknown message format: {data}")

        except (ValidationError, ValueError) as e:
            logger.error(f"Failed to parse JSON-RPC message: {type(e).__name__}: {e}")

    def handle_response(self, response: JsonRpcResponse) -> None:
        """
        Resolve the pending call matching ``response``.
        """
        logger.debug(f"Handling RPC response: {response}")
        self._promise_manager.store_response(response)

    async def handle_notification(self, notification: JsonRpcNotification) -> None:
        """
        Forward a server push to the notification callback.
        """
        logger.debug(f"Handling notification: {notification.method}")
        await self._on_notification(notification.method, notification.params)
