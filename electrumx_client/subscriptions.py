"""
Subscription registry mapping server push event names to local listeners.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any

from .logger import get_logger

logger = get_logger("SUBSCRIPTIONS")

Listener = Callable[[Any], Any]


class SubscriptionRegistry:
    """
    Ordered listener lists keyed by exact event name.

    Event names are the ElectrumX subscription method names, e.g.
    ``blockchain.headers.subscribe`` or ``blockchain.scripthash.subscribe``.
    Listeners may be plain callables or coroutine functions taking the
    notification payload; they run in registration order, and a failing
    listener is logged without stopping the others.

    Examples
    --------
    >>> registry = SubscriptionRegistry()
    >>> registry.subscribe("blockchain.headers.subscribe", print)
    >>> registry.listener_count("blockchain.headers.subscribe")
    1
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def subscribe(self, event: str, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def unsubscribe(self, event: str, listener: Listener) -> bool:
        """
        Remove one registration of ``listener`` for ``event``.

        Returns
        -------
        bool
            True if the listener was registered, False otherwise.
        """
        listeners = self._listeners.get(event)
        if not listeners or listener not in listeners:
            return False
        listeners.remove(listener)
        if not listeners:
            del self._listeners[event]
        return True

    def unsubscribe_all(self, event: str) -> None:
        """Remove every listener of ``event``. Other events are untouched."""
        self._listeners.pop(event, None)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def events(self) -> list[str]:
        return list(self._listeners)

    async def emit(self, event: str, payload: Any) -> None:
        """
        Deliver ``payload`` to every listener of ``event``.

        The listener list is snapshotted first, so listeners added or removed
        during delivery only take effect for the next notification.
        """
        listeners = list(self._listeners.get(event, ()))
        if not listeners:
            logger.debug(f"No listeners for notification '{event}'")
            return

        for listener in listeners:
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                listener_name = getattr(listener, "__name__", str(listener))
                logger.error(
                    f"Listener {listener_name} for '{event}' failed: "
                    f"{type(e).__name__}: {e}",
                    exc_info=True,
                )
