"""
Retry management component for the initial connect of ElectrumClient.

This module provides RpcRetryManager, which wraps a connect coroutine in a
tenacity retry. The connection manager itself never retries the initial
connect; this is the opt-in, caller-side alternative used by
``async with ElectrumClient(...)``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

import tenacity
from tenacity import retry, stop_after_attempt, wait
from tenacity.retry import retry_if_exception_type

from ..exceptions import RpcTransportError
from ..logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..config import RpcRetryConfig

logger = get_logger(__name__)

T = TypeVar("T")


def _log_retry_attempt(retry_state: tenacity.RetryCallState) -> None:
    """
    Log the failure that triggered the upcoming retry.

    Parameters
    ----------
    retry_state : tenacity.RetryCallState
        The current retry state containing exception information.
    """
    outcome = retry_state.outcome
    if outcome is not None:
        logger.warning(
            f"Connect attempt {retry_state.attempt_number} failed: "
            f"{outcome.exception()}"
        )


class RpcRetryManager:
    """
    Manages retry logic for connection attempts.

    Only RpcTransportError (the socket could not be opened) is retried.
    Handshake errors reported by the server are not: retrying would send
    the same ``server.version`` again and get the same answer.

    Parameters
    ----------
    retry_config : dict[str, Any] | bool | None, optional
        Retry configuration. Can be:
        - None: Use default configuration with exponential backoff
        - False: Disable retries entirely
        - dict: Custom tenacity configuration

    Usage
    -----
    ```python
    retry_mgr = RpcRetryManager.from_config(RpcRetryConfig(enabled=True))
    connect_with_retry = retry_mgr.wrap(client.connect)
    await connect_with_retry()
    ```
    """

    DEFAULT_CONFIG: dict[str, Any] = {
        "wait": wait.wait_random_exponential(min=0.1, max=30),
        # MUST have stop condition to prevent infinite retries
        "stop": stop_after_attempt(5),
        "retry": retry_if_exception_type(RpcTransportError),
        "reraise": True,
        "before_sleep": _log_retry_attempt,
    }

    def __init__(self, retry_config: dict[str, Any] | bool | None = None) -> None:
        if retry_config is False:
            self._config: dict[str, Any] | None = None
        elif retry_config is None:
            self._config = self.DEFAULT_CONFIG.copy()
        elif isinstance(retry_config, dict):
            self._config = retry_config
        else:
            # Handle invalid config (bool True) by disabling
            self._config = None

    @classmethod
    def from_config(cls, config: RpcRetryConfig) -> RpcRetryManager:
        """
        Build a manager from an RpcRetryConfig.

        Returns a disabled manager when ``config.enabled`` is False.
        """
        if not config.enabled:
            return cls(False)

        backoff = (
            wait.wait_random_exponential(min=config.min_wait, max=config.max_wait)
            if config.jitter
            else wait.wait_exponential(min=config.min_wait, max=config.max_wait)
        )
        return cls(
            {
                "wait": backoff,
                "stop": stop_after_attempt(config.max_attempts),
                "retry": retry_if_exception_type(RpcTransportError),
                "reraise": True,
                "before_sleep": _log_retry_attempt,
            }
        )

    @property
    def is_enabled(self) -> bool:
        return self._config is not None

    @property
    def config(self) -> dict[str, Any] | None:
        return self._config

    def wrap(self, func: Callable[[], Awaitable[T]]) -> Callable[[], Awaitable[T]]:
        """
        Wrap an async function with retry logic.

        If retries are disabled, returns the original function unchanged.

        Parameters
        ----------
        func : Callable[[], Awaitable[T]]
            The async function to wrap with retry logic.

        Returns
        -------
        Callable[[], Awaitable[T]]
            The wrapped function with retry behavior, or the original
            function if retries are disabled.
        """
        if self._config is None:
            return func

        wrapped_func: Callable[[], Awaitable[T]] = retry(**self._config)(func)
        return wrapped_func
