"""
Tests for ConnectionManager: reconnect policy and session lifecycle.

The manager is driven through ElectrumClient wired to a scripted in-memory
server, with a short settle delay and keepalive disabled unless a test
needs it.

This test module covers:
- Persistence policy: retry budget, exhaustion callback, infinite retry
- Transport failures during reconnect
- Stale channel events
- close() making every pending timer inert, even mid-reconnect
"""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from conftest import FakeElectrumServer, wait_until

from electrumx_client.config import (
    ElectrumClientConfig,
    PersistencePolicy,
    RpcKeepaliveConfig,
    RpcReconnectConfig,
    ServerConfig,
)
from electrumx_client.connection_manager import SessionState
from electrumx_client.electrum_client import ElectrumClient
from electrumx_client.exceptions import RpcInvalidStateError, RpcTransportError

SETTLE = 0.01

pytestmark = pytest.mark.slow


def make_client(
    server: FakeElectrumServer,
    settle_delay: float = SETTLE,
    keepalive: RpcKeepaliveConfig | None = None,
) -> ElectrumClient:
    config = ElectrumClientConfig(
        keepalive=keepalive or RpcKeepaliveConfig(enabled=False),
        reconnect=RpcReconnectConfig(settle_delay=settle_delay),
    )
    return ElectrumClient(
        ServerConfig("localhost", 50001, protocol="tcp"),
        config=config,
        socket_factory=server.open,
    )


@pytest_asyncio.fixture
async def client(electrum_server: FakeElectrumServer) -> ElectrumClient:
    client = make_client(electrum_server)
    yield client
    await client.close()


async def lose_connection(client: ElectrumClient, server: FakeElectrumServer) -> None:
    """Drop the current connection and wait until the manager has reacted."""
    channel = client._manager.channel
    server.current.drop()
    await wait_until(
        lambda: channel.is_closed()
        and (
            client._manager.channel is not channel
            or client.state is not SessionState.OPEN
        )
    )


async def settle() -> None:
    await asyncio.sleep(SETTLE * 10)


# ============================================================================
# Persistence Policy
# ============================================================================


class TestPersistencePolicy:
    """Test how detected connection losses are handled."""

    @pytest.mark.asyncio
    async def test_retry_budget(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        """
        Test a policy with max_retry=2 and no callback.

        Verifies that:
        - Each of the first two losses reconnects and decrements max_retry
        - The handshake is replayed on every new connection
        - The third loss leaves the session disconnected with no timer pending
        """
        policy = PersistencePolicy(max_retry=2)
        await client.init_electrum("test-client", "1.4", policy)

        for expected_remaining in (1, 0):
            await lose_connection(client, electrum_server)
            await wait_until(lambda: client.is_connected)
            assert policy.max_retry == expected_remaining

        await settle()
        assert len(electrum_server.sockets) == 3
        for sock in electrum_server.sockets:
            assert sock.sent_methods() == ["server.version"]
            assert sock.sent[0]["params"] == ["test-client", "1.4"]

        await lose_connection(client, electrum_server)
        await settle()

        assert len(electrum_server.sockets) == 3
        assert policy.max_retry == 0
        assert client.state is SessionState.DISCONNECTED
        assert not client._manager.reconnect_pending
        assert not client._keepalive.is_armed

    @pytest.mark.asyncio
    async def test_policy_object_is_preserved(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        """
        Verifies that:
        - The very same policy object stays on the session across reconnects
        """
        policy = PersistencePolicy(max_retry=5)
        await client.init_electrum("test-client", "1.4", policy)

        await lose_connection(client, electrum_server)
        await wait_until(lambda: client.is_connected)

        assert client.session.persistence_policy is policy
        assert policy.max_retry == 4
        assert client.session.reconnect_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_policy_calls_callback(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        """
        Test max_retry=0 with a callback.

        Verifies that:
        - The callback is called once per loss
        - No reconnect happens
        """
        callback = MagicMock()
        await client.init_electrum(
            "test-client", "1.4", PersistencePolicy(max_retry=0, callback=callback)
        )

        await lose_connection(client, electrum_server)
        await wait_until(lambda: callback.call_count == 1)
        await settle()

        callback.assert_called_once_with()
        assert len(electrum_server.sockets) == 1
        assert client.state is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        callback = AsyncMock()
        await client.init_electrum(
            "test-client", "1.4", PersistencePolicy(max_retry=0, callback=callback)
        )

        await lose_connection(client, electrum_server)
        await wait_until(lambda: callback.await_count == 1)

    @pytest.mark.asyncio
    async def test_callback_can_reconnect(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        """
        Verifies that:
        - The exhaustion callback may call reconnect() itself
        - The policy is left exhausted, so the next loss calls it again
        """

        async def revive() -> None:
            await client.reconnect()

        callback = AsyncMock(side_effect=revive)
        await client.init_electrum(
            "test-client", "1.4", PersistencePolicy(max_retry=0, callback=callback)
        )

        await lose_connection(client, electrum_server)
        await wait_until(lambda: len(electrum_server.sockets) == 2 and client.is_connected)

        await lose_connection(client, electrum_server)
        await wait_until(lambda: callback.await_count == 2)

    @pytest.mark.asyncio
    async def test_failing_callback_is_contained(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        callback = MagicMock(side_effect=RuntimeError("wallet gone"))
        await client.init_electrum(
            "test-client", "1.4", PersistencePolicy(max_retry=0, callback=callback)
        )

        await lose_connection(client, electrum_server)
        await wait_until(lambda: callback.call_count == 1)
        await settle()

        assert client.state is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_none_policy_always_reconnects(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        """
        Verifies that:
        - With no policy object every loss leads to a reconnect
        """
        await client.init_electrum("test-client", "1.4", None)

        for attempt in range(5):
            await lose_connection(client, electrum_server)
            await wait_until(
                lambda: len(electrum_server.sockets) == attempt + 2
                and client.is_connected
            )

        assert client.session.persistence_policy is None

    @pytest.mark.asyncio
    async def test_default_policy(self, client: ElectrumClient) -> None:
        """
        Verifies that:
        - init_electrum defaults to max_retry=1000 without callback
        """
        await client.init_electrum("test-client", "1.4")

        policy = client.session.persistence_policy
        assert policy == PersistencePolicy(max_retry=1000, callback=None)


# ============================================================================
# Transport Failures
# ============================================================================


class TestTransportFailures:
    """Test connects that cannot open the socket."""

    @pytest.mark.asyncio
    async def test_initial_connect_not_retried(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        """
        Verifies that:
        - A refused initial connect raises RpcTransportError
        - No reconnect is scheduled
        """
        electrum_server.refuse = True

        with pytest.raises(RpcTransportError):
            await client.init_electrum("test-client", "1.4")
        await settle()

        assert electrum_server.connect_attempts == 1
        assert not client._manager.reconnect_pending

    @pytest.mark.asyncio
    async def test_refused_reconnect_counts_as_failure(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        """
        Test reconnects against a server that refuses connections.

        Verifies that:
        - Each refused reconnect is treated as a new loss
        - The retry budget is consumed one attempt per loss and then stops
        """
        callback = MagicMock()
        policy = PersistencePolicy(max_retry=3, callback=callback)
        await client.init_electrum("test-client", "1.4", policy)

        electrum_server.refuse = True
        await lose_connection(client, electrum_server)
        await wait_until(lambda: callback.call_count == 1)
        await settle()

        assert electrum_server.connect_attempts == 1 + 3
        assert policy.max_retry == 0
        callback.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_recovers_when_server_returns(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        policy = PersistencePolicy(max_retry=10)
        await client.init_electrum("test-client", "1.4", policy)

        electrum_server.refuse = True
        await lose_connection(client, electrum_server)
        await wait_until(lambda: electrum_server.connect_attempts >= 3)
        electrum_server.refuse = False

        await wait_until(lambda: client.is_connected)
        assert len(electrum_server.sockets) == 2


# ============================================================================
# Lifecycle
# ============================================================================


class TestLifecycle:
    """Test connect/close state handling."""

    @pytest.mark.asyncio
    async def test_states(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        assert client.state is SessionState.IDLE

        await client.init_electrum("test-client", "1.4")
        assert client.state is SessionState.OPEN

        await client.close()
        assert client.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_close_cancels_pending_reconnect(
        self, electrum_server: FakeElectrumServer
    ) -> None:
        """
        Test close() while the settle delay is running.

        Verifies that:
        - No reconnect happens after close()
        - The exhaustion callback is never called
        """
        callback = MagicMock()
        client = make_client(electrum_server, settle_delay=0.1)
        await client.init_electrum(
            "test-client", "1.4", PersistencePolicy(max_retry=1, callback=callback)
        )

        await lose_connection(client, electrum_server)
        assert client._manager.reconnect_pending
        await client.close()
        await asyncio.sleep(0.2)

        assert len(electrum_server.sockets) == 1
        callback.assert_not_called()
        assert client.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, client: ElectrumClient) -> None:
        await client.init_electrum("test-client", "1.4")

        await client.close()
        await client.close()

        assert client.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_connect_after_close(self, client: ElectrumClient) -> None:
        await client.close()

        with pytest.raises(RpcInvalidStateError):
            await client.connect()

    @pytest.mark.asyncio
    async def test_reconnect_before_init(self, client: ElectrumClient) -> None:
        with pytest.raises(RpcInvalidStateError):
            await client.reconnect()

    @pytest.mark.asyncio
    async def test_replaced_channel_close_is_ignored(
        self, client: ElectrumClient, electrum_server: FakeElectrumServer
    ) -> None:
        """
        Verifies that:
        - An explicit reconnect replaces the channel
        - The old channel closing does not count as a loss
        """
        policy = PersistencePolicy(max_retry=3)
        await client.init_electrum("test-client", "1.4", policy)
        old_channel = client._manager.channel

        await client.reconnect()
        await settle()

        assert old_channel.is_closed()
        assert client._manager.channel is not old_channel
        assert client.is_connected
        assert not client._manager.reconnect_pending
        assert policy.max_retry == 3
        assert len(electrum_server.sockets) == 2

    @pytest.mark.asyncio
    async def test_close_during_reconnect_open(
        self, electrum_server: FakeElectrumServer, caplog: pytest.LogCaptureFixture
    ) -> None:
        """
        Test close() while a reconnect is still opening its socket.

        Verifies that:
        - The socket that arrives after close() is closed, with no reader
        - The session stays CLOSED and the abandoned reconnect logs no error
        """
        caplog.set_level(logging.DEBUG, logger="electrumx_client")
        opening = asyncio.Event()
        gate = asyncio.Event()

        async def gated_open():
            if electrum_server.connect_attempts >= 1:
                opening.set()
                await gate.wait()
            return await electrum_server.open()

        client = ElectrumClient(
            ServerConfig("localhost", 50001, protocol="tcp"),
            config=ElectrumClientConfig(
                keepalive=RpcKeepaliveConfig(enabled=False),
                reconnect=RpcReconnectConfig(settle_delay=SETTLE),
            ),
            socket_factory=gated_open,
        )
        await client.init_electrum("test-client", "1.4", PersistencePolicy(max_retry=1))

        electrum_server.current.drop()
        await asyncio.wait_for(opening.wait(), timeout=2.0)
        pending_channel = client._manager.channel

        await client.close()
        gate.set()
        await wait_until(
            lambda: len(electrum_server.sockets) == 2 and electrum_server.current.closed
        )
        await settle()

        assert pending_channel._read_task is None
        assert pending_channel.is_closed()
        assert client.state is SessionState.CLOSED
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert "Reconnect abandoned" in caplog.text

    @pytest.mark.asyncio
    async def test_init_during_settle_delay(
        self, electrum_server: FakeElectrumServer
    ) -> None:
        """
        Test init_electrum() called again while a reconnect is scheduled.

        Verifies that:
        - The scheduled reconnect is cancelled
        - The channel opened by init_electrum() is kept and the budget untouched
        """
        policy = PersistencePolicy(max_retry=1)
        client = make_client(electrum_server, settle_delay=0.1)
        await client.init_electrum("test-client", "1.4", policy)

        await lose_connection(client, electrum_server)
        assert client._manager.reconnect_pending

        await client.init_electrum("test-client", "1.4", policy)
        channel = client._manager.channel
        assert not client._manager.reconnect_pending

        await asyncio.sleep(0.2)

        assert len(electrum_server.sockets) == 2
        assert client._manager.channel is channel
        assert client.is_connected
        assert policy.max_retry == 1
        await client.close()
