"""
Typed wrappers for the ElectrumX protocol methods, one coroutine per method.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .schemas import BatchItemResult

# protocol version that takes height bounds in blockchain.scripthash.get_history
HISTORY_RANGE_PROTOCOL_VERSION = "1.5"


class ElectrumMethods:
    """
    Typed wrappers for the ElectrumX protocol methods.

    Each wrapper forwards to ``request`` (or ``request_batch``) with a fixed
    method name and an ordered parameter list; results are returned as the
    server sent them. Classes using this mixin provide ``request``,
    ``request_batch`` and ``protocol_version``.

    Examples
    --------
    >>> async with ElectrumClient(ServerConfig("electrum.example.org", 50002)) as client:
    ...     await client.init_electrum("my-wallet", "1.4")
    ...     header = await client.blockchain_block_header(800000)
    """

    protocol_version: str | None

    async def request(self, method: str, params: Sequence[Any] | None = None) -> Any:
        raise NotImplementedError

    async def request_batch(
        self, method: str, params_list: Sequence[Any], secondary_param: Any = None
    ) -> list[BatchItemResult]:
        raise NotImplementedError

    # ------------------------------------------------------------------ server

    async def server_version(self, client_name: str, protocol_version: str) -> Any:
        return await self.request("server.version", [client_name, protocol_version])

    async def server_banner(self) -> Any:
        return await self.request("server.banner", [])

    async def server_ping(self) -> Any:
        return await self.request("server.ping", [])

    async def server_add_peer(self, features: Any) -> Any:
        return await self.request("server.add_peer", [features])

    async def server_donation_address(self) -> Any:
        return await self.request("server.donation_address", [])

    async def server_features(self) -> Any:
        return await self.request("server.features", [])

    async def server_peers_subscribe(self) -> Any:
        return await self.request("server.peers.subscribe", [])

    # -------------------------------------------------------------- blockchain

    async def blockchain_address_get_proof(self, address: str) -> Any:
        return await self.request("blockchain.address.get_proof", [address])

    async def blockchain_dotnav_resolve_name(self, name: str, subdomains: Any) -> Any:
        return await self.request("blockchain.dotnav.resolve_name", [name, subdomains])

    async def blockchain_scripthash_get_balance(self, scripthash: str) -> Any:
        return await self.request("blockchain.scripthash.get_balance", [scripthash])

    async def blockchain_scripthash_get_history(
        self, scripthash: str, height: int = 0, to_height: int = -1
    ) -> Any:
        """
        History of ``scripthash``.

        ``height`` and ``to_height`` are only sent when the negotiated
        protocol version is exactly "1.5"; older servers reject them.
        """
        if self.protocol_version == HISTORY_RANGE_PROTOCOL_VERSION:
            return await self.request(
                "blockchain.scripthash.get_history", [scripthash, height, to_height]
            )
        return await self.request("blockchain.scripthash.get_history", [scripthash])

    async def blockchain_scripthash_get_mempool(self, scripthash: str) -> Any:
        return await self.request("blockchain.scripthash.get_mempool", [scripthash])

    async def blockchain_scripthash_listunspent(self, scripthash: str) -> Any:
        return await self.request("blockchain.scripthash.listunspent", [scripthash])

    async def blockchain_scripthash_subscribe(self, scripthash: str) -> Any:
        return await self.request("blockchain.scripthash.subscribe", [scripthash])

    async def blockchain_scripthash_unsubscribe(self, scripthash: str) -> Any:
        return await self.request("blockchain.scripthash.unsubscribe", [scripthash])

    async def blockchain_outpoint_subscribe(self, tx_hash: str, out: int) -> Any:
        return await self.request("blockchain.outpoint.subscribe", [tx_hash, out])

    async def blockchain_outpoint_unsubscribe(self, tx_hash: str, out: int) -> Any:
        return await self.request("blockchain.outpoint.unsubscribe", [tx_hash, out])

    async def blockchain_stakervote_subscribe(self, scripthash: str) -> Any:
        return await self.request("blockchain.stakervote.subscribe", [scripthash])

    async def blockchain_consensus_subscribe(self) -> Any:
        return await self.request("blockchain.consensus.subscribe", [])

    async def blockchain_dao_subscribe(self) -> Any:
        return await self.request("blockchain.dao.subscribe", [])

    async def blockchain_block_header(self, height: int, cp_height: int = 0) -> Any:
        return await self.request("blockchain.block.header", [height, cp_height])

    async def blockchain_block_headers(
        self, start_height: int, count: int, cp_height: int = 0
    ) -> Any:
        return await self.request(
            "blockchain.block.headers", [start_height, count, cp_height]
        )

    async def blockchain_estimatefee(self, number: int) -> Any:
        return await self.request("blockchain.estimatefee", [number])

    async def blockchain_headers_subscribe(self) -> Any:
        return await self.request("blockchain.headers.subscribe", [])

    async def blockchain_relayfee(self) -> Any:
        return await self.request("blockchain.relayfee", [])

    async def blockchain_transaction_broadcast(self, rawtx: str) -> Any:
        return await self.request("blockchain.transaction.broadcast", [rawtx])

    async def blockchain_transaction_get(self, tx_hash: str, verbose: bool = False) -> Any:
        return await self.request("blockchain.transaction.get", [tx_hash, verbose or False])

    async def blockchain_transaction_get_keys(self, tx_hash: str) -> Any:
        return await self.request("blockchain.transaction.get_keys", [tx_hash])

    async def blockchain_transaction_get_merkle(self, tx_hash: str, height: int) -> Any:
        return await self.request("blockchain.transaction.get_merkle", [tx_hash, height])

    async def blockchain_staking_get_keys(self, spending_pkh: str) -> Any:
        return await self.request("blockchain.staking.get_keys", [spending_pkh])

    async def blockchain_token_get_token(self, token_id: str) -> Any:
        return await self.request("blockchain.token.get_token", [token_id])

    async def blockchain_token_get_nft(
        self, token_id: str, subid: str, get_utxo: bool = False
    ) -> Any:
        return await self.request(
            "blockchain.token.get_nft", [token_id, subid, get_utxo or False]
        )

    # ----------------------------------------------------------------- mempool

    async def mempool_get_fee_histogram(self) -> Any:
        return await self.request("mempool.get_fee_histogram", [])

    # ------------------------------------------------------------------- batch

    async def blockchain_scripthash_get_balance_batch(
        self, scripthashes: Sequence[str]
    ) -> list[BatchItemResult]:
        return await self.request_batch("blockchain.scripthash.get_balance", scripthashes)

    async def blockchain_scripthash_listunspent_batch(
        self, scripthashes: Sequence[str]
    ) -> list[BatchItemResult]:
        return await self.request_batch("blockchain.scripthash.listunspent", scripthashes)

    async def blockchain_scripthash_get_history_batch(
        self, scripthashes: Sequence[str]
    ) -> list[BatchItemResult]:
        return await self.request_batch("blockchain.scripthash.get_history", scripthashes)

    async def blockchain_transaction_get_batch(
        self, tx_hashes: Sequence[str], verbose: bool | None = None
    ) -> list[BatchItemResult]:
        """
        Fetch several transactions in one round trip.

        ``verbose`` is appended to every item's parameters only when given.
        """
        return await self.request_batch("blockchain.transaction.get", tx_hashes, verbose)
