"""
On-chain data source capability and its web3 implementations.

The engine only depends on the ``DataSource`` protocol. Two concrete
transports are provided:

- ``StreamingWeb3Source``: WebSocket provider with ``newHeads`` subscriptions
  pushed by the node. Reports socket loss through an ``on_disconnect`` hook.
- ``PollingWeb3Source``: HTTP provider used as the degraded fallback; block
  subscriptions are emulated by polling ``eth_blockNumber``.
"""

import asyncio
import itertools
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

from web3 import AsyncWeb3, Web3, WebSocketProvider

from .abi import (
    UNISWAP_V2_FACTORY_ABI,
    UNISWAP_V2_PAIR_ABI,
    UNISWAP_V3_FACTORY_ABI,
    UNISWAP_V3_QUOTER_V2_ABI,
)
from .exceptions import DataSourceError
from .utils import call_with_timeout, get_logger

logger = get_logger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

BlockCallback = Callable[[int], Awaitable[None]]
DisconnectHook = Callable[[Optional[BaseException]], None]


@runtime_checkable
class DataSource(Protocol):
    """Reads the engine needs from the chain."""

    async def get_reserves(self, pool: str) -> Tuple[int, int]:
        """Return (reserve0, reserve1) of a V2 pool."""
        ...

    async def get_pool_address(
        self, factory: str, token_a: str, token_b: str, fee_tier: Optional[int] = None
    ) -> Optional[str]:
        """Resolve a pool from its factory; None when it does not exist."""
        ...

    async def quote_single_hop(
        self, quoter: str, token_in: str, token_out: str, fee_tier: int, amount_in: int
    ) -> int: ...

    async def quote_multi_hop(self, quoter: str, path: bytes, amount_in: int) -> int: ...

    async def get_gas_price(self) -> int:
        """Current gas price in wei."""
        ...

    async def get_block_marker(self) -> int:
        """Latest block number."""
        ...

    async def subscribe_live(self, callback: BlockCallback) -> str: ...

    async def unsubscribe(self, subscription_id: str) -> None: ...

    async def close(self) -> None: ...


def _as_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


class Web3DataSource:
    """
    Contract reads over an ``AsyncWeb3`` instance.

    Every call is bounded by ``call_timeout`` and any provider or contract
    failure is re-raised as ``DataSourceError``.
    """

    def __init__(self, w3: AsyncWeb3, endpoint: str, call_timeout: float = 10.0):
        self.w3 = w3
        self.endpoint = endpoint
        self.call_timeout = call_timeout
        self._contracts: Dict[Tuple[str, str], Any] = {}
        self._callbacks: Dict[str, BlockCallback] = {}

    def _contract(self, address: str, abi: list, abi_name: str):
        key = (address.lower(), abi_name)
        contract = self._contracts.get(key)
        if contract is None:
            contract = self.w3.eth.contract(
                address=Web3.to_checksum_address(address), abi=abi
            )
            self._contracts[key] = contract
        return contract

    async def _call(self, operation: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await call_with_timeout(awaitable, self.call_timeout, operation)
        except DataSourceError as e:
            e.endpoint = self.endpoint
            raise
        except Exception as e:
            raise DataSourceError(
                f"{operation} failed: {e}", operation=operation, endpoint=self.endpoint
            ) from e

    async def get_reserves(self, pool: str) -> Tuple[int, int]:
        pair = self._contract(pool, UNISWAP_V2_PAIR_ABI, "v2_pair")
        reserve0, reserve1, _ = await self._call(
            "getReserves", pair.functions.getReserves().call()
        )
        return int(reserve0), int(reserve1)

    async def get_pool_address(
        self, factory: str, token_a: str, token_b: str, fee_tier: Optional[int] = None
    ) -> Optional[str]:
        a = Web3.to_checksum_address(token_a)
        b = Web3.to_checksum_address(token_b)
        if fee_tier is None:
            contract = self._contract(factory, UNISWAP_V2_FACTORY_ABI, "v2_factory")
            pool = await self._call("getPair", contract.functions.getPair(a, b).call())
        else:
            contract = self._contract(factory, UNISWAP_V3_FACTORY_ABI, "v3_factory")
            pool = await self._call(
                "getPool", contract.functions.getPool(a, b, fee_tier).call()
            )
        if not pool or pool == ZERO_ADDRESS:
            return None
        return pool

    async def quote_single_hop(
        self, quoter: str, token_in: str, token_out: str, fee_tier: int, amount_in: int
    ) -> int:
        contract = self._contract(quoter, UNISWAP_V3_QUOTER_V2_ABI, "v3_quoter")
        params = (
            Web3.to_checksum_address(token_in),
            Web3.to_checksum_address(token_out),
            amount_in,
            fee_tier,
            0,  # no price limit
        )
        result = await self._call(
            "quoteExactInputSingle",
            contract.functions.quoteExactInputSingle(params).call(),
        )
        return int(result[0])

    async def quote_multi_hop(self, quoter: str, path: bytes, amount_in: int) -> int:
        contract = self._contract(quoter, UNISWAP_V3_QUOTER_V2_ABI, "v3_quoter")
        result = await self._call(
            "quoteExactInput", contract.functions.quoteExactInput(path, amount_in).call()
        )
        return int(result[0])

    async def get_gas_price(self) -> int:
        return int(await self._call("gasPrice", self.w3.eth.gas_price))

    async def get_block_marker(self) -> int:
        return int(await self._call("blockNumber", self.w3.eth.block_number))

    async def _dispatch(self, subscription_id: str, block_number: int) -> None:
        callback = self._callbacks.get(subscription_id)
        if callback is None:
            return
        try:
            await callback(block_number)
        except Exception as e:
            logger.error(f"Block callback {subscription_id} failed: {e}")


class StreamingWeb3Source(Web3DataSource):
    """WebSocket transport with node-pushed ``newHeads`` subscriptions."""

    def __init__(
        self,
        w3: AsyncWeb3,
        endpoint: str,
        on_disconnect: Optional[DisconnectHook] = None,
        call_timeout: float = 10.0,
    ):
        super().__init__(w3, endpoint, call_timeout)
        self._on_disconnect = on_disconnect
        self._reader: Optional[asyncio.Task] = None
        self._closing = False

    @classmethod
    async def connect(
        cls,
        ws_url: str,
        on_disconnect: Optional[DisconnectHook] = None,
        call_timeout: float = 10.0,
    ) -> "StreamingWeb3Source":
        """
        Open the socket and verify it with a block number read.

        Raises:
            DataSourceError: If the socket cannot be opened or verified
        """
        try:
            w3 = await AsyncWeb3(WebSocketProvider(ws_url))
        except Exception as e:
            raise DataSourceError(
                f"WebSocket connect failed: {e}", operation="connect", endpoint=ws_url
            ) from e

        source = cls(w3, ws_url, on_disconnect, call_timeout)
        try:
            block = await source.get_block_marker()
        except DataSourceError:
            await source.close()
            raise
        logger.info(f"WebSocket connected at block {block}")
        source._reader = asyncio.create_task(source._read_loop())
        return source

    async def _read_loop(self) -> None:
        error: Optional[BaseException] = None
        try:
            async for message in self.w3.socket.process_subscriptions():
                subscription_id = message.get("subscription")
                result = message.get("result") or {}
                if subscription_id is None or "number" not in result:
                    continue
                await self._dispatch(subscription_id, _as_int(result["number"]))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        if not self._closing and self._on_disconnect is not None:
            logger.warning(f"WebSocket stream ended: {error or 'closed by peer'}")
            self._on_disconnect(error)

    async def subscribe_live(self, callback: BlockCallback) -> str:
        subscription_id = await self._call(
            "subscribe", self.w3.eth.subscribe("newHeads")
        )
        subscription_id = str(subscription_id)
        self._callbacks[subscription_id] = callback
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        if self._callbacks.pop(subscription_id, None) is None:
            return
        await self._call("unsubscribe", self.w3.eth.unsubscribe(subscription_id))

    async def close(self) -> None:
        self._closing = True
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._callbacks.clear()
        try:
            await self.w3.provider.disconnect()
        except Exception as e:
            logger.debug(f"WebSocket disconnect error ignored: {e}")


class PollingWeb3Source(Web3DataSource):
    """HTTP transport; block subscriptions are emulated by polling."""

    def __init__(
        self,
        w3: AsyncWeb3,
        endpoint: str,
        poll_interval: float = 12.0,
        call_timeout: float = 10.0,
    ):
        super().__init__(w3, endpoint, call_timeout)
        self.poll_interval = poll_interval
        self._ids = itertools.count(1)
        self._poller: Optional[asyncio.Task] = None
        self._last_block: Optional[int] = None

    @classmethod
    async def connect(
        cls, http_url: str, poll_interval: float = 12.0, call_timeout: float = 10.0
    ) -> "PollingWeb3Source":
        """
        Create the HTTP provider and verify it.

        Raises:
            DataSourceError: If the endpoint does not answer
        """
        w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(http_url, request_kwargs={"timeout": call_timeout})
        )
        source = cls(w3, http_url, poll_interval, call_timeout)
        block = await source.get_block_marker()
        source._last_block = block
        logger.info(f"HTTP fallback connected at block {block}")
        return source

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                block = await self.get_block_marker()
            except DataSourceError as e:
                logger.warning(f"Block poll failed: {e}")
                continue
            if self._last_block is not None and block <= self._last_block:
                continue
            self._last_block = block
            for subscription_id in list(self._callbacks):
                await self._dispatch(subscription_id, block)

    async def subscribe_live(self, callback: BlockCallback) -> str:
        subscription_id = f"poll-{next(self._ids)}"
        self._callbacks[subscription_id] = callback
        if self._poller is None:
            self._poller = asyncio.create_task(self._poll_loop())
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        self._callbacks.pop(subscription_id, None)
        if not self._callbacks and self._poller is not None:
            self._poller.cancel()
            self._poller = None

    async def close(self) -> None:
        if self._poller is not None:
            self._poller.cancel()
            try:
                await self._poller
            except asyncio.CancelledError:
                pass
            self._poller = None
        self._callbacks.clear()
        try:
            await self.w3.provider.disconnect()
        except Exception as e:
            logger.debug(f"HTTP provider disconnect error ignored: {e}")
