"""
Tests for the web3-backed data sources, with AsyncWeb3 replaced by mocks.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from amm_arb.data_source import (
    ZERO_ADDRESS,
    DataSource,
    PollingWeb3Source,
    StreamingWeb3Source,
    Web3DataSource,
)
from amm_arb.exceptions import DataSourceError

from conftest import USDC, WETH, wait_until

POOL = "0x" + "ab" * 20
FACTORY = "0x" + "a" * 40


async def value(result):
    return result


class FakeEth:
    """``w3.eth`` stand-in whose block number walks through ``blocks``."""

    def __init__(self, blocks=(100,), gas_price=15 * 10**9):
        self.blocks = list(blocks)
        self._gas_price = gas_price
        self.contract = Mock()
        self.subscribe = AsyncMock(return_value="0xsub")
        self.unsubscribe = AsyncMock(return_value=True)

    @property
    def block_number(self):
        block = self.blocks.pop(0) if len(self.blocks) > 1 else self.blocks[0]
        return value(block)

    @property
    def gas_price(self):
        return value(self._gas_price)


def make_w3(**eth_kwargs):
    w3 = Mock()
    w3.eth = FakeEth(**eth_kwargs)
    w3.provider.disconnect = AsyncMock()
    return w3


def contract_returning(method, result=None, error=None):
    contract = Mock()
    call = AsyncMock(return_value=result, side_effect=error)
    getattr(contract.functions, method).return_value.call = call
    return contract


class TestWeb3DataSource:
    def test_transports_satisfy_protocol(self):
        assert isinstance(PollingWeb3Source(make_w3(), "http://node"), DataSource)
        assert isinstance(StreamingWeb3Source(make_w3(), "ws://node"), DataSource)

    @pytest.mark.asyncio
    async def test_get_reserves(self):
        w3 = make_w3()
        w3.eth.contract.return_value = contract_returning("getReserves", (2 * 10**12, 10**21, 1700))
        source = Web3DataSource(w3, "http://node")

        assert await source.get_reserves(POOL) == (2 * 10**12, 10**21)

    @pytest.mark.asyncio
    async def test_contracts_are_cached(self):
        w3 = make_w3()
        w3.eth.contract.return_value = contract_returning("getReserves", (1, 2, 0))
        source = Web3DataSource(w3, "http://node")

        await source.get_reserves(POOL)
        await source.get_reserves(POOL.upper().replace("0X", "0x"))

        assert w3.eth.contract.call_count == 1

    @pytest.mark.asyncio
    async def test_missing_pool_is_none(self):
        w3 = make_w3()
        w3.eth.contract.return_value = contract_returning("getPair", ZERO_ADDRESS)
        source = Web3DataSource(w3, "http://node")

        assert await source.get_pool_address(FACTORY, WETH, USDC) is None

    @pytest.mark.asyncio
    async def test_v3_pool_lookup_passes_fee_tier(self):
        w3 = make_w3()
        contract = contract_returning("getPool", POOL)
        w3.eth.contract.return_value = contract
        source = Web3DataSource(w3, "http://node")

        assert await source.get_pool_address(FACTORY, WETH, USDC, 500) == POOL
        args = contract.functions.getPool.call_args.args
        assert args[2] == 500

    @pytest.mark.asyncio
    async def test_quotes_take_first_return_value(self):
        w3 = make_w3()
        contract = Mock()
        contract.functions.quoteExactInputSingle.return_value.call = AsyncMock(
            return_value=(20_100_000, 0, 1, 90_000)
        )
        contract.functions.quoteExactInput.return_value.call = AsyncMock(
            return_value=(10**16, [], [], 180_000)
        )
        w3.eth.contract.return_value = contract
        source = Web3DataSource(w3, "http://node")

        assert await source.quote_single_hop(POOL, WETH, USDC, 500, 10**16) == 20_100_000
        assert await source.quote_multi_hop(POOL, b"\x00" * 43, 10**16) == 10**16
        params = contract.functions.quoteExactInputSingle.call_args.args[0]
        assert params[2:] == (10**16, 500, 0)

    @pytest.mark.asyncio
    async def test_contract_error_becomes_data_source_error(self):
        w3 = make_w3()
        w3.eth.contract.return_value = contract_returning(
            "getReserves", error=ValueError("execution reverted")
        )
        source = Web3DataSource(w3, "http://node")

        with pytest.raises(DataSourceError) as exc_info:
            await source.get_reserves(POOL)
        assert exc_info.value.operation == "getReserves"
        assert exc_info.value.endpoint == "http://node"

    @pytest.mark.asyncio
    async def test_slow_call_times_out(self):
        async def hang(*args, **kwargs):
            await asyncio.sleep(1)

        w3 = make_w3()
        w3.eth.contract.return_value = contract_returning("getReserves", error=hang)
        source = Web3DataSource(w3, "http://node", call_timeout=0.01)

        with pytest.raises(DataSourceError, match="timed out") as exc_info:
            await source.get_reserves(POOL)
        assert exc_info.value.endpoint == "http://node"

    @pytest.mark.asyncio
    async def test_gas_price_and_block(self):
        source = Web3DataSource(make_w3(blocks=(19_000_000,)), "http://node")
        assert await source.get_gas_price() == 15 * 10**9
        assert await source.get_block_marker() == 19_000_000


class TestPollingWeb3Source:
    @pytest.mark.asyncio
    async def test_polls_new_blocks_once(self):
        source = PollingWeb3Source(make_w3(blocks=(101, 101, 102)), "http://node", 0.005)
        source._last_block = 100
        seen = []

        async def on_block(number):
            seen.append(number)

        subscription_id = await source.subscribe_live(on_block)
        await wait_until(lambda: seen == [101, 102])
        await asyncio.sleep(0.02)

        assert seen == [101, 102]
        assert subscription_id.startswith("poll-")
        await source.close()

    @pytest.mark.asyncio
    async def test_last_unsubscribe_stops_polling(self):
        source = PollingWeb3Source(make_w3(), "http://node", 0.005)

        key = await source.subscribe_live(AsyncMock())
        poller = source._poller
        await source.unsubscribe(key)
        await asyncio.sleep(0)

        assert source._poller is None
        assert poller.cancelled() or poller.done()

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_polling(self):
        source = PollingWeb3Source(make_w3(blocks=(101, 102)), "http://node", 0.005)
        source._last_block = 100
        callback = AsyncMock(side_effect=[RuntimeError("boom"), None])

        await source.subscribe_live(callback)
        await wait_until(lambda: callback.await_count == 2)
        await source.close()

    @pytest.mark.asyncio
    async def test_close_disconnects_provider(self):
        w3 = make_w3()
        source = PollingWeb3Source(w3, "http://node")
        await source.close()
        w3.provider.disconnect.assert_awaited_once()


class TestStreamingWeb3Source:
    @staticmethod
    def stream(messages, error=None):
        async def process_subscriptions():
            for message in messages:
                yield message
                await asyncio.sleep(0)
            if error is not None:
                raise error

        return process_subscriptions

    @pytest.mark.asyncio
    async def test_dispatches_new_heads_and_reports_loss(self):
        w3 = make_w3()
        w3.socket.process_subscriptions = self.stream(
            [
                {"subscription": "0xsub", "result": {"number": "0x65"}},
                {"subscription": "0xother", "result": {"number": "0x66"}},
                {"result": {}},
            ],
            error=ConnectionError("socket closed"),
        )
        hook = Mock()
        source = StreamingWeb3Source(w3, "ws://node", on_disconnect=hook)
        seen = []

        async def on_block(number):
            seen.append(number)

        assert await source.subscribe_live(on_block) == "0xsub"
        source._reader = asyncio.create_task(source._read_loop())
        await wait_until(lambda: hook.called)

        assert seen == [101]
        assert isinstance(hook.call_args.args[0], ConnectionError)
        await source.close()

    @pytest.mark.asyncio
    async def test_clean_end_of_stream_is_a_disconnect(self):
        w3 = make_w3()
        w3.socket.process_subscriptions = self.stream([])
        hook = Mock()
        source = StreamingWeb3Source(w3, "ws://node", on_disconnect=hook)

        await source._read_loop()

        hook.assert_called_once_with(None)

    @pytest.mark.asyncio
    async def test_close_does_not_report_disconnect(self):
        w3 = make_w3()
        w3.socket.process_subscriptions = self.stream([], error=ConnectionError("closed"))
        hook = Mock()
        source = StreamingWeb3Source(w3, "ws://node", on_disconnect=hook)

        await source.close()
        await source._read_loop()

        hook.assert_not_called()
        w3.provider.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unsubscribe_known_id_only(self):
        w3 = make_w3()
        source = StreamingWeb3Source(w3, "ws://node")
        await source.subscribe_live(AsyncMock())

        await source.unsubscribe("0xunknown")
        await source.unsubscribe("0xsub")

        w3.eth.unsubscribe.assert_awaited_once_with("0xsub")
