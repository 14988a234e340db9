"""Tests for utility helpers."""

import asyncio
import logging
from decimal import Decimal

import pytest

import logging_config
from amm_arb import oracle
from amm_arb.exceptions import DataSourceError
from amm_arb.utils import (
    bps_to_rate,
    call_with_timeout,
    format_duration,
    from_raw_amount,
    get_logger,
    short_addr,
    to_raw_amount,
)


class TestAmounts:
    def test_to_raw_amount(self):
        assert to_raw_amount(Decimal("0.01"), 18) == 10**16
        assert to_raw_amount(Decimal("2000"), 6) == 2_000_000_000

    def test_from_raw_amount(self):
        assert from_raw_amount(19_939_801, 6) == Decimal("19.939801")
        assert from_raw_amount(10**18, 18) == Decimal(1)

    def test_bps_to_rate(self):
        assert bps_to_rate(30) == Decimal("0.003")
        assert bps_to_rate(0) == Decimal(0)


class TestFormatting:
    def test_format_duration(self):
        assert format_duration(1.234) == "1.23s"
        assert format_duration(90) == "1.5m"
        assert format_duration(7200) == "2.0h"

    def test_short_addr(self):
        assert short_addr("0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2") == "0xC02a...6Cc2"
        assert short_addr("0x1234") == "0x1234"


class TestCallWithTimeout:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def answer():
            return 42

        assert await call_with_timeout(answer(), 1.0, "answer") == 42

    @pytest.mark.asyncio
    async def test_timeout_becomes_data_source_error(self):
        with pytest.raises(DataSourceError) as exc_info:
            await call_with_timeout(asyncio.sleep(10), 0.01, "slow_call")
        assert exc_info.value.operation == "slow_call"
        assert "timed out" in str(exc_info.value)


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    level = root.level
    yield
    # drop the console handler added by setup(); pytest re-adds its own per phase
    for handler in root.handlers[:]:
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(level)
    for name in ("amm_arb", "web3", "websockets", "aiohttp.access"):
        logging.getLogger(name).setLevel(logging.NOTSET)


class TestGetLogger:
    def test_leaves_level_and_handlers_to_application(self):
        logger = get_logger("amm_arb.tests.logger_a")
        assert logger.name == "amm_arb.tests.logger_a"
        assert logger.level == logging.NOTSET
        assert logger.handlers == []
        assert logger.propagate

    def test_explicit_level(self):
        logger = get_logger("amm_arb.tests.logger_b", level=logging.WARNING)
        assert logger.level == logging.WARNING
        logger.setLevel(logging.NOTSET)

    def test_module_loggers_inherit_package_level(self, restore_logging):
        logging.getLogger("amm_arb").setLevel(logging.DEBUG)
        assert oracle.logger.getEffectiveLevel() == logging.DEBUG


class TestLoggingSetup:
    def test_debug_level_reaches_module_loggers_once(self, capsys, restore_logging):
        logging_config.setup(logging.DEBUG)

        oracle.logger.debug("pool 0xabc has empty reserves")
        oracle.logger.info("quotes refreshed")

        lines = capsys.readouterr().out.splitlines()
        debug_lines = [line for line in lines if "pool 0xabc has empty reserves" in line]
        assert len(debug_lines) == 1
        assert "DEBUG" in debug_lines[0]
        assert "amm_arb.oracle:" in debug_lines[0]
        assert sum("quotes refreshed" in line for line in lines) == 1

    def test_info_level_hides_debug(self, capsys, restore_logging):
        logging_config.setup(logging.INFO)

        oracle.logger.debug("pool 0xabc has empty reserves")
        oracle.logger.warning("quoter reverted")

        out = capsys.readouterr().out
        assert "empty reserves" not in out
        assert out.count("quoter reverted") == 1

    def test_noisy_libraries_quieted(self, restore_logging):
        logging_config.setup(logging.DEBUG)
        assert logging.getLogger("web3").level == logging.WARNING
        assert logging.getLogger("aiohttp.access").level == logging.WARNING
