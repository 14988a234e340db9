"""
Tests for core data types and the store document shape.
"""

from decimal import Decimal

from amm_arb.types import OpportunityKind, Quote, Token

from conftest import DAI, USDC, WETH, make_opportunity


class TestOpportunityKind:
    def test_triangular_kinds(self):
        assert OpportunityKind.V2_TRIANGULAR.is_triangular
        assert OpportunityKind.V3_TRIANGULAR.is_triangular
        assert not OpportunityKind.V2_V3_CROSS.is_triangular


class TestToken:
    def test_sorts_by_address(self):
        weth = Token("WETH", WETH, 18)
        usdc = Token("USDC", USDC, 6)
        assert usdc.sorts_before(weth)
        assert not weth.sorts_before(usdc)
        assert Token("DAI", DAI, 18).sorts_before(usdc)


class TestQuote:
    def test_label_includes_fee_tier(self):
        v3 = Quote("UniswapV3", "v3", Decimal("2000"), 1, 2, Decimal("0.0005"), 500)
        v2 = Quote("Sushiswap", "v2", Decimal("2000"), 1, 2, Decimal("0.003"))
        assert v3.label == "UniswapV3_500"
        assert v2.label == "Sushiswap"

    def test_zero_output_is_invalid(self):
        quote = Quote("UniswapV2", "v2", Decimal(0), 10, 0, Decimal("0.003"))
        assert not quote.is_valid


class TestOpportunityDocument:
    def test_cross_venue_document(self):
        opp = make_opportunity(amount_out=20_100_000).with_provenance(123, 1700000000.0)

        doc = opp.to_dict()

        assert doc["type"] == "V3_SIMPLE"
        assert doc["dex1"] == "UniswapV3_3000"
        assert doc["dex2"] == "UniswapV3_500"
        assert doc["dex1_price"] == 1990.0
        assert doc["fee1"] == 3000 and doc["fee2"] == 500
        assert doc["profit_native"] == "0.000058"
        assert doc["profit_quote"] == "0.116"
        assert doc["is_triangular"] is False
        assert doc["triangular_path"] == []
        assert doc["output_amount"] == "20100000"
        assert doc["amount_back"] == "0"
        assert doc["block_number"] == 123
        assert doc["timestamp"] == 1700000000.0

    def test_triangular_document(self):
        opp = make_opportunity(
            kind=OpportunityKind.V3_TRIANGULAR,
            pair="WETH->USDC->DAI",
            buy_venue="",
            sell_venue="",
            buy_price=Decimal(0),
            sell_price=Decimal(0),
            cycle_venue="UniswapV3_3000",
            path=("WETH", "USDC", "DAI"),
            fee_tiers=(3000,),
            net_profit_quote=None,
            amount_back=Decimal("0.0105"),
        )

        doc = opp.to_dict()

        assert doc["is_triangular"] is True
        assert doc["dex1"] == "UniswapV3_3000"
        assert doc["triangular_dex"] == "UniswapV3_3000"
        assert doc["triangular_path"] == ["WETH", "USDC", "DAI"]
        assert doc["fee1"] == 3000 and doc["fee2"] == 0
        assert doc["profit_quote"] is None
        assert doc["amount_back"] == "0.0105"

    def test_with_provenance_copies(self):
        opp = make_opportunity()
        stamped = opp.with_provenance(7, 1.5)
        assert opp.block_number is None
        assert stamped.block_number == 7
        assert stamped.net_profit == opp.net_profit
