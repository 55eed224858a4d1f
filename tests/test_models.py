from decimal import Decimal

import pytest

from cl_rebalancer.models import AccountTransaction, RebalanceResult, TokenAmount
from cl_rebalancer.registry import ARCHWAY_MAINNET_TOKENS, OSMOSIS_MAINNET_TOKENS

OSMO = OSMOSIS_MAINNET_TOKENS["uosmo"]
ARCH = ARCHWAY_MAINNET_TOKENS["aarch"]


class TestTokenAmount:
    @pytest.mark.parametrize("amount", ["-1", "1.5", "", "1e6", " 10"])
    def test_only_integer_strings_are_accepted(self, amount):
        with pytest.raises(ValueError):
            TokenAmount(amount, OSMO)

    def test_of_floors_to_base_units(self):
        assert TokenAmount.of(Decimal("10.99"), OSMO).amount == "10"
        assert TokenAmount.of(0, OSMO).is_zero

    def test_of_rejects_negative(self):
        with pytest.raises(ValueError):
            TokenAmount.of(Decimal("-1"), OSMO)

    def test_human_readable_conversion(self):
        amount = TokenAmount.from_human_readable("1.5", OSMO)
        assert amount.amount == "1500000"
        assert amount.human_readable == "1.500000"
        assert str(amount) == "1.500000 OSMO"

    def test_large_amounts_stay_exact(self):
        amount = TokenAmount.from_human_readable("123456789.123456789123456789", ARCH)
        assert amount.amount == "123456789123456789123456789"
        assert amount.value == Decimal("123456789123456789123456789")


class TestAccountTransaction:
    def test_amount_setters(self):
        record = AccountTransaction(
            chain_id="osmosis-1", tx_hash="AB", tx_action_index=0, signer_address="osmo1x"
        )
        record.set_input(TokenAmount("1", OSMO), TokenAmount("2", OSMO))
        record.set_output(TokenAmount("3000000", OSMO))
        record.set_gas_fee(None)

        assert (record.input_amount, record.second_input_amount) == ("0.000001", "0.000002")
        assert record.output_amount == "3.000000"
        assert record.second_output_amount is None
        assert record.gas_fee_amount is None


def test_rebalance_result_serializes():
    result = RebalanceResult(pool_id="1", action="none", percentage_balance=50.0)
    assert '"action":"none"' in result.model_dump_json()
