from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from cl_rebalancer import fees
from cl_rebalancer.errors import InsufficientBalanceForFees, TokenNotFoundInRegistry
from cl_rebalancer.fees import (
    OSMOSIS_FEES,
    FeeSchedule,
    assert_enough_balance_for_fees,
    available_after_reserve,
    fetch_tx_gas_fee,
    resolve_gas_fee,
)
from cl_rebalancer.models import TokenAmount
from cl_rebalancer.registry import (
    ARCHWAY_MAINNET_CHAIN_INFO,
    ARCHWAY_MAINNET_TOKENS,
    OSMOSIS_MAINNET_CHAIN_INFO,
    OSMOSIS_MAINNET_TOKENS,
    SUI_MAINNET_CHAIN_INFO,
    SUI_MAINNET_TOKENS,
    find_chain_info,
    find_token,
    find_token_equivalent_on_other_chain,
)

OSMO = OSMOSIS_MAINNET_TOKENS["uosmo"]
OSMO_USDC = next(t for t in OSMOSIS_MAINNET_TOKENS.values() if t.name == "USDC")
OSMO_ARCH = next(t for t in OSMOSIS_MAINNET_TOKENS.values() if t.name == "ARCH")
ARCH = ARCHWAY_MAINNET_TOKENS["aarch"]
ARCH_USDC = next(t for t in ARCHWAY_MAINNET_TOKENS.values() if t.name == "USDC")
ARCH_OSMO = next(t for t in ARCHWAY_MAINNET_TOKENS.values() if t.name == "OSMO")


class TestRegistry:
    def test_chain_lookup(self):
        assert find_chain_info("Osmosis").id == "osmosis-1"
        assert find_chain_info("archway", "testnet").id == "constantine-3"
        with pytest.raises(LookupError):
            find_chain_info("ethereum")

    def test_unknown_token(self):
        with pytest.raises(TokenNotFoundInRegistry):
            find_token("osmosis-1", "ufoo")

    @pytest.mark.parametrize(
        "token, chain_id, expected",
        [
            (OSMO_USDC, "archway-1", ARCH_USDC),
            (ARCH_USDC, "osmosis-1", OSMO_USDC),
            (OSMO, "archway-1", ARCH_OSMO),
            (ARCH_OSMO, "osmosis-1", OSMO),
            (ARCH, "osmosis-1", OSMO_ARCH),
            (OSMO_ARCH, "archway-1", ARCH),
            (OSMO, "osmosis-1", OSMO),
        ],
    )
    def test_equivalents_follow_origin(self, token, chain_id, expected):
        assert find_token_equivalent_on_other_chain(token, chain_id) == expected

    def test_same_name_is_not_enough(self):
        sui_usdc = next(t for t in SUI_MAINNET_TOKENS.values() if t.name == "USDC")
        with pytest.raises(TokenNotFoundInRegistry):
            find_token_equivalent_on_other_chain(sui_usdc, "archway-1")


class TestFees:
    def test_reserve_doubles_rebalance_fees(self):
        assert OSMOSIS_FEES.rebalance_fees == Decimal(70_000)
        assert OSMOSIS_FEES.reserve == Decimal(140_000)
        assert FeeSchedule().reserve == 0

    def test_reserve_applies_to_native_token_only(self):
        assert available_after_reserve(TokenAmount("100", OSMO), OSMO, Decimal(30)) == 70
        assert available_after_reserve(TokenAmount("10", OSMO), OSMO, Decimal(30)) == 0
        assert available_after_reserve(TokenAmount("100", OSMO_USDC), OSMO, Decimal(30)) == 100

    def test_fee_assertion(self):
        balances = {OSMO.denom: TokenAmount("100", OSMO)}
        assert_enough_balance_for_fees(balances, OSMO, 100)
        with pytest.raises(InsufficientBalanceForFees, match="create position"):
            assert_enough_balance_for_fees(balances, OSMO, 101, "create position")
        with pytest.raises(InsufficientBalanceForFees):
            assert_enough_balance_for_fees({}, OSMO, 1)


class TestGasFeeLookup:
    def test_fee_is_read_from_tx(self, monkeypatch):
        response = MagicMock()
        response.json.return_value = {
            "tx": {"auth_info": {"fee": {"amount": [{"denom": "uosmo", "amount": "4321"}]}}}
        }
        get = MagicMock(return_value=response)
        monkeypatch.setattr(fees.requests, "get", get)

        fee = fetch_tx_gas_fee(OSMOSIS_MAINNET_CHAIN_INFO, "ABC")

        assert fee == TokenAmount("4321", OSMO)
        assert get.call_args.args[0] == "https://lcd.osmosis.zone/cosmos/tx/v1beta1/txs/ABC"

    def test_lookup_failure_returns_none(self, monkeypatch):
        monkeypatch.setattr(
            fees.requests, "get", MagicMock(side_effect=requests.ConnectionError("offline"))
        )
        assert fetch_tx_gas_fee(ARCHWAY_MAINNET_CHAIN_INFO, "ABC") is None

    def test_chain_without_rest_endpoint(self):
        assert fetch_tx_gas_fee(SUI_MAINNET_CHAIN_INFO, "ABC") is None

    async def test_reported_fee_wins(self):
        reported = TokenAmount("1", OSMO)
        lookup = MagicMock()

        assert await resolve_gas_fee(reported, OSMOSIS_MAINNET_CHAIN_INFO, "A", lookup) is reported
        lookup.assert_not_called()

    async def test_lookup_runs_when_fee_unknown(self):
        lookup = MagicMock(return_value=TokenAmount("7", OSMO))

        fee = await resolve_gas_fee(None, OSMOSIS_MAINNET_CHAIN_INFO, "A", lookup)

        assert fee.amount == "7"
        lookup.assert_called_once_with(OSMOSIS_MAINNET_CHAIN_INFO, "A")
