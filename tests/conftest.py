import json
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from cl_rebalancer.config import ConfigStore, PositionConfig
from cl_rebalancer.fees import FeeSchedule
from cl_rebalancer.interfaces import TransactionLedger
from cl_rebalancer.models import AccountTransaction, Token, TransactionType
from cl_rebalancer.registry import (
    ARCHWAY_MAINNET_CHAIN_INFO,
    OSMOSIS_MAINNET_CHAIN_INFO,
    SUI_MAINNET_CHAIN_INFO,
    SUI_MAINNET_TOKENS,
)
from cl_rebalancer.simulation import (
    SimulatedAccount,
    SimulatedChain,
    SimulatedSigner,
    SimulatedSwapVenue,
)
from cl_rebalancer.token_rebalancer import TokenRebalancer

_ENV_VARS = (
    "POOL_ID",
    "REBALANCE_THRESHOLD_PERCENT",
    "POSITION_BAND_PERCENTAGE",
    "CHAIN",
    "ENVIRONMENT",
    "CONFIG_FILE",
    "DB_URL",
    "DRY_RUN",
    "CLIENT_FACTORY",
    "WANDB_ENABLED",
    "WANDB_API_KEY",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's shell environment out of config resolution."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class MemoryLedger(TransactionLedger):
    def __init__(self):
        self.records: List[AccountTransaction] = []
        self.batches: List[List[AccountTransaction]] = []

    async def add_transaction(self, record: AccountTransaction) -> None:
        self.records.append(record)

    async def add_transaction_batch(self, records: Sequence[AccountTransaction]) -> None:
        self.batches.append(list(records))
        self.records.extend(records)

    def types(self) -> List[str]:
        return [record.transaction_type for record in self.records]


def no_gas_lookup(chain, tx_hash):
    return None


@pytest.fixture
def ledger():
    return MemoryLedger()


@pytest.fixture
def sui():
    return SUI_MAINNET_CHAIN_INFO.native_token


@pytest.fixture
def sui_usdc():
    return next(token for token in SUI_MAINNET_TOKENS.values() if token.name == "USDC")


@pytest.fixture
def sui_cetus():
    return next(token for token in SUI_MAINNET_TOKENS.values() if token.name == "CETUS")


@pytest.fixture
def single_chain(ledger):
    """Factory for a same-chain rebalancer on a simulated Sui wallet."""

    def build(
        balances: Dict[Token, int],
        quote: Decimal,
        fees: FeeSchedule = FeeSchedule(),
        min_base_out: Optional[Dict[str, Decimal]] = None,
        quote_pair: Optional[Tuple[Token, Token]] = None,
    ):
        wallet = SimulatedChain(SUI_MAINNET_CHAIN_INFO, "sui1test")
        for token, amount in balances.items():
            wallet.credit(token, amount)
        venue = SimulatedSwapVenue(wallet, fees, min_base_out=min_base_out)
        tokens = quote_pair or sorted(balances, key=lambda token: token.denom)
        venue.set_quote(tokens[0], tokens[1], Decimal(quote))
        signer = SimulatedSigner(wallet.address)
        rebalancer = TokenRebalancer(
            home_chain=SUI_MAINNET_CHAIN_INFO,
            home_account=SimulatedAccount(wallet),
            home_signer=signer,
            swap_client=venue,
            swap_signer=signer,
            ledger=ledger,
            home_fees=fees,
            swap_transaction_type=TransactionType.BOLT_SUI_SWAP,
            gas_fee_lookup=no_gas_lookup,
        )
        return rebalancer, wallet, venue

    return build


@pytest.fixture
def osmosis_chain():
    return OSMOSIS_MAINNET_CHAIN_INFO


@pytest.fixture
def archway_chain():
    return ARCHWAY_MAINNET_CHAIN_INFO


@pytest.fixture
def write_config(tmp_path):
    """Write a position config file and return a loaded store for it."""

    def write(**fields) -> ConfigStore:
        values = {
            "poolId": "1",
            "positionId": "",
            "rebalanceThresholdPercent": 90,
            "positionBandPercentage": 5,
            "chain": "sui",
        }
        values.update(fields)
        path = tmp_path / "config.json"
        path.write_text(json.dumps(values), encoding="utf-8")
        store = ConfigStore(path, env_file=None)
        store.load()
        return store

    return write


def read_config(store: ConfigStore) -> PositionConfig:
    return PositionConfig.model_validate(json.loads(store.path.read_text(encoding="utf-8")))
