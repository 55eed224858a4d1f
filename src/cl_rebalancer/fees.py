"""Gas-fee schedules, fee reserves and fee lookups.

Fee amounts are in base units of each chain's native gas token.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Union

import requests
import structlog

from cl_rebalancer.errors import InsufficientBalanceForFees, TokenNotFoundInRegistry
from cl_rebalancer.models import ChainInfo, Token, TokenAmount
from cl_rebalancer.registry import find_token

logger = structlog.get_logger()

# --- Osmosis (uosmo, 6 decimals) --------------------------------------------
OSMOSIS_IBC_TRANSFER_FEE = Decimal(20_000)
OSMOSIS_CREATE_LP_POSITION_FEE = Decimal(50_000)
OSMOSIS_WITHDRAW_LP_POSITION_FEE = Decimal(50_000)

# --- Archway (aarch, 18 decimals) -------------------------------------------
ARCHWAY_IBC_TRANSFER_FEE = Decimal(2 * 10**17)
ARCHWAY_BOLT_SWAP_FEE = Decimal(5 * 10**17)

# --- Sui (MIST, 9 decimals) -------------------------------------------------
CETUS_CREATE_LP_POSITION_FEE = Decimal(50_000_000)
CETUS_WITHDRAW_LP_POSITION_FEE = Decimal(50_000_000)
SUI_BOLT_SWAP_FEE = Decimal(20_000_000)

FEE_RESERVE_SAFETY_MULTIPLIER = 2

GAS_FEE_LOOKUP_TIMEOUT_SEC = 10


@dataclass(frozen=True)
class FeeSchedule:
    """Per-operation gas costs on one chain."""

    bridge_fee: Decimal = Decimal(0)
    swap_fee: Decimal = Decimal(0)
    create_position_fee: Decimal = Decimal(0)
    withdraw_position_fee: Decimal = Decimal(0)

    @property
    def rebalance_fees(self) -> Decimal:
        return self.bridge_fee + self.swap_fee + self.create_position_fee

    @property
    def reserve(self) -> Decimal:
        """Native-token amount never moved by a rebalance (fees doubled)."""
        return self.rebalance_fees * FEE_RESERVE_SAFETY_MULTIPLIER


OSMOSIS_FEES = FeeSchedule(
    bridge_fee=OSMOSIS_IBC_TRANSFER_FEE,
    create_position_fee=OSMOSIS_CREATE_LP_POSITION_FEE,
    withdraw_position_fee=OSMOSIS_WITHDRAW_LP_POSITION_FEE,
)
ARCHWAY_FEES = FeeSchedule(
    bridge_fee=ARCHWAY_IBC_TRANSFER_FEE,
    swap_fee=ARCHWAY_BOLT_SWAP_FEE,
)
SUI_FEES = FeeSchedule(
    swap_fee=SUI_BOLT_SWAP_FEE,
    create_position_fee=CETUS_CREATE_LP_POSITION_FEE,
    withdraw_position_fee=CETUS_WITHDRAW_LP_POSITION_FEE,
)


def balance_of(balances: Dict[str, TokenAmount], token: Token) -> TokenAmount:
    return balances.get(token.denom) or TokenAmount.zero(token)


def available_after_reserve(
    balance: TokenAmount, native_token: Token, reserve: Decimal
) -> Decimal:
    """Portion of ``balance`` that may be moved once the gas reserve is set aside."""
    if balance.token.denom != native_token.denom:
        return balance.value
    return max(balance.value - reserve, Decimal(0))


def assert_enough_balance_for_fees(
    balances: Dict[str, TokenAmount],
    native_token: Token,
    fees: Union[Decimal, int],
    description: str = "",
) -> None:
    native = balance_of(balances, native_token)
    if native.value < Decimal(fees):
        suffix = f" - {description}" if description else ""
        raise InsufficientBalanceForFees(
            f"Not enough {native_token.name or native_token.denom} balance for paying gas fees{suffix}"
        )


def fetch_tx_gas_fee(chain: ChainInfo, tx_hash: str) -> Optional[TokenAmount]:
    """Look up the fee paid by ``tx_hash`` through the chain's REST endpoint.

    Returns ``None`` when the chain has no REST endpoint or the lookup fails;
    the fee is informational only and never blocks the caller.
    """
    if not chain.rest_endpoint:
        return None

    url = f"{chain.rest_endpoint}/cosmos/tx/v1beta1/txs/{tx_hash}"
    try:
        response = requests.get(url, timeout=GAS_FEE_LOOKUP_TIMEOUT_SEC)
        response.raise_for_status()
        coins = response.json().get("tx", {}).get("auth_info", {}).get("fee", {}).get("amount", [])
        if not coins:
            return None
        coin = coins[0]
        return TokenAmount(str(coin["amount"]), find_token(chain.id, coin["denom"]))
    except (requests.RequestException, ValueError, KeyError, TokenNotFoundInRegistry) as exc:
        logger.warning("gas_fee_lookup_failed", chain_id=chain.id, tx_hash=tx_hash, error=str(exc))
        return None


async def resolve_gas_fee(
    gas_fee: Optional[TokenAmount],
    chain: ChainInfo,
    tx_hash: str,
    lookup: Callable[[ChainInfo, str], Optional[TokenAmount]] = fetch_tx_gas_fee,
) -> Optional[TokenAmount]:
    """Prefer the fee reported by the client; otherwise ask the chain."""
    if gas_fee is not None:
        return gas_fee
    return await asyncio.to_thread(lookup, chain, tx_hash)
