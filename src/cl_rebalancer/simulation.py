"""Virtual wallet and in-memory chain clients for Dry-Run mode.

Simulates balances, CL positions, bridge transfers and venue swaps without
any network access. All downstream logic (range checks, rebalancing,
ledger writes, config persistence) runs exactly as it does live.
"""

from __future__ import annotations

import dataclasses
import itertools
import uuid
from decimal import ROUND_FLOOR, Decimal
from typing import Dict, List, Optional, Tuple, Type

import structlog

from cl_rebalancer.config import Settings
from cl_rebalancer.errors import PositionNotFound
from cl_rebalancer.fees import ARCHWAY_FEES, OSMOSIS_FEES, SUI_FEES, FeeSchedule
from cl_rebalancer.interfaces import (
    BridgeClient,
    BridgeRequest,
    ChainAccount,
    ChainClients,
    PoolClient,
    Signer,
    SwapClient,
    SwapParams,
    TransactionLedger,
)
from cl_rebalancer.models import (
    BridgeResult,
    ChainInfo,
    CreatePositionParams,
    CreatePositionResult,
    Pool,
    Position,
    SwapResult,
    Token,
    TokenAmount,
    VenuePoolConfig,
    WithdrawPositionResult,
)
from cl_rebalancer.registry import (
    find_chain_info,
    find_token_equivalent_on_other_chain,
    find_tokens_map,
)
from cl_rebalancer.tick_math import CetusTickMath, TickMath, TickScheme

logger = structlog.get_logger()


def _tx_hash() -> str:
    return uuid.uuid4().hex.upper()


# ---------------------------------------------------------------------------
# Virtual wallet
# ---------------------------------------------------------------------------

class SimulatedChain:
    """Balances held by one address on one chain, in base units."""

    def __init__(self, chain: ChainInfo, address: str) -> None:
        self.chain = chain
        self.address = address
        self._tokens: Dict[str, Token] = {}
        self._amounts: Dict[str, int] = {}

    def balance(self, denom: str) -> int:
        return self._amounts.get(denom, 0)

    def credit(self, token: Token, amount: int) -> None:
        if amount < 0:
            raise ValueError("Cannot credit a negative amount")
        self._tokens[token.denom] = token
        self._amounts[token.denom] = self.balance(token.denom) + int(amount)

    def debit(self, token: Token, amount: int) -> None:
        held = self.balance(token.denom)
        if amount > held:
            raise ValueError(
                f"Insufficient {token.name} on {self.chain.name}: have {held}, need {amount}"
            )
        self._amounts[token.denom] = held - int(amount)

    def charge_fee(self, fee: Decimal) -> Optional[TokenAmount]:
        amount = int(fee)
        if amount <= 0:
            return None
        self.debit(self.chain.native_token, amount)
        return TokenAmount(str(amount), self.chain.native_token)

    def snapshot(self) -> Dict[str, TokenAmount]:
        return {
            denom: TokenAmount(str(amount), self._tokens[denom])
            for denom, amount in self._amounts.items()
            if amount > 0
        }


class SimulatedSigner(Signer):
    def __init__(self, address: str) -> None:
        self.address = address

    async def get_signer_address(self) -> str:
        return self.address


class SimulatedAccount(ChainAccount):
    def __init__(self, wallet: SimulatedChain) -> None:
        self.chain = wallet.chain
        self._wallet = wallet

    async def get_available_balances(self) -> Dict[str, TokenAmount]:
        return self._wallet.snapshot()


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

class SimulatedPoolClient(PoolClient):
    """A single CL pool with wallet-owned positions; no liquidity math."""

    def __init__(
        self,
        pool: Pool,
        wallet: SimulatedChain,
        fees: FeeSchedule,
        tick_math: Type[TickScheme] = TickMath,
        spread_reward_rate: Decimal = Decimal(0),
    ) -> None:
        self._pool = pool
        self._wallet = wallet
        self._fees = fees
        self._tick_math = tick_math
        self._spread_reward_rate = Decimal(spread_reward_rate)
        self._positions: Dict[str, Position] = {}
        self._ids = itertools.count(1)

    def set_price(self, price: Decimal) -> None:
        self._pool.current_price = Decimal(price)
        self._pool.current_tick = self._tick_math.price_to_tick(price)

    def add_position(self, position: Position) -> None:
        self._positions[position.position_id] = position

    def _check_pool(self, pool_id: str) -> None:
        if str(pool_id) != self._pool.id:
            raise LookupError(f"pool not found: {pool_id}")

    async def get_pool_info(self, pool_id: str) -> Pool:
        self._check_pool(pool_id)
        return dataclasses.replace(self._pool)

    async def create_position(self, pool_id: str, params: CreatePositionParams) -> CreatePositionResult:
        self._check_pool(pool_id)
        gas_fee = self._wallet.charge_fee(self._fees.create_position_fee)
        amount0, amount1 = params.token_amount0, params.token_amount1
        self._wallet.debit(amount0.token, int(amount0.amount))
        self._wallet.debit(amount1.token, int(amount1.amount))

        position_id = str(next(self._ids))
        liquidity = (amount0.value * self._pool.current_price + amount1.value).to_integral_value(
            rounding=ROUND_FLOOR
        )
        self._positions[position_id] = Position(
            position_id=position_id,
            lower_tick=params.lower_tick,
            upper_tick=params.upper_tick,
            liquidity=str(liquidity),
            asset0=amount0,
            asset1=amount1,
        )
        logger.debug("simulated_position_created", position_id=position_id)
        return CreatePositionResult(
            position_id=position_id,
            amount0=amount0,
            amount1=amount1,
            liquidity_created=str(liquidity),
            lower_tick=params.lower_tick,
            upper_tick=params.upper_tick,
            tx_hash=_tx_hash(),
            gas_fee=gas_fee,
        )

    async def withdraw_position(self, position: Position) -> WithdrawPositionResult:
        stored = self._positions.pop(position.position_id, None)
        if stored is None:
            raise PositionNotFound(position.position_id)
        gas_fee = self._wallet.charge_fee(self._fees.withdraw_position_fee)
        amount0 = stored.asset0 or TokenAmount.zero(self._pool.token0)
        amount1 = stored.asset1 or TokenAmount.zero(self._pool.token1)
        self._wallet.credit(amount0.token, int(amount0.amount))
        self._wallet.credit(amount1.token, int(amount1.amount))

        rewards: List[TokenAmount] = []
        if self._spread_reward_rate > 0:
            for amount in (amount0, amount1):
                reward = TokenAmount.of(amount.value * self._spread_reward_rate, amount.token)
                if not reward.is_zero:
                    self._wallet.credit(reward.token, int(reward.amount))
                    rewards.append(reward)

        return WithdrawPositionResult(
            amount0=amount0,
            amount1=amount1,
            tx_hash=_tx_hash(),
            rewards=rewards,
            gas_fee=gas_fee,
        )

    async def get_position_info(self, position_id: str) -> Position:
        position = self._positions.get(position_id)
        if position is None:
            raise PositionNotFound(position_id)
        return position

    async def get_positions(self, pool_id: str) -> List[Position]:
        self._check_pool(pool_id)
        return list(self._positions.values())


# ---------------------------------------------------------------------------
# Bridge / venue
# ---------------------------------------------------------------------------

class SimulatedBridge(BridgeClient):
    """Instant transfers between simulated chains.

    ``relayer_fee`` is the fraction of each transfer kept in transit; the
    destination is credited the rest, floored to base units.
    """

    def __init__(
        self,
        wallets: Dict[str, SimulatedChain],
        fees: Dict[str, FeeSchedule],
        relayer_fee: Decimal = Decimal(0),
    ) -> None:
        if not 0 <= relayer_fee < 1:
            raise ValueError(f"relayer_fee must be in [0, 1), got {relayer_fee}")
        self._wallets = wallets
        self._fees = fees
        self._relayer_fee = Decimal(relayer_fee)

    async def bridge_token(self, signer: Signer, request: BridgeRequest) -> BridgeResult:
        source = self._wallets[request.from_token.chain_id]
        destination = self._wallets.get(request.to_chain_id)
        if destination is None:
            raise LookupError(f"No route to chain {request.to_chain_id}")

        destination_token = find_token_equivalent_on_other_chain(request.from_token, request.to_chain_id)
        gas_fee = source.charge_fee(self._fees[source.chain.id].bridge_fee)
        amount = int(request.amount.amount)
        delivered = int(
            (Decimal(amount) * (1 - self._relayer_fee)).to_integral_value(rounding=ROUND_FLOOR)
        )
        source.debit(request.from_token, amount)
        destination.credit(destination_token, delivered)
        return BridgeResult(
            tx_hash=_tx_hash(),
            chain_id=source.chain.id,
            destination_token=destination_token,
            destination_address=destination.address,
            amount_out=str(delivered),
            gas_fee=gas_fee,
        )


class SimulatedSwapVenue(SwapClient):
    """Constant-price venue; quotes are base units out per base unit in."""

    def __init__(
        self,
        wallet: SimulatedChain,
        fees: FeeSchedule,
        quotes: Optional[Dict[Tuple[str, str], Decimal]] = None,
        min_base_out: Optional[Dict[str, Decimal]] = None,
    ) -> None:
        self.chain = wallet.chain
        self._wallet = wallet
        self._fees = fees
        self._quotes: Dict[Tuple[str, str], Decimal] = dict(quotes or {})
        self._min_base_out: Dict[str, Decimal] = dict(min_base_out or {})

    def set_quote(self, asset_in: Token, asset_out: Token, price: Decimal) -> None:
        self._quotes[(asset_in.denom, asset_out.denom)] = Decimal(price)

    async def get_price(self, asset_in: Token, asset_out: Token) -> Decimal:
        key = (asset_in.denom, asset_out.denom)
        if key in self._quotes:
            return self._quotes[key]
        inverse = self._quotes.get((asset_out.denom, asset_in.denom))
        if inverse is None or inverse == 0:
            raise LookupError(f"No market for {asset_in.name}/{asset_out.name}")
        return 1 / inverse

    async def get_pool_config_by_denom(self, denom: str) -> VenuePoolConfig:
        return VenuePoolConfig(denom=denom, min_base_out=self._min_base_out.get(denom, Decimal(0)))

    async def swap(self, signer: Signer, params: SwapParams) -> SwapResult:
        price = await self.get_price(params.asset_in.token, params.asset_out)
        gas_fee = self._wallet.charge_fee(self._fees.swap_fee)
        amount_in = int(params.asset_in.amount)
        amount_out = int((Decimal(amount_in) * price).to_integral_value(rounding=ROUND_FLOOR))
        if amount_out < int(params.min_amount_out):
            raise ValueError(f"Swap output {amount_out} below requested minimum {params.min_amount_out}")
        self._wallet.debit(params.asset_in.token, amount_in)
        self._wallet.credit(params.asset_out, amount_out)
        return SwapResult(
            tx_hash=_tx_hash(),
            chain_id=self.chain.id,
            destination_token=params.asset_out,
            amount_out=str(amount_out),
            gas_fee=gas_fee,
        )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

_DRY_RUN_TICK_SPACING = {"osmosis": 100, "sui": 60}


def _default_pair(chain: ChainInfo) -> Tuple[Token, Token]:
    """USDC paired with the chain's native token, in canonical denom order."""
    native = chain.native_token
    usdc = next(token for token in find_tokens_map(chain.id).values() if token.name == "USDC")
    return tuple(sorted((native, usdc), key=lambda token: token.denom))  # type: ignore[return-value]


def _base_price(human_price: Decimal, token0: Token, token1: Token) -> Decimal:
    return Decimal(human_price).scaleb(token1.decimals - token0.decimals)


def build_simulated_clients(
    settings: Settings,
    ledger: TransactionLedger,
    pool_id: str,
    chain: Optional[str] = None,
) -> ChainClients:
    """Seed a virtual wallet from ``settings`` and wire every collaborator."""
    chain_name = (chain or settings.chain).lower()
    home_chain = find_chain_info(chain_name, settings.environment)
    token0, token1 = _default_pair(home_chain)
    pool_price = _base_price(Decimal(str(settings.dry_run_pool_price)), token0, token1)
    venue_price = pool_price * (1 - Decimal(str(settings.dry_run_venue_spread)))

    home_wallet = SimulatedChain(home_chain, f"{home_chain.prefix}1dryrun")
    home_wallet.credit(
        home_chain.native_token,
        int(TokenAmount.from_human_readable(str(settings.dry_run_native_balance), home_chain.native_token).amount),
    )
    home_wallet.credit(token0, int(TokenAmount.from_human_readable(str(settings.dry_run_token0_balance), token0).amount))
    home_wallet.credit(token1, int(TokenAmount.from_human_readable(str(settings.dry_run_token1_balance), token1).amount))

    tick_math = CetusTickMath if chain_name == "sui" else TickMath
    pool = Pool(
        id=str(pool_id),
        token0=token0,
        token1=token1,
        tick_spacing=_DRY_RUN_TICK_SPACING.get(chain_name, 100),
        current_tick=tick_math.price_to_tick(pool_price),
        current_price=pool_price,
    )
    home_fees = SUI_FEES if chain_name == "sui" else OSMOSIS_FEES
    pool_client = SimulatedPoolClient(pool, home_wallet, home_fees, tick_math)
    home_signer = SimulatedSigner(home_wallet.address)

    logger.info(
        "simulation_initialized",
        chain=home_chain.id,
        token0=token0.name,
        token1=token1.name,
        pool_price=str(pool_price),
        venue_price=str(venue_price),
    )

    if chain_name == "sui":
        venue = SimulatedSwapVenue(home_wallet, SUI_FEES)
        venue.set_quote(token0, token1, venue_price)
        return ChainClients(
            home_chain=home_chain,
            home_account=SimulatedAccount(home_wallet),
            home_signer=home_signer,
            pool_client=pool_client,
            swap_client=venue,
            swap_signer=home_signer,
            ledger=ledger,
        )

    remote_chain = find_chain_info("archway", settings.environment)
    remote_wallet = SimulatedChain(remote_chain, f"{remote_chain.prefix}1dryrun")
    remote_wallet.credit(
        remote_chain.native_token,
        int(TokenAmount.from_human_readable(str(settings.dry_run_native_balance), remote_chain.native_token).amount),
    )
    venue = SimulatedSwapVenue(remote_wallet, ARCHWAY_FEES)
    venue.set_quote(
        find_token_equivalent_on_other_chain(token0, remote_chain.id),
        find_token_equivalent_on_other_chain(token1, remote_chain.id),
        venue_price,
    )
    bridge = SimulatedBridge(
        {home_chain.id: home_wallet, remote_chain.id: remote_wallet},
        {home_chain.id: OSMOSIS_FEES, remote_chain.id: ARCHWAY_FEES},
    )
    return ChainClients(
        home_chain=home_chain,
        home_account=SimulatedAccount(home_wallet),
        home_signer=home_signer,
        pool_client=pool_client,
        swap_client=venue,
        swap_signer=SimulatedSigner(remote_wallet.address),
        ledger=ledger,
        remote_chain=remote_chain,
        remote_account=SimulatedAccount(remote_wallet),
        bridge_client=bridge,
    )
