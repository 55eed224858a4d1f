"""Liquidity orchestration: keeps one managed CL position balanced.

Each ``execute()`` run:
  1. withdraws every open position in the pool that is not the managed one
  2. checks the managed position (a vanished one is treated as absent)
  3. returns ``none`` while the position sits inside the threshold band
  4. otherwise withdraws it, rebalances tokens, re-reads the price and
     opens a new position centred on it

The managed position id in the config file is cleared right after a
withdrawal and written right after a creation, so a crash between steps
is recovered by the next run from chain state.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Callable, List, Optional, Type

import structlog

from cl_rebalancer.config import ConfigStore, PositionConfig
from cl_rebalancer.errors import BridgeOrSwapFailed, PositionNotFound
from cl_rebalancer.fees import (
    ARCHWAY_FEES,
    OSMOSIS_FEES,
    SUI_FEES,
    FeeSchedule,
    assert_enough_balance_for_fees,
    fetch_tx_gas_fee,
    resolve_gas_fee,
)
from cl_rebalancer.interfaces import ChainClients
from cl_rebalancer.models import (
    AccountTransaction,
    ChainInfo,
    CreatePositionParams,
    CreatePositionResult,
    Pool,
    Position,
    RebalanceOutcome,
    RebalanceResult,
    StatusReport,
    TokenAmount,
    TransactionType,
    WithdrawPositionResult,
)
from cl_rebalancer.position_range import PositionRangeEvaluator
from cl_rebalancer.shutdown import CancellationToken
from cl_rebalancer.tick_math import CetusTickMath, TickMath, TickScheme
from cl_rebalancer.token_rebalancer import DEFAULT_TOLERANCE, TokenRebalancer

logger = structlog.get_logger()

GasFeeLookup = Callable[[ChainInfo, str], Optional[TokenAmount]]


class LiquidityOrchestrator:
    """Chain-agnostic execution state machine for one pool."""

    tick_math: Type[TickScheme] = TickMath
    fees: FeeSchedule = FeeSchedule()
    min_band_percentage = Decimal(0)

    def __init__(
        self,
        clients: ChainClients,
        store: ConfigStore,
        rebalancer: TokenRebalancer,
        price_drift_warning: Decimal = Decimal("0.01"),
        gas_fee_lookup: GasFeeLookup = fetch_tx_gas_fee,
    ) -> None:
        self._clients = clients
        self._store = store
        self._rebalancer = rebalancer
        self._price_drift_warning = Decimal(price_drift_warning)
        self._gas_fee_lookup = gas_fee_lookup

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> PositionConfig:
        if self._store.config is None:
            return self._store.load()
        return self._store.config

    @property
    def pool_id(self) -> str:
        return self.config.pool_id

    @property
    def chain(self) -> ChainInfo:
        return self._clients.home_chain

    def _evaluator(self) -> PositionRangeEvaluator:
        return PositionRangeEvaluator(self.config.rebalance_threshold_percent, self.tick_math)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def execute(self, token: Optional[CancellationToken] = None) -> RebalanceResult:
        """One orchestration pass. Raises on any non-recoverable error."""
        token = token or CancellationToken()
        evaluator = self._evaluator()
        log = logger.bind(pool_id=self.pool_id, chain=self.chain.id)
        log.info("execution_started", position_id=self.config.position_id or None)

        token.raise_if_cancelled()
        pool = await self._clients.pool_client.get_pool_info(self.pool_id)
        self.tick_math.validate_tick_spacing(pool.tick_spacing)

        await self._withdraw_unknown_positions(self.config.position_id)

        replaced = False
        managed_id = self.config.position_id
        if managed_id:
            position = await self._find_managed_position(managed_id)
            if position is not None:
                position_range = evaluator.evaluate_position(
                    position, pool.tick_spacing, pool.current_price
                )
                balance = float(position_range.percentage_balance)
                if position_range.is_in_range:
                    log.info("position_in_range", position_id=managed_id, percentage_balance=balance)
                    return RebalanceResult(
                        pool_id=self.pool_id,
                        position_id=managed_id,
                        action="none",
                        message=f"Position in range at {balance:.2f}% balance",
                        percentage_balance=balance,
                    )

                log.info("position_out_of_range", position_id=managed_id, percentage_balance=balance)
                token.raise_if_cancelled()
                await self._assert_withdraw_fee(1, "withdraw position")
                await self._withdraw_managed(position)
                replaced = True

        token.raise_if_cancelled()
        created = await self._create_position(pool)
        action = "rebalanced" if replaced else "created"
        log.info("execution_finished", action=action, position_id=created.position_id)
        return RebalanceResult(
            pool_id=self.pool_id,
            position_id=created.position_id,
            action=action,
            message=(
                f"Position {created.position_id} created with liquidity "
                f"{created.liquidity_created}"
            ),
        )

    async def _find_managed_position(self, position_id: str) -> Optional[Position]:
        try:
            return await self._clients.pool_client.get_position_info(position_id)
        except PositionNotFound:
            logger.warning("managed_position_not_found", position_id=position_id)
            self._store.set_position_id("")
            return None

    # ------------------------------------------------------------------
    # Status / manual withdraw
    # ------------------------------------------------------------------

    async def get_status(self) -> StatusReport:
        """Read-only snapshot of the pool and managed position."""
        if not self.pool_id:
            return StatusReport()
        pool = await self._clients.pool_client.get_pool_info(self.pool_id)
        if not self.config.position_id:
            return StatusReport(pool=pool)
        try:
            position = await self._clients.pool_client.get_position_info(self.config.position_id)
        except PositionNotFound:
            logger.warning("managed_position_not_found", position_id=self.config.position_id)
            return StatusReport(pool=pool)

        position_range = self._evaluator().evaluate_position(
            position, pool.tick_spacing, pool.current_price
        )
        return StatusReport(
            pool=pool,
            position=position,
            position_range=position_range,
            lower_price=self.tick_math.tick_to_price(position.lower_tick),
            upper_price=self.tick_math.tick_to_price(position.upper_tick),
        )

    async def withdraw_position(self) -> WithdrawPositionResult:
        """Reconcile, then withdraw the managed position and forget its id."""
        await self._withdraw_unknown_positions(self.config.position_id)
        await self._assert_withdraw_fee(1, "withdraw position")

        position_id = self.config.position_id
        if not position_id:
            raise PositionNotFound("")
        position = await self._clients.pool_client.get_position_info(position_id)
        return await self._withdraw_managed(position)

    # ------------------------------------------------------------------
    # Chain writes
    # ------------------------------------------------------------------

    async def _assert_withdraw_fee(self, count: int, description: str) -> None:
        balances = await self._clients.home_account.get_available_balances()
        assert_enough_balance_for_fees(
            balances,
            self.chain.native_token,
            self.fees.withdraw_position_fee * count,
            description,
        )

    async def _withdraw_unknown_positions(self, managed_id: str) -> List[WithdrawPositionResult]:
        positions = await self._clients.pool_client.get_positions(self.pool_id)
        unknown = [p for p in positions if p.position_id != managed_id]
        if not unknown:
            return []

        await self._assert_withdraw_fee(len(unknown), "withdraw unknown positions")
        signer_address = await self._clients.home_signer.get_signer_address()
        results = []
        for position in unknown:
            logger.info("withdrawing_unknown_position", position_id=position.position_id)
            result = await self._clients.pool_client.withdraw_position(position)
            record = AccountTransaction(
                signer_address=signer_address,
                chain_id=self.chain.id,
                tx_hash=result.tx_hash,
                tx_action_index=0,
                transaction_type=TransactionType.WITHDRAW_RECONCILIATION.value,
                position_id=position.position_id,
                successful=True,
            )
            record.set_output(result.amount0, result.amount1)
            record.set_gas_fee(await self._gas_fee(result.gas_fee, result.tx_hash))
            await self._clients.ledger.add_transaction(record)
            results.append(result)
        return results

    async def _withdraw_managed(self, position: Position) -> WithdrawPositionResult:
        logger.info("withdrawing_position", position_id=position.position_id)
        result = await self._clients.pool_client.withdraw_position(position)
        signer_address = await self._clients.home_signer.get_signer_address()

        withdraw_record = AccountTransaction(
            signer_address=signer_address,
            chain_id=self.chain.id,
            tx_hash=result.tx_hash,
            tx_action_index=0,
            transaction_type=TransactionType.WITHDRAW_POSITION.value,
            position_id=position.position_id,
            successful=True,
        )
        withdraw_record.set_output(result.amount0, result.amount1)
        withdraw_record.set_gas_fee(await self._gas_fee(result.gas_fee, result.tx_hash))
        records = [withdraw_record]

        if result.rewards:
            rewards_record = AccountTransaction(
                signer_address=signer_address,
                chain_id=self.chain.id,
                tx_hash=result.tx_hash,
                tx_action_index=1,
                transaction_type=TransactionType.COLLECT_SPREAD_REWARDS.value,
                position_id=position.position_id,
                successful=True,
            )
            second = result.rewards[1] if len(result.rewards) > 1 else None
            rewards_record.set_output(result.rewards[0], second)
            records.append(rewards_record)

        await self._clients.ledger.add_transaction_batch(records)
        logger.info(
            "position_withdrawn",
            position_id=position.position_id,
            amount0=str(result.amount0),
            amount1=str(result.amount1),
            rewards=[str(reward) for reward in result.rewards],
        )

        self._store.set_position_id("")
        return result

    async def _create_position(self, pool: Pool) -> CreatePositionResult:
        initial_price = await self._clients.pool_client.get_pool_price(self.pool_id)
        output = await self._rebalancer.rebalance_tokens_for_5050_deposit(
            pool.token0, pool.token1, initial_price
        )
        if output.outcome is RebalanceOutcome.FAILED:
            raise BridgeOrSwapFailed(f"Token rebalance failed: {output.reason}")
        logger.info(
            "tokens_ready_for_deposit",
            outcome=output.outcome.value,
            token0=str(output.token0),
            token1=str(output.token1),
        )

        # the rebalance may take minutes; size the range on a fresh price
        current_price = await self._clients.pool_client.get_pool_price(self.pool_id)
        drift = abs(current_price - initial_price) / initial_price
        if drift > self._price_drift_warning:
            logger.warning(
                "price_drift_during_rebalance",
                drift_pct=f"{drift * 100:.2f}",
                initial_price=str(initial_price),
                current_price=str(current_price),
            )

        lower_tick, upper_tick = self.tick_math.band_ticks(
            current_price, self._band_percentage(), pool.tick_spacing
        )
        logger.info(
            "position_range_computed",
            lower_tick=lower_tick,
            upper_tick=upper_tick,
            current_price=str(current_price),
        )

        assert_enough_balance_for_fees(
            output.home_balances,
            self.chain.native_token,
            self.fees.create_position_fee,
            "create position",
        )
        result = await self._clients.pool_client.create_position(
            self.pool_id,
            CreatePositionParams(
                lower_tick=lower_tick,
                upper_tick=upper_tick,
                token_amount0=output.token0,
                token_amount1=output.token1,
            ),
        )

        record = AccountTransaction(
            signer_address=await self._clients.home_signer.get_signer_address(),
            chain_id=self.chain.id,
            tx_hash=result.tx_hash,
            tx_action_index=0,
            transaction_type=TransactionType.CREATE_POSITION.value,
            position_id=result.position_id,
            successful=True,
        )
        record.set_input(result.amount0, result.amount1)
        record.set_gas_fee(await self._gas_fee(result.gas_fee, result.tx_hash))
        await self._clients.ledger.add_transaction(record)
        logger.info(
            "position_created",
            position_id=result.position_id,
            amount0=str(result.amount0),
            amount1=str(result.amount1),
        )

        self._store.set_position_id(result.position_id)
        return result

    def _band_percentage(self) -> Decimal:
        band = Decimal(str(self.config.position_band_percentage))
        if band < self.min_band_percentage:
            logger.warning(
                "band_percentage_too_narrow",
                requested=str(band),
                using=str(self.min_band_percentage),
            )
            return self.min_band_percentage
        return band

    async def _gas_fee(self, gas_fee: Optional[TokenAmount], tx_hash: str) -> Optional[TokenAmount]:
        return await resolve_gas_fee(gas_fee, self.chain, tx_hash, self._gas_fee_lookup)


# ---------------------------------------------------------------------------
# Per-chain variants
# ---------------------------------------------------------------------------

class OsmosisLiquidityOrchestrator(LiquidityOrchestrator):
    """Osmosis CL pool, rebalanced through the Bolt venue on Archway."""

    tick_math = TickMath
    fees = OSMOSIS_FEES

    @classmethod
    def from_clients(
        cls,
        clients: ChainClients,
        store: ConfigStore,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        price_drift_warning: Decimal = Decimal("0.01"),
        gas_fee_lookup: GasFeeLookup = fetch_tx_gas_fee,
    ) -> OsmosisLiquidityOrchestrator:
        if clients.remote_chain is None:
            raise ValueError("Osmosis rebalancing needs the Archway chain clients")
        rebalancer = TokenRebalancer(
            home_chain=clients.home_chain,
            home_account=clients.home_account,
            home_signer=clients.home_signer,
            swap_client=clients.swap_client,
            swap_signer=clients.swap_signer,
            ledger=clients.ledger,
            home_fees=OSMOSIS_FEES,
            remote_chain=clients.remote_chain,
            remote_account=clients.remote_account,
            bridge_client=clients.bridge_client,
            remote_fees=ARCHWAY_FEES,
            swap_transaction_type=TransactionType.BOLT_ARCHWAY_SWAP,
            tolerance=tolerance,
            gas_fee_lookup=gas_fee_lookup,
        )
        return cls(clients, store, rebalancer, price_drift_warning, gas_fee_lookup)


class SuiLiquidityOrchestrator(LiquidityOrchestrator):
    """Cetus CL pool on Sui, rebalanced on the Bolt venue on the same chain."""

    tick_math = CetusTickMath
    fees = SUI_FEES
    min_band_percentage = Decimal("0.5")

    @classmethod
    def from_clients(
        cls,
        clients: ChainClients,
        store: ConfigStore,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        price_drift_warning: Decimal = Decimal("0.01"),
        gas_fee_lookup: GasFeeLookup = fetch_tx_gas_fee,
    ) -> SuiLiquidityOrchestrator:
        rebalancer = TokenRebalancer(
            home_chain=clients.home_chain,
            home_account=clients.home_account,
            home_signer=clients.home_signer,
            swap_client=clients.swap_client,
            swap_signer=clients.swap_signer,
            ledger=clients.ledger,
            home_fees=SUI_FEES,
            swap_transaction_type=TransactionType.BOLT_SUI_SWAP,
            tolerance=tolerance,
            gas_fee_lookup=gas_fee_lookup,
        )
        return cls(clients, store, rebalancer, price_drift_warning, gas_fee_lookup)


ORCHESTRATORS = {
    "osmosis": OsmosisLiquidityOrchestrator,
    "sui": SuiLiquidityOrchestrator,
}
