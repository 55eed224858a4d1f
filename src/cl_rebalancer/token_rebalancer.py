"""Token rebalancing for 50/50 deposits.

Brings the wallet's token0/token1 holdings to an even split (valued in
token1 at the pool price) with a single swap on a second venue. On the
cross-chain setup the venue lives on a remote chain, so the swap is
bracketed by bridge transfers:

  1. bridge the shortfall of the excess token home -> remote
  2. swap excess -> deficit token on the remote venue
  3. bridge the swap output (and any stray remote balance) back home

Each step is written to the transaction ledger as soon as it settles.
Collaborator failures are not retried here: a half-finished
bridge/swap sequence is only safe to resume after the caller re-reads
balances, so errors propagate wrapped in ``BridgeOrSwapFailed``.

All amounts are integer base units; prices are base-unit ratios
(token1 per token0).
"""

from __future__ import annotations

import asyncio
from decimal import ROUND_FLOOR, Decimal, localcontext
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

import structlog

from cl_rebalancer.errors import (
    BridgeOrSwapFailed,
    InsufficientBalanceForFees,
    MinimumOutputNotMet,
    RebalancerError,
)
from cl_rebalancer.fees import (
    FeeSchedule,
    assert_enough_balance_for_fees,
    available_after_reserve,
    balance_of,
    fetch_tx_gas_fee,
    resolve_gas_fee,
)
from cl_rebalancer.interfaces import (
    BridgeClient,
    BridgeRequest,
    ChainAccount,
    Signer,
    SwapClient,
    SwapParams,
    TransactionLedger,
)
from cl_rebalancer.models import (
    AccountTransaction,
    BridgeResult,
    ChainInfo,
    MultiChainTokenBalance,
    RebalanceOutcome,
    RebalancerOutput,
    SwapResult,
    Token,
    TokenAmount,
    TransactionType,
)
from cl_rebalancer.registry import find_token_equivalent_on_other_chain

logger = structlog.get_logger()

DEFAULT_TOLERANCE = Decimal("0.001")

_T = TypeVar("_T")


# ---------------------------------------------------------------------------
# Pure sizing helpers
# ---------------------------------------------------------------------------

def target_amounts(balance0: Decimal, balance1: Decimal, price: Decimal) -> Tuple[Decimal, Decimal]:
    """Per-token amounts of an even split, valued in token1 at ``price``."""
    with localcontext() as ctx:
        ctx.prec = 60
        target_value = (balance0 * price + balance1) / 2
        return target_value / price, target_value


def is_balanced(
    balance0: Decimal,
    balance1: Decimal,
    price: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> bool:
    target0, target1 = target_amounts(balance0, balance1, price)
    if target0 <= 0 or target1 <= 0:
        return False
    with localcontext() as ctx:
        ctx.prec = 60
        return (
            abs(balance0 - target0) / target0 < tolerance
            and abs(balance1 - target1) / target1 < tolerance
        )


def amount_to_move(
    balance0: Decimal,
    balance1: Decimal,
    reference_price: Decimal,
    venue_price: Decimal,
) -> Tuple[int, Decimal, Decimal]:
    """Closed-form swap size that evens out the pair.

    Returns ``(excess_index, amount_in, expected_out)``. Moving
    ``amount_in`` of the excess token through a venue quoting
    ``venue_price`` leaves both sides equal in ``reference_price`` terms.
    ``amount_in`` is floored to whole base units.
    """
    if reference_price <= 0 or venue_price <= 0:
        raise ValueError("Prices must be positive")
    with localcontext() as ctx:
        ctx.prec = 60
        value0 = balance0 * reference_price
        if value0 >= balance1:
            excess_index = 0
            amount_in = (value0 - balance1) / (reference_price + venue_price)
        else:
            excess_index = 1
            amount_in = (balance1 - value0) / (reference_price / venue_price + 1)
        amount_in = amount_in.to_integral_value(rounding=ROUND_FLOOR)
        if excess_index == 0:
            expected_out = amount_in * venue_price
        else:
            expected_out = amount_in / venue_price
    return excess_index, amount_in, expected_out


def check_minimum_output(expected_output: Decimal, min_base_out: Decimal) -> None:
    if expected_output <= min_base_out:
        raise MinimumOutputNotMet(expected_output, min_base_out)


# ---------------------------------------------------------------------------
# TokenRebalancer
# ---------------------------------------------------------------------------

class TokenRebalancer:
    """Executes the swap (and bridges) that evens out a token pair.

    With ``remote_chain`` unset the swap venue is on the home chain and
    nothing is ever bridged.
    """

    def __init__(
        self,
        home_chain: ChainInfo,
        home_account: ChainAccount,
        home_signer: Signer,
        swap_client: SwapClient,
        swap_signer: Signer,
        ledger: TransactionLedger,
        home_fees: FeeSchedule,
        remote_chain: Optional[ChainInfo] = None,
        remote_account: Optional[ChainAccount] = None,
        bridge_client: Optional[BridgeClient] = None,
        remote_fees: Optional[FeeSchedule] = None,
        swap_transaction_type: TransactionType = TransactionType.BOLT_ARCHWAY_SWAP,
        tolerance: Decimal = DEFAULT_TOLERANCE,
        gas_fee_lookup: Callable[[ChainInfo, str], Optional[TokenAmount]] = fetch_tx_gas_fee,
    ) -> None:
        if remote_chain is not None and (remote_account is None or bridge_client is None):
            raise ValueError("A remote chain needs both a remote account and a bridge client")
        self._home_chain = home_chain
        self._home_account = home_account
        self._home_signer = home_signer
        self._swap_client = swap_client
        self._swap_signer = swap_signer
        self._ledger = ledger
        self._home_fees = home_fees
        self._remote_chain = remote_chain
        self._remote_account = remote_account
        self._bridge = bridge_client
        self._remote_fees = remote_fees or FeeSchedule()
        self._swap_transaction_type = swap_transaction_type
        self._tolerance = Decimal(tolerance)
        self._gas_fee_lookup = gas_fee_lookup

    @property
    def is_cross_chain(self) -> bool:
        return self._remote_chain is not None

    @property
    def _venue_chain(self) -> ChainInfo:
        return self._remote_chain or self._home_chain

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def rebalance_tokens_for_5050_deposit(
        self,
        token0: Token,
        token1: Token,
        current_price: Decimal,
        home_balances: Optional[Dict[str, TokenAmount]] = None,
    ) -> RebalancerOutput:
        """Even out ``token0``/``token1`` for a deposit at ``current_price``.

        Returns the amounts available on the home chain for the deposit
        (fee reserve already deducted) with ``outcome`` telling whether a
        swap ran.
        """
        price = Decimal(current_price)
        home_balances, remote_balances = await self._read_balances(home_balances)
        self._assert_fee_reserves(home_balances, remote_balances)

        multi0 = self._multi_chain_balance(token0, home_balances, remote_balances)
        multi1 = self._multi_chain_balance(token1, home_balances, remote_balances)

        total0, total1 = multi0.total_available, multi1.total_available
        if total0 == 0 and total1 == 0:
            raise InsufficientBalanceForFees(
                f"Your account doesn't have enough significant balance of "
                f"{token0.name} or {token1.name} once gas fees are reserved"
            )

        target0, target1 = target_amounts(total0, total1, price)
        logger.info(
            "rebalance_targets",
            token0=token0.name,
            token1=token1.name,
            total0=str(total0),
            total1=str(total1),
            target0=str(target0),
            target1=str(target1),
        )

        if is_balanced(total0, total1, price, self._tolerance):
            logger.info("tokens_already_balanced", tolerance=str(self._tolerance))
            return await self._conclude_without_swap(
                token0, token1, home_balances, remote_balances, "already balanced"
            )

        venue_token0 = self._venue_token(token0)
        venue_token1 = self._venue_token(token1)
        venue_price = Decimal(await self._swap_client.get_price(venue_token0, venue_token1))
        logger.info("venue_price", reference_price=str(price), venue_price=str(venue_price))

        excess_index, move_amount, expected_out = amount_to_move(total0, total1, price, venue_price)
        excess, deficit = (multi0, multi1) if excess_index == 0 else (multi1, multi0)
        excess_venue = venue_token0 if excess_index == 0 else venue_token1
        deficit_venue = venue_token1 if excess_index == 0 else venue_token0

        logger.info(
            "rebalance_amount_computed",
            excess_token=excess.token.name,
            amount_in=str(move_amount),
            expected_out=str(expected_out),
        )

        if move_amount <= 0:
            return await self._conclude_without_swap(
                token0, token1, home_balances, remote_balances, "nothing to move"
            )

        pool_config = await self._swap_client.get_pool_config_by_denom(deficit_venue.denom)
        try:
            check_minimum_output(expected_out, Decimal(pool_config.min_base_out))
        except MinimumOutputNotMet as exc:
            logger.info("swap_below_minimum_output", detail=str(exc))
            return await self._conclude_without_swap(
                token0, token1, home_balances, remote_balances, "below venue minimum output"
            )

        shortfall = self._bridge_out_amount(excess, move_amount)
        self._assert_fees(home_balances, remote_balances, bridging_out=shortfall > 0)

        swap_output = await self._move(
            excess=excess,
            deficit=deficit,
            excess_venue=excess_venue,
            deficit_venue=deficit_venue,
            move_amount=move_amount,
            shortfall=shortfall,
        )
        if swap_output is None:
            balances = await self._home_account.get_available_balances()
            return self._output(
                RebalanceOutcome.FAILED, token0, token1, balances, "swap settled with no output"
            )

        balances = await self._home_account.get_available_balances()
        return self._output(RebalanceOutcome.EXECUTED, token0, token1, balances, "swapped")

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def _read_balances(
        self, home_balances: Optional[Dict[str, TokenAmount]]
    ) -> Tuple[Dict[str, TokenAmount], Dict[str, TokenAmount]]:
        home_read: Awaitable[Dict[str, TokenAmount]]
        if home_balances is not None:
            home_read = _value(home_balances)
        else:
            home_read = self._home_account.get_available_balances()
        if self._remote_account is None:
            return await home_read, {}
        home, remote = await asyncio.gather(home_read, self._remote_account.get_available_balances())
        return home, remote

    def _multi_chain_balance(
        self,
        token: Token,
        home_balances: Dict[str, TokenAmount],
        remote_balances: Dict[str, TokenAmount],
    ) -> MultiChainTokenBalance:
        home = balance_of(home_balances, token)
        available_home = available_after_reserve(
            home, self._home_chain.native_token, self._home_fees.reserve
        )
        if self._remote_chain is None:
            return MultiChainTokenBalance(token, home, None, available_home, Decimal(0))

        remote = balance_of(remote_balances, self._venue_token(token))
        available_remote = available_after_reserve(
            remote, self._remote_chain.native_token, self._remote_fees.reserve
        )
        return MultiChainTokenBalance(token, home, remote, available_home, available_remote)

    def _venue_token(self, token: Token) -> Token:
        if self._remote_chain is None:
            return token
        return find_token_equivalent_on_other_chain(token, self._remote_chain.id)

    def _bridge_out_amount(self, excess: MultiChainTokenBalance, move_amount: Decimal) -> Decimal:
        if not self.is_cross_chain:
            return Decimal(0)
        shortfall = max(move_amount - excess.available_remote, Decimal(0))
        return min(shortfall, excess.available_home)

    def _assert_fee_reserves(
        self,
        home_balances: Dict[str, TokenAmount],
        remote_balances: Dict[str, TokenAmount],
    ) -> None:
        """Every chain taking part must hold its full native-token reserve."""
        assert_enough_balance_for_fees(
            home_balances,
            self._home_chain.native_token,
            self._home_fees.reserve,
            f"fee reserve on {self._home_chain.name}",
        )
        if self._remote_chain is not None:
            assert_enough_balance_for_fees(
                remote_balances,
                self._remote_chain.native_token,
                self._remote_fees.reserve,
                f"fee reserve on {self._remote_chain.name}",
            )

    def _assert_fees(
        self,
        home_balances: Dict[str, TokenAmount],
        remote_balances: Dict[str, TokenAmount],
        bridging_out: bool,
    ) -> None:
        if not self.is_cross_chain:
            assert_enough_balance_for_fees(
                home_balances,
                self._home_chain.native_token,
                self._home_fees.swap_fee + self._home_fees.create_position_fee,
                "swap and deposit",
            )
            return

        home_needed = self._home_fees.create_position_fee
        if bridging_out:
            home_needed += self._home_fees.bridge_fee
        assert_enough_balance_for_fees(
            home_balances,
            self._home_chain.native_token,
            home_needed,
            f"bridging to {self._venue_chain.name} for rebalancing",
        )
        assert_enough_balance_for_fees(
            remote_balances,
            self._venue_chain.native_token,
            self._remote_fees.swap_fee + self._remote_fees.bridge_fee,
            f"bridge and swap on {self._venue_chain.name}",
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _move(
        self,
        excess: MultiChainTokenBalance,
        deficit: MultiChainTokenBalance,
        excess_venue: Token,
        deficit_venue: Token,
        move_amount: Decimal,
        shortfall: Decimal,
    ) -> Optional[TokenAmount]:
        """Bridge out, swap, bridge back. Returns the swap output or ``None``."""
        swap_input = move_amount
        remote_excess = excess.available_remote
        if shortfall > 0:
            bridge_in = await self._bridge_token(
                TokenAmount.of(shortfall, excess.token),
                self._venue_chain,
                self._home_signer,
                source_chain=self._home_chain,
            )
            # the bridge may deliver less than it was sent
            remote_excess += Decimal(bridge_in.amount_out)
            swap_input = min(move_amount, remote_excess)

        swap_result = await self._swap(TokenAmount.of(swap_input, excess_venue), deficit_venue)
        output = TokenAmount(swap_result.amount_out, deficit_venue)
        if output.is_zero:
            logger.error("swap_returned_nothing", tx_hash=swap_result.tx_hash)
            return None

        if self.is_cross_chain:
            bring_back = output.value + deficit.available_remote
            await self._bridge_token(
                TokenAmount.of(bring_back, deficit_venue),
                self._home_chain,
                self._swap_signer,
                source_chain=self._venue_chain,
            )
            stray_excess = max(remote_excess - swap_input, Decimal(0))
            if stray_excess > 0:
                await self._bridge_token(
                    TokenAmount.of(stray_excess, excess_venue),
                    self._home_chain,
                    self._swap_signer,
                    source_chain=self._venue_chain,
                )
        return output

    async def _conclude_without_swap(
        self,
        token0: Token,
        token1: Token,
        home_balances: Dict[str, TokenAmount],
        remote_balances: Dict[str, TokenAmount],
        reason: str,
    ) -> RebalancerOutput:
        swept = await self._sweep_remote_leftovers(token0, token1, remote_balances)
        if swept:
            home_balances = await self._home_account.get_available_balances()
        return self._output(RebalanceOutcome.SKIPPED, token0, token1, home_balances, reason)

    async def _sweep_remote_leftovers(
        self,
        token0: Token,
        token1: Token,
        remote_balances: Dict[str, TokenAmount],
    ) -> List[BridgeResult]:
        """Bridge home whatever an earlier interrupted run left on the remote chain."""
        if self._remote_chain is None or not remote_balances:
            return []
        leftovers = []
        for token in (token0, token1):
            remote_token = self._venue_token(token)
            available = available_after_reserve(
                balance_of(remote_balances, remote_token),
                self._remote_chain.native_token,
                self._remote_fees.reserve,
            )
            if available > 0:
                leftovers.append((remote_token, available))
        if not leftovers:
            return []

        assert_enough_balance_for_fees(
            remote_balances,
            self._remote_chain.native_token,
            self._remote_fees.bridge_fee * len(leftovers),
            f"bridging leftovers home from {self._remote_chain.name}",
        )
        results = []
        for remote_token, available in leftovers:
            logger.info("sweeping_remote_leftover", token=remote_token.name, amount=str(available))
            results.append(
                await self._bridge_token(
                    TokenAmount.of(available, remote_token),
                    self._home_chain,
                    self._swap_signer,
                    source_chain=self._remote_chain,
                )
            )
        return results

    async def _bridge_token(
        self,
        amount: TokenAmount,
        destination: ChainInfo,
        signer: Signer,
        source_chain: ChainInfo,
    ) -> BridgeResult:
        assert self._bridge is not None
        logger.info(
            "bridging",
            amount=amount.human_readable,
            token=amount.token.name,
            source_chain=source_chain.id,
            destination_chain=destination.id,
        )
        result = await _collaborator_call(
            f"bridge of {amount} to {destination.name}",
            self._bridge.bridge_token(signer, BridgeRequest(amount.token, destination.id, amount)),
        )
        record = AccountTransaction(
            signer_address=await signer.get_signer_address(),
            chain_id=source_chain.id,
            tx_hash=result.tx_hash,
            tx_action_index=0,
            transaction_type=TransactionType.IBC_TRANSFER.value,
            destination_address=result.destination_address,
            destination_chain_id=result.destination_token.chain_id,
            successful=True,
        )
        record.set_input(amount)
        record.set_output(TokenAmount(result.amount_out, result.destination_token))
        gas_fee = await resolve_gas_fee(result.gas_fee, source_chain, result.tx_hash, self._gas_fee_lookup)
        record.set_gas_fee(gas_fee)
        await self._ledger.add_transaction(record)
        logger.info("bridge_complete", tx_hash=result.tx_hash)
        return result

    async def _swap(self, amount_in: TokenAmount, asset_out: Token) -> SwapResult:
        chain = self._venue_chain
        logger.info(
            "swapping",
            amount_in=amount_in.human_readable,
            asset_in=amount_in.token.name,
            asset_out=asset_out.name,
            chain=chain.id,
        )
        result = await _collaborator_call(
            f"swap of {amount_in} on {chain.name}",
            self._swap_client.swap(self._swap_signer, SwapParams(amount_in, asset_out)),
        )
        record = AccountTransaction(
            signer_address=await self._swap_signer.get_signer_address(),
            chain_id=chain.id,
            tx_hash=result.tx_hash,
            tx_action_index=0,
            transaction_type=self._swap_transaction_type.value,
            successful=True,
        )
        record.set_input(amount_in)
        record.set_output(TokenAmount(result.amount_out, asset_out))
        gas_fee = await resolve_gas_fee(result.gas_fee, chain, result.tx_hash, self._gas_fee_lookup)
        record.set_gas_fee(gas_fee)
        await self._ledger.add_transaction(record)
        logger.info("swap_complete", tx_hash=result.tx_hash, amount_out=result.amount_out)
        return result

    def _output(
        self,
        outcome: RebalanceOutcome,
        token0: Token,
        token1: Token,
        home_balances: Dict[str, TokenAmount],
        reason: str,
    ) -> RebalancerOutput:
        native = self._home_chain.native_token
        reserve = self._home_fees.reserve
        return RebalancerOutput(
            outcome=outcome,
            token0=TokenAmount.of(available_after_reserve(balance_of(home_balances, token0), native, reserve), token0),
            token1=TokenAmount.of(available_after_reserve(balance_of(home_balances, token1), native, reserve), token1),
            home_balances=home_balances,
            reason=reason,
        )


async def _value(value: _T) -> _T:
    return value


async def _collaborator_call(description: str, call: Awaitable[_T]) -> _T:
    try:
        return await call
    except RebalancerError:
        raise
    except Exception as exc:
        logger.error("bridge_or_swap_failed", operation=description, error=str(exc))
        raise BridgeOrSwapFailed(f"{description} failed: {exc}") from exc
