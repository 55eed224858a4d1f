"""Data models for the concentrated-liquidity rebalancer.

Includes:
- Frozen dataclasses for registry identity (Token, ChainInfo) and amounts
- Dataclasses for pool / position state read fresh from chain each cycle
- Results returned by the pool, bridge and swap collaborators
- Pydantic model for the per-run orchestration result
- SQLAlchemy ORM model for the append-only transaction ledger
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal
from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel
from sqlalchemy import Boolean, DateTime, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

Numeric = Union[int, str, Decimal]

_BASE_UNITS = re.compile(r"[0-9]+")


# ---------------------------------------------------------------------------
# Registry identity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Token:
    """A fungible asset on one chain.

    Tokens on different chains that represent the same asset are linked
    through ``origin_denom`` / ``origin_chain_id`` (the home-chain denom).
    """

    chain_id: str
    denom: str
    name: str
    decimals: int
    origin_denom: Optional[str] = None
    origin_chain_id: Optional[str] = None


@dataclass(frozen=True)
class ChainInfo:
    id: str
    name: str
    prefix: str
    rpc_endpoint: str
    rest_endpoint: str
    native_token: Token


# ---------------------------------------------------------------------------
# TokenAmount: integer base units, never floating point
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TokenAmount:
    """Non-negative amount of ``token`` in its smallest unit, as a base-10 string."""

    amount: str
    token: Token

    def __post_init__(self) -> None:
        if not isinstance(self.amount, str) or not _BASE_UNITS.fullmatch(self.amount):
            raise ValueError(
                f"TokenAmount must be a non-negative integer string, got {self.amount!r}"
            )

    @classmethod
    def of(cls, value: Numeric, token: Token) -> TokenAmount:
        """Build from any numeric value, flooring to whole base units."""
        floored = Decimal(value).to_integral_value(rounding=ROUND_FLOOR)
        if floored < 0:
            raise ValueError(f"TokenAmount cannot be negative: {value}")
        return cls(str(int(floored)), token)

    @classmethod
    def zero(cls, token: Token) -> TokenAmount:
        return cls("0", token)

    @classmethod
    def from_human_readable(cls, amount: Numeric, token: Token) -> TokenAmount:
        return cls.of(Decimal(amount).scaleb(token.decimals), token)

    @property
    def value(self) -> Decimal:
        return Decimal(self.amount)

    @property
    def is_zero(self) -> bool:
        return int(self.amount) == 0

    @property
    def human_readable(self) -> str:
        shifted = Decimal(self.amount).scaleb(-self.token.decimals)
        return f"{shifted:.{self.token.decimals}f}"

    def __str__(self) -> str:
        return f"{self.human_readable} {self.token.name}"


# ---------------------------------------------------------------------------
# Pool / position state (re-read every orchestration cycle)
# ---------------------------------------------------------------------------

@dataclass
class Pool:
    """Current on-chain state of a CL pool. token0/token1 order is canonical."""

    id: str
    token0: Token
    token1: Token
    tick_spacing: int
    current_tick: int
    current_price: Decimal


@dataclass
class Position:
    position_id: str
    lower_tick: int
    upper_tick: int
    liquidity: str
    asset0: Optional[TokenAmount] = None
    asset1: Optional[TokenAmount] = None


@dataclass(frozen=True)
class PositionRange:
    is_in_range: bool
    percentage_balance: Decimal


@dataclass(frozen=True)
class MultiChainTokenBalance:
    """One logical token's holdings on the home chain and the remote venue chain.

    ``available_*`` are what remains after the fee reserve is taken from
    whichever chain uses this token for gas.
    """

    token: Token
    home_balance: TokenAmount
    remote_balance: Optional[TokenAmount]
    available_home: Decimal
    available_remote: Decimal

    @property
    def total_available(self) -> Decimal:
        return self.available_home + self.available_remote


# ---------------------------------------------------------------------------
# Collaborator results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BridgeResult:
    tx_hash: str
    chain_id: str
    destination_token: Token
    destination_address: str
    amount_out: str
    gas_fee: Optional[TokenAmount] = None


@dataclass(frozen=True)
class SwapResult:
    tx_hash: str
    chain_id: str
    destination_token: Token
    amount_out: str
    gas_fee: Optional[TokenAmount] = None


@dataclass(frozen=True)
class VenuePoolConfig:
    """Swap-venue constraints for one output denom."""

    denom: str
    min_base_out: Decimal


@dataclass(frozen=True)
class CreatePositionParams:
    lower_tick: int
    upper_tick: int
    token_amount0: TokenAmount
    token_amount1: TokenAmount


@dataclass(frozen=True)
class CreatePositionResult:
    position_id: str
    amount0: TokenAmount
    amount1: TokenAmount
    liquidity_created: str
    lower_tick: int
    upper_tick: int
    tx_hash: str
    gas_fee: Optional[TokenAmount] = None


@dataclass(frozen=True)
class WithdrawPositionResult:
    amount0: TokenAmount
    amount1: TokenAmount
    tx_hash: str
    rewards: List[TokenAmount] = field(default_factory=list)
    gas_fee: Optional[TokenAmount] = None


# ---------------------------------------------------------------------------
# Rebalancer / orchestrator results
# ---------------------------------------------------------------------------

class RebalanceOutcome(str, Enum):
    SKIPPED = "skipped"
    EXECUTED = "executed"
    FAILED = "failed"


@dataclass
class RebalancerOutput:
    """Amounts available for the deposit after a rebalance attempt."""

    outcome: RebalanceOutcome
    token0: TokenAmount
    token1: TokenAmount
    home_balances: Dict[str, TokenAmount]
    reason: str = ""


class RebalanceResult(BaseModel):
    """Outcome of one ``LiquidityOrchestrator.execute()`` run."""

    pool_id: str
    position_id: str = ""
    action: Literal["created", "rebalanced", "none", "error"]
    message: str = ""
    error: Optional[str] = None
    percentage_balance: Optional[float] = None


@dataclass
class StatusReport:
    pool: Optional[Pool] = None
    position: Optional[Position] = None
    position_range: Optional[PositionRange] = None
    lower_price: Optional[Decimal] = None
    upper_price: Optional[Decimal] = None


# ---------------------------------------------------------------------------
# Transaction ledger: DB-persisted
# ---------------------------------------------------------------------------

class TransactionType(str, Enum):
    IBC_TRANSFER = "ibc_transfer"
    BOLT_ARCHWAY_SWAP = "bolt_archway_swap"
    BOLT_SUI_SWAP = "bolt_sui_swap"
    CREATE_POSITION = "create_position"
    WITHDRAW_POSITION = "withdraw_position"
    WITHDRAW_RECONCILIATION = "withdraw_reconciliation"
    COLLECT_SPREAD_REWARDS = "collect_spread_rewards"


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ORM models."""
    pass


class AccountTransaction(Base):
    """One confirmed chain action performed by the wallet.

    Keyed by ``(chain_id, tx_hash, tx_action_index)`` so re-logging the same
    action is an idempotent upsert.
    """

    __tablename__ = "account_transactions"

    chain_id: Mapped[str] = mapped_column(String, primary_key=True)
    tx_hash: Mapped[str] = mapped_column(String, primary_key=True)
    tx_action_index: Mapped[int] = mapped_column(Integer, primary_key=True, default=0)
    signer_address: Mapped[str] = mapped_column(String, index=True)
    transaction_type: Mapped[str] = mapped_column(String)
    position_id: Mapped[Optional[str]] = mapped_column(String)
    input_amount: Mapped[Optional[str]] = mapped_column(String)
    input_token_denom: Mapped[Optional[str]] = mapped_column(String)
    input_token_name: Mapped[Optional[str]] = mapped_column(String)
    second_input_amount: Mapped[Optional[str]] = mapped_column(String)
    second_input_token_denom: Mapped[Optional[str]] = mapped_column(String)
    second_input_token_name: Mapped[Optional[str]] = mapped_column(String)
    output_amount: Mapped[Optional[str]] = mapped_column(String)
    output_token_denom: Mapped[Optional[str]] = mapped_column(String)
    output_token_name: Mapped[Optional[str]] = mapped_column(String)
    second_output_amount: Mapped[Optional[str]] = mapped_column(String)
    second_output_token_denom: Mapped[Optional[str]] = mapped_column(String)
    second_output_token_name: Mapped[Optional[str]] = mapped_column(String)
    gas_fee_amount: Mapped[Optional[str]] = mapped_column(String)
    gas_fee_token_denom: Mapped[Optional[str]] = mapped_column(String)
    gas_fee_token_name: Mapped[Optional[str]] = mapped_column(String)
    destination_address: Mapped[Optional[str]] = mapped_column(String)
    destination_chain_id: Mapped[Optional[str]] = mapped_column(String)
    successful: Mapped[bool] = mapped_column(Boolean, default=True)
    error: Mapped[Optional[str]] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
    )

    def set_input(self, amount: TokenAmount, second: Optional[TokenAmount] = None) -> None:
        self.input_amount = amount.human_readable
        self.input_token_denom = amount.token.denom
        self.input_token_name = amount.token.name
        if second is not None:
            self.second_input_amount = second.human_readable
            self.second_input_token_denom = second.token.denom
            self.second_input_token_name = second.token.name

    def set_output(self, amount: TokenAmount, second: Optional[TokenAmount] = None) -> None:
        self.output_amount = amount.human_readable
        self.output_token_denom = amount.token.denom
        self.output_token_name = amount.token.name
        if second is not None:
            self.second_output_amount = second.human_readable
            self.second_output_token_denom = second.token.denom
            self.second_output_token_name = second.token.name

    def set_gas_fee(self, gas_fee: Optional[TokenAmount]) -> None:
        if gas_fee is None:
            return
        self.gas_fee_amount = gas_fee.human_readable
        self.gas_fee_token_denom = gas_fee.token.denom
        self.gas_fee_token_name = gas_fee.token.name

    def __repr__(self) -> str:
        return (
            f"<AccountTransaction {self.transaction_type} chain={self.chain_id} "
            f"tx={self.tx_hash}#{self.tx_action_index}>"
        )
