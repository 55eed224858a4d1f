"""Collaborator contracts consumed by the rebalancing engine.

Chain SDK clients, bridges, swap venues and the transaction ledger are
implemented elsewhere (live clients via ``Settings.client_factory``, or the
in-memory ones in ``cl_rebalancer.simulation``). The engine only talks to
them through these abstract classes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from cl_rebalancer.models import (
    AccountTransaction,
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


class Signer(ABC):
    """Opaque signing identity on one chain."""

    @abstractmethod
    async def get_signer_address(self) -> str:
        ...


class ChainAccount(ABC):
    """Read-only view of the wallet's balances on one chain."""

    chain: ChainInfo

    @abstractmethod
    async def get_available_balances(self) -> Dict[str, TokenAmount]:
        ...


class PoolClient(ABC):
    """Concentrated-liquidity pool operations for the managed pool."""

    @abstractmethod
    async def get_pool_info(self, pool_id: str) -> Pool:
        ...

    async def get_pool_price(self, pool_id: str) -> Decimal:
        return (await self.get_pool_info(pool_id)).current_price

    @abstractmethod
    async def create_position(self, pool_id: str, params: CreatePositionParams) -> CreatePositionResult:
        ...

    @abstractmethod
    async def withdraw_position(self, position: Position) -> WithdrawPositionResult:
        ...

    @abstractmethod
    async def get_position_info(self, position_id: str) -> Position:
        """Raise ``PositionNotFound`` when the position no longer exists."""

    @abstractmethod
    async def get_positions(self, pool_id: str) -> List[Position]:
        ...

@dataclass(frozen=True)
class BridgeRequest:
    from_token: Token
    to_chain_id: str
    amount: TokenAmount

class BridgeClient(ABC):
    @abstractmethod
    async def bridge_token(self, signer: Signer, request: BridgeRequest) -> BridgeResult:
        """Submit the transfer and wait until it settles on the destination chain."""

@dataclass(frozen=True)
class SwapParams:
    asset_in: TokenAmount
    asset_out: Token
    min_amount_out: str = "0"

class SwapClient(ABC):
    """Second swap venue, usually on the remote chain."""

    chain: ChainInfo

    @abstractmethod
    async def get_price(self, asset_in: Token, asset_out: Token) -> Decimal:
        """Base units of ``asset_out`` per base unit of ``asset_in``."""

    @abstractmethod
    async def get_pool_config_by_denom(self, denom: str) -> VenuePoolConfig:
        ...

    @abstractmethod
    async def swap(self, signer: Signer, params: SwapParams) -> SwapResult:
        ...

class TransactionLedger(ABC):
    """Append-only record of confirmed chain actions."""

    @abstractmethod
    async def add_transaction(self, record: AccountTransaction) -> None:
        ...

    @abstractmethod
    async def add_transaction_batch(self, records: Sequence[AccountTransaction]) -> None:
        ...

    async def close(self) -> None:
        return None

@dataclass
class ChainClients:
    """Everything one orchestrator instance needs, wired by ``main``."""

    home_chain: ChainInfo
    home_account: ChainAccount
    home_signer: Signer
    pool_client: PoolClient
    swap_client: SwapClient
    swap_signer: Signer
    ledger: TransactionLedger
    remote_chain: Optional[ChainInfo] = None
    remote_account: Optional[ChainAccount] = None
    bridge_client: Optional[BridgeClient] = None
