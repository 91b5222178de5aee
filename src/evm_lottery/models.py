from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class Token:
    address: str
    lp_address: str
    decimals: Optional[int] = None
    block_number: Optional[int] = None  # per-token snapshot block override

    def target_block(self, default: int) -> int:
        if self.block_number is None:
            return default
        return min(self.block_number, default)


@dataclass(frozen=True)
class TransferEvent:
    block_number: int
    from_address: str
    to_address: str
    value: int  # raw units
    token_address: str
    tx_hash: str
    log_index: Optional[int] = None


@dataclass(frozen=True)
class MintLog:
    tx_hash: str
    block_number: int


@dataclass(frozen=True)
class PositionTransfer:
    block_number: int
    from_address: str
    to_address: str
    token_id: int
    log_index: int = 0


@dataclass(frozen=True)
class PoolPrice:
    sqrt_price_x96: int
    tick: int


@dataclass(frozen=True)
class PositionDetails:
    token_id: int
    token0: str
    token1: str
    fee: int
    tick_lower: int
    tick_upper: int
    liquidity: int


@dataclass(frozen=True)
class TokenBalance:
    balance: Decimal = Decimal(0)
    lp_balance: Decimal = Decimal(0)

    def is_zero(self) -> bool:
        return self.balance <= 0 and self.lp_balance <= 0


@dataclass(frozen=True)
class HolderBalance:
    address: str
    balances: Dict[str, TokenBalance] = field(default_factory=dict)

    def get(self, token_address: str) -> TokenBalance:
        return self.balances.get(token_address.lower(), TokenBalance())


@dataclass(frozen=True)
class LPHolder:
    address: str
    token_ids: Tuple[int, ...]


@dataclass(frozen=True)
class Winner:
    address: str
    weight: Decimal
    record: HolderBalance
