from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Mapping, Optional, Sequence, Tuple

from .ledger import TokenLedger
from .models import HolderBalance, Token, TokenBalance


@dataclass(frozen=True)
class Snapshot:
    block_number: int
    holders: Tuple[HolderBalance, ...]

    def __len__(self) -> int:
        return len(self.holders)

    def addresses(self) -> Tuple[str, ...]:
        return tuple(h.address for h in self.holders)

    def get(self, address: str) -> Optional[HolderBalance]:
        address = address.lower()
        for h in self.holders:
            if h.address == address:
                return h
        return None


def merge_balances(
    block_number: int,
    ledgers: Mapping[str, TokenLedger],
    lp_balances: Mapping[str, Mapping[str, Decimal]],
    tokens: Sequence[Token],
) -> Snapshot:
    """
    One record per holder with token and LP-derived balances side by side.
    Pool addresses never appear as holders.
    """
    merged: Dict[str, Dict[str, Dict[str, Decimal]]] = {}

    for token_address, ledger in ledgers.items():
        key = token_address.lower()
        for holder, amount in ledger.holdings().items():
            slot = merged.setdefault(holder, {}).setdefault(key, {})
            slot["balance"] = amount

    for holder, per_token in lp_balances.items():
        for token_address, amount in per_token.items():
            slot = merged.setdefault(holder.lower(), {}).setdefault(token_address.lower(), {})
            slot["lp_balance"] = amount

    drop = {t.lp_address.lower() for t in tokens}

    records = []
    for holder in sorted(merged):
        if holder in drop:
            continue
        balances = {}
        for token_address, slot in merged[holder].items():
            tb = TokenBalance(
                balance=slot.get("balance", Decimal(0)),
                lp_balance=slot.get("lp_balance", Decimal(0)),
            )
            if not tb.is_zero():
                balances[token_address] = tb
        if balances:
            records.append(HolderBalance(address=holder, balances=balances))

    return Snapshot(block_number=block_number, holders=tuple(records))
