from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from .models import Token, TransferEvent
from .project_constants import ZERO_ADDRESS
from .units import resolve_decimals, to_units

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenLedger:
    """
    Net raw balances for one token after replaying its transfers.

    sum(raw_balances) == minted - burned + clamped, where clamped is the
    total of debits that could not be applied because the sender's
    observed balance was too small.
    """

    token: Token
    block_number: int
    decimals: int  # configured, or inferred once from the replayed amounts
    raw_balances: Dict[str, int]
    minted: int
    burned: int
    clamped: int

    def total(self) -> int:
        return sum(self.raw_balances.values())

    def holdings(self) -> Dict[str, Decimal]:
        return {
            addr: to_units(raw, self.decimals)
            for addr, raw in self.raw_balances.items()
            if raw > 0
        }


def sort_events(events: Iterable[TransferEvent]) -> List[TransferEvent]:
    # sorted() is stable: same-block events without a log index keep emission order
    return sorted(
        events,
        key=lambda e: (e.block_number, -1 if e.log_index is None else e.log_index),
    )


def build_token_ledger(
    token: Token,
    events: Sequence[TransferEvent],
    upto_block: int,
) -> TokenLedger:
    target = token.target_block(upto_block)
    address = token.address.lower()
    relevant = sort_events(
        e for e in events if e.token_address == address and e.block_number <= target
    )

    balances: Dict[str, int] = defaultdict(int)
    minted = burned = clamped = 0

    for ev in relevant:
        amount = int(ev.value)
        if amount < 0:
            log.debug("Ignoring negative transfer value in %s", ev.tx_hash)
            continue

        if ev.from_address == ZERO_ADDRESS:
            minted += amount
        else:
            current = balances[ev.from_address]
            if current < amount:
                clamped += amount - current
                balances[ev.from_address] = 0
            else:
                balances[ev.from_address] = current - amount

        if ev.to_address == ZERO_ADDRESS:
            burned += amount
        else:
            balances[ev.to_address] += amount

    if clamped:
        log.warning(
            "Token %s: %d raw units of debits clamped at zero (incomplete history?)",
            token.address,
            clamped,
        )

    return TokenLedger(
        token=token,
        block_number=target,
        decimals=resolve_decimals(
            token.decimals, (e.value for e in relevant), token.address
        ),
        raw_balances={a: b for a, b in balances.items() if b > 0},
        minted=minted,
        burned=burned,
        clamped=clamped,
    )


def build_ledgers(
    tokens: Sequence[Token],
    events: Sequence[TransferEvent],
    upto_block: int,
) -> Dict[str, TokenLedger]:
    ledgers: Dict[str, TokenLedger] = {}
    for token in tokens:
        ledger = build_token_ledger(token, events, upto_block)
        log.info(
            "Token %s: %d holders at block %d",
            token.address,
            len(ledger.raw_balances),
            ledger.block_number,
        )
        ledgers[token.address.lower()] = ledger
    return ledgers
