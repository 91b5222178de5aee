from __future__ import annotations

import logging
import random
import time
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence

from .draw import select_winners
from .export import (
    export_lp_balances_csv,
    export_lp_holders_json,
    export_snapshot_csv,
    export_transfers_csv,
    export_winners_csv,
)
from .fetcher import EventFetcher
from .ledger import build_ledgers
from .models import LPHolder, Token, TransferEvent, Winner
from .positions import to_lp_holders, track_positions
from .project_constants import DEFAULT_EXCLUDED_HOLDERS, POSITION_MANAGER
from .snapshot import Snapshot, merge_balances
from .valuation import LPBalances, fetch_lp_balances

log = logging.getLogger(__name__)


@contextmanager
def timed(label: str) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        log.debug("%s: %.3fs", label, time.perf_counter() - start)


class SnapshotIndexer:
    def __init__(
        self,
        fetcher: EventFetcher,
        tokens: Sequence[Token],
        position_manager: str = POSITION_MANAGER,
        excluded_holders: Iterable[str] = DEFAULT_EXCLUDED_HOLDERS,
    ) -> None:
        if not tokens:
            raise ValueError("At least one token is required")
        self.fetcher = fetcher
        self.tokens = list(tokens)
        self.position_manager = position_manager.lower()
        self.excluded_holders = tuple(a.lower() for a in excluded_holders)

    def get_transfers(
        self, block_number: int, export_path: Optional[str] = None
    ) -> List[TransferEvent]:
        with timed("getTransfers"):
            transfers = self.fetcher.fetch_transfer_events(
                [t.address for t in self.tokens], block_number
            )
            log.info("Transfers fetched : %d", len(transfers))
            if export_path:
                export_transfers_csv(transfers, self.tokens, block_number, export_path)
        return transfers

    def _position_holders(self, block_number: int) -> Dict[str, FrozenSet[int]]:
        return track_positions(
            self.fetcher,
            self.tokens,
            block_number,
            self.position_manager,
            excluded=self.excluded_holders,
        )

    def get_lp_holders(
        self, block_number: int, export_path: Optional[str] = None
    ) -> List[LPHolder]:
        with timed("getLPHolders"):
            holders = to_lp_holders(self._position_holders(block_number))
            log.info("LP holders        : %d", len(holders))
            if export_path:
                export_lp_holders_json(holders, block_number, export_path)
        return holders

    def _tokens_by_block(self, block_number: int) -> Dict[int, List[Token]]:
        groups: Dict[int, List[Token]] = {}
        for token in self.tokens:
            groups.setdefault(token.target_block(block_number), []).append(token)
        return groups

    def _lp_balances(self, block_number: int) -> LPBalances:
        # each token is valued at the same block its ledger is replayed to
        balances: LPBalances = {}
        for at_block, tokens in sorted(self._tokens_by_block(block_number).items()):
            holders = track_positions(
                self.fetcher,
                tokens,
                at_block,
                self.position_manager,
                excluded=self.excluded_holders,
            )
            valued = fetch_lp_balances(
                self.fetcher, holders, tokens, at_block, self.position_manager
            )
            for holder, per_token in valued.items():
                balances.setdefault(holder, {}).update(per_token)
        return balances

    def get_lp_balances(
        self, block_number: int, export_path: Optional[str] = None
    ) -> LPBalances:
        with timed("getLPBalances"):
            balances = self._lp_balances(block_number)
            log.info("LP balance holders: %d", len(balances))
            if export_path:
                export_lp_balances_csv(balances, self.tokens, block_number, export_path)
        return balances

    def get_balance_snapshot(
        self,
        block_number: int,
        include_lps: bool = True,
        export_path: Optional[str] = None,
    ) -> Snapshot:
        with timed("getBalanceSnapshot"):
            transfers = self.get_transfers(block_number)
            with timed("snapshotHoldersTokens"):
                ledgers = build_ledgers(self.tokens, transfers, block_number)

            lp: LPBalances = {}
            if include_lps:
                lp = self._lp_balances(block_number)

            with timed("snapshotHoldersMerge"):
                snap = merge_balances(block_number, ledgers, lp, self.tokens)
            log.info("Snapshot holders  : %d", len(snap))

            if export_path:
                export_snapshot_csv(snap.holders, self.tokens, block_number, export_path)
        return snap

    def get_random_winners(
        self,
        block_number: int,
        lp_weight: Decimal | float | int,
        number_of_winners: int,
        export_path: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ) -> List[Winner]:
        snap = self.get_balance_snapshot(block_number, include_lps=Decimal(str(lp_weight)) > 0)
        with timed("getRandomWinners"):
            winners = select_winners(snap.holders, lp_weight, number_of_winners, rng=rng)
            log.info("Winners drawn     : %d", len(winners))
            if export_path:
                export_winners_csv(winners, self.tokens, block_number, export_path)
        return winners
