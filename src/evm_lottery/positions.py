from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, MutableMapping, Optional, Sequence, Set

from .fetcher import EventFetcher, FetchError
from .models import LPHolder, PositionTransfer, Token
from .project_constants import BLOCK_CHUNK, ZERO_ADDRESS
from .retry import RetryError
from .rpc import RpcError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionSeed:
    token_ids: FrozenSet[int]
    start_block: Optional[int]  # earliest pool mint seen; None when nothing was found


def discover_positions(
    fetcher: EventFetcher,
    tokens: Sequence[Token],
    upto_block: int,
    manager: str,
) -> PositionSeed:
    """
    Finds the position NFTs minted against each token's pool.

    Each pool Mint is matched to the position manager's Transfer-from-zero
    log in the same transaction. A pool whose logs cannot be fetched is
    skipped; the remaining pools still contribute.
    """
    token_ids: Set[int] = set()
    start_block: Optional[int] = None

    for token in tokens:
        try:
            mints = fetcher.fetch_position_mint_logs(token.lp_address, upto_block)
        except (RetryError, RpcError, FetchError) as e:
            log.error("Failed to fetch mint logs for LP %s: %s", token.lp_address, e)
            continue
        fetcher.pacer.long()
        log.debug("Pool %s: %d mint logs", token.lp_address, len(mints))

        for mint in mints:
            if start_block is None or mint.block_number < start_block:
                start_block = mint.block_number
            try:
                token_id = fetcher.fetch_minted_token_id(mint.tx_hash, manager)
            except (RetryError, RpcError, FetchError) as e:
                log.error("Error processing transaction %s: %s", mint.tx_hash, e)
                token_id = None
            if token_id is not None:
                token_ids.add(token_id)
            fetcher.pacer.short()

    log.info("Tracking %d positions", len(token_ids))
    return PositionSeed(token_ids=frozenset(token_ids), start_block=start_block)


def apply_position_transfers(
    holders: MutableMapping[str, Set[int]],
    transfers: Iterable[PositionTransfer],
    tracked: FrozenSet[int] | Set[int],
) -> MutableMapping[str, Set[int]]:
    ordered = sorted(transfers, key=lambda t: (t.block_number, t.log_index))
    for t in ordered:
        if t.token_id not in tracked:
            continue

        owned = holders.get(t.from_address)
        if owned is not None:
            owned.discard(t.token_id)
            if not owned:
                del holders[t.from_address]

        if t.to_address != ZERO_ADDRESS:
            holders.setdefault(t.to_address, set()).add(t.token_id)
    return holders


def replay_ownership(
    fetcher: EventFetcher,
    seed: PositionSeed,
    upto_block: int,
    manager: str,
    chunk_size: int = BLOCK_CHUNK,
) -> Dict[str, Set[int]]:
    holders: Dict[str, Set[int]] = {}
    if not seed.token_ids or seed.start_block is None:
        return holders
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")

    current = seed.start_block
    while current <= upto_block:
        end = min(current + chunk_size - 1, upto_block)
        transfers = fetcher.fetch_position_transfer_logs(manager, current, end)
        apply_position_transfers(holders, transfers, seed.token_ids)
        current = end + 1
        fetcher.pacer.long()
    return holders


def track_positions(
    fetcher: EventFetcher,
    tokens: Sequence[Token],
    upto_block: int,
    manager: str,
    excluded: Iterable[str] = (),
    chunk_size: int = BLOCK_CHUNK,
) -> Dict[str, FrozenSet[int]]:
    seed = discover_positions(fetcher, tokens, upto_block, manager)
    holders = replay_ownership(fetcher, seed, upto_block, manager, chunk_size)

    for addr in excluded:
        holders.pop(addr.lower(), None)

    return {addr: frozenset(ids) for addr, ids in holders.items() if ids}


def to_lp_holders(holders: Dict[str, FrozenSet[int]]) -> List[LPHolder]:
    return [
        LPHolder(address=addr, token_ids=tuple(sorted(ids)))
        for addr, ids in sorted(holders.items())
        if ids
    ]
