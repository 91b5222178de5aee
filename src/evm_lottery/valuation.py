from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, FrozenSet, Mapping, Optional, Sequence

from .fetcher import EventFetcher
from .models import PoolPrice, PositionDetails, Token
from .uniswap_math import position_amounts
from .units import resolve_decimals, to_units

log = logging.getLogger(__name__)

LPBalances = Dict[str, Dict[str, Decimal]]


def match_token(details: PositionDetails, tokens: Sequence[Token]) -> Optional[Token]:
    pair = (details.token0.lower(), details.token1.lower())
    for token in tokens:
        if token.address.lower() in pair:
            return token
    return None


def value_positions(
    holders: Mapping[str, FrozenSet[int]],
    details: Mapping[int, PositionDetails],
    prices: Mapping[str, PoolPrice],
    tokens: Sequence[Token],
) -> LPBalances:
    """
    holder -> token -> amount of that token locked in the holder's positions.
    Only the side of the pair that matches a configured token is counted.
    """
    raw_totals: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))

    for holder, token_ids in holders.items():
        for token_id in sorted(token_ids):
            pos = details.get(token_id)
            if pos is None or pos.liquidity == 0:
                continue

            token = match_token(pos, tokens)
            if token is None:
                continue

            price = prices.get(token.lp_address.lower())
            if price is None:
                continue

            amount0, amount1 = position_amounts(
                price.sqrt_price_x96,
                price.tick,
                pos.tick_lower,
                pos.tick_upper,
                pos.liquidity,
            )
            key = token.address.lower()
            raw = amount0 if key == pos.token0.lower() else amount1
            raw_totals[holder][key] += raw

    decimals: Dict[str, int] = {}
    for token in tokens:
        key = token.address.lower()
        amounts = [per_token[key] for per_token in raw_totals.values() if key in per_token]
        if amounts:
            decimals[key] = resolve_decimals(token.decimals, amounts, token.address)

    out: LPBalances = {}
    for holder, per_token in raw_totals.items():
        values = {t: to_units(raw, decimals[t]) for t, raw in per_token.items() if raw > 0}
        if values:
            out[holder] = values
    return out


def fetch_lp_balances(
    fetcher: EventFetcher,
    holders: Mapping[str, FrozenSet[int]],
    tokens: Sequence[Token],
    at_block: int,
    manager: str,
) -> LPBalances:
    prices = fetcher.fetch_pool_prices([t.lp_address for t in tokens], at_block)
    token_ids = sorted({tid for ids in holders.values() for tid in ids})
    details = fetcher.fetch_position_details(token_ids, at_block, manager)
    log.debug("Valuing %d positions across %d pools", len(details), len(prices))
    return value_positions(holders, details, prices, tokens)
