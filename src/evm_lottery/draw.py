from __future__ import annotations

import random
import secrets
from decimal import Decimal
from typing import List, Optional, Sequence

from .models import HolderBalance, Winner

_DRAW_BITS = 64


class SelectionError(ValueError):
    pass


def holder_weight(record: HolderBalance, lp_weight: Decimal | float | int = 0) -> Decimal:
    w = Decimal(str(lp_weight))
    if w < 0:
        raise SelectionError(f"lp_weight must be >= 0, got {lp_weight}")
    total = Decimal(0)
    for b in record.balances.values():
        total += b.balance
        if w > 0:
            total += w * b.lp_balance
    return total


def get_weighted_random_index(
    weights: Sequence[Decimal], rng: Optional[random.Random] = None
) -> int:
    """
    Picks an index with probability proportional to its weight.
    Non-positive weights can never be picked.
    """
    if len(weights) == 0:
        raise SelectionError("Weights array cannot be empty")

    total = sum((Decimal(w) for w in weights if w > 0), Decimal(0))
    if total <= 0:
        raise SelectionError("Total weight must be positive")

    rng = rng or secrets.SystemRandom()
    # uniform in (0, total]
    draw = Decimal(rng.getrandbits(_DRAW_BITS) + 1) / Decimal(2**_DRAW_BITS) * total

    last_positive = -1
    for i, w in enumerate(weights):
        if w <= 0:
            continue
        last_positive = i
        draw -= Decimal(w)
        if draw <= 0:
            return i

    # only reachable through rounding at the top end
    return last_positive


def _by_weight_desc(winners: List[Winner]) -> List[Winner]:
    return sorted(winners, key=lambda x: (-x.weight, x.address))


def select_winners(
    holders: Sequence[HolderBalance],
    lp_weight: Decimal | float | int,
    number_of_winners: int,
    rng: Optional[random.Random] = None,
) -> List[Winner]:
    """
    Draws up to `number_of_winners` distinct holders, weighted by
    balance + lp_weight * lp_balance summed over tokens.
    lp_weight == 0 ignores LP-derived balances entirely.
    """
    if number_of_winners < 0:
        raise SelectionError("number_of_winners must be >= 0")

    candidates = [
        Winner(address=h.address, weight=holder_weight(h, lp_weight), record=h)
        for h in holders
    ]
    population = [c for c in candidates if c.weight > 0]
    if not population:
        raise SelectionError("No holder has a positive weight")

    if number_of_winners >= len(population):
        return _by_weight_desc(population)

    rng = rng or secrets.SystemRandom()
    weights = [c.weight for c in population]
    selected: List[Winner] = []
    seen = set()
    while len(selected) < number_of_winners:
        idx = get_weighted_random_index(weights, rng)
        winner = population[idx]
        weights[idx] = Decimal(0)
        if winner.address in seen:
            continue
        seen.add(winner.address)
        selected.append(winner)

    return _by_weight_desc(selected)
