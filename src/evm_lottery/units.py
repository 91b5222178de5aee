from __future__ import annotations

import logging
from decimal import Decimal, localcontext
from typing import Iterable, Optional

from .project_constants import WEI_THRESHOLD

log = logging.getLogger(__name__)

# uint256 has 78 decimal digits
_PRECISION = 80
_FRACTION_DIGITS = 18
_WEI_DECIMALS = 18


def to_units(raw: int, decimals: int) -> Decimal:
    if decimals < 0:
        raise ValueError(f"decimals must be >= 0, got {decimals}")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(int(raw)) / (Decimal(10) ** decimals)


def infer_decimals(raw_values: Iterable[int]) -> int:
    """
    Legacy scale guess for a token with no configured decimals: if any
    observed amount exceeds 1e18 the token is treated as 18-decimal,
    otherwise amounts are taken as whole units.

    The guess is made once per token so that every balance of that token
    shares one scale.
    """
    if any(abs(int(v)) > WEI_THRESHOLD for v in raw_values):
        return _WEI_DECIMALS
    return 0


def resolve_decimals(
    decimals: Optional[int], raw_values: Iterable[int], token_address: str = ""
) -> int:
    if decimals is not None:
        return decimals
    guessed = infer_decimals(raw_values)
    log.warning(
        "No decimals configured for %s; assuming %d from observed amounts.",
        token_address or "token",
        guessed,
    )
    return guessed


def format_decimal(value: Decimal | int | float) -> str:
    d = value if isinstance(value, Decimal) else Decimal(str(value))
    text = f"{d:.{_FRACTION_DIGITS}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text
