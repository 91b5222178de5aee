from decimal import Decimal

from eth_abi import encode

from evm_lottery.models import PoolPrice, PositionDetails, Token
from evm_lottery.project_constants import POSITIONS_SELECTOR, SLOT0_SELECTOR
from evm_lottery.uniswap_math import get_sqrt_ratio_at_tick, position_amounts
from evm_lottery.units import to_units
from evm_lottery.valuation import fetch_lp_balances, match_token, value_positions

MANAGER = "0x" + "9" * 40
TOKEN_A = "0x" + "a" * 40
TOKEN_B = "0x" + "b" * 40
WETH = "0x" + "e" * 40
STRANGER = "0x" + "f" * 40
POOL_A = "0x" + "ab" * 20
POOL_B = "0x" + "ba" * 20
ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40

E18 = 10**18


def details(token_id, token0, token1, liquidity=E18, lower=-600, upper=600):
    return PositionDetails(token_id, token0, token1, 10000, lower, upper, liquidity)


PRICE_AT_ZERO = PoolPrice(sqrt_price_x96=get_sqrt_ratio_at_tick(0), tick=0)


class TestMatchToken:
    def test_matches_either_side(self):
        tokens = [Token(TOKEN_A, POOL_A), Token(TOKEN_B, POOL_B)]
        assert match_token(details(1, WETH, TOKEN_B), tokens).address == TOKEN_B
        assert match_token(details(1, TOKEN_A, WETH), tokens).address == TOKEN_A

    def test_first_configured_token_wins(self):
        tokens = [Token(TOKEN_B, POOL_B), Token(TOKEN_A, POOL_A)]
        assert match_token(details(1, TOKEN_A, TOKEN_B), tokens).address == TOKEN_B

    def test_no_match(self):
        assert match_token(details(1, WETH, STRANGER), [Token(TOKEN_A, POOL_A)]) is None


class TestValuePositions:
    def test_attributes_matching_side(self):
        tokens = [Token(TOKEN_A, POOL_A, decimals=18)]
        amount0, amount1 = position_amounts(PRICE_AT_ZERO.sqrt_price_x96, 0, -600, 600, E18)

        as_token0 = value_positions(
            {ALICE: frozenset({1})}, {1: details(1, TOKEN_A, WETH)}, {POOL_A: PRICE_AT_ZERO}, tokens
        )
        as_token1 = value_positions(
            {ALICE: frozenset({1})}, {1: details(1, WETH, TOKEN_A)}, {POOL_A: PRICE_AT_ZERO}, tokens
        )

        assert as_token0 == {ALICE: {TOKEN_A: Decimal(amount0) / Decimal(E18)}}
        assert as_token1 == {ALICE: {TOKEN_A: Decimal(amount1) / Decimal(E18)}}

    def test_sums_positions_per_holder(self):
        tokens = [Token(TOKEN_A, POOL_A, decimals=0)]
        amount0, _ = position_amounts(PRICE_AT_ZERO.sqrt_price_x96, 0, -600, 600, E18)
        out = value_positions(
            {ALICE: frozenset({1, 2})},
            {1: details(1, TOKEN_A, WETH), 2: details(2, TOKEN_A, WETH)},
            {POOL_A: PRICE_AT_ZERO},
            tokens,
        )
        assert out[ALICE][TOKEN_A] == Decimal(2 * amount0)

    def test_unknown_decimals_share_one_scale(self):
        """A small position is scaled like the large one in the same token."""
        tokens = [Token(TOKEN_A, POOL_A)]
        small, _ = position_amounts(PRICE_AT_ZERO.sqrt_price_x96, 0, -600, 600, E18)
        large, _ = position_amounts(PRICE_AT_ZERO.sqrt_price_x96, 0, -600, 600, 100 * E18)
        assert small < E18 < large

        out = value_positions(
            {ALICE: frozenset({1}), BOB: frozenset({2})},
            {1: details(1, TOKEN_A, WETH), 2: details(2, TOKEN_A, WETH, liquidity=100 * E18)},
            {POOL_A: PRICE_AT_ZERO},
            tokens,
        )
        assert out[ALICE][TOKEN_A] == to_units(small, 18)
        assert out[BOB][TOKEN_A] == to_units(large, 18)

    def test_skips_empty_unmatched_and_unpriced(self):
        tokens = [Token(TOKEN_A, POOL_A, decimals=18), Token(TOKEN_B, POOL_B, decimals=18)]
        out = value_positions(
            {ALICE: frozenset({1, 2, 3, 4})},
            {
                1: details(1, TOKEN_A, WETH, liquidity=0),
                2: details(2, WETH, STRANGER),
                3: details(3, TOKEN_B, WETH),  # POOL_B has no price
            },
            {POOL_A: PRICE_AT_ZERO},
            tokens,
        )
        assert out == {}

    def test_out_of_range_side_drops_holder(self):
        """A position entirely in the other token contributes nothing."""
        tokens = [Token(TOKEN_A, POOL_A, decimals=18)]
        above = PoolPrice(get_sqrt_ratio_at_tick(1200), 1200)
        out = value_positions(
            {ALICE: frozenset({1})}, {1: details(1, TOKEN_A, WETH)}, {POOL_A: above}, tokens
        )
        assert out == {}


class TestFetchLpBalances:
    def test_batched_fetch_and_value(self, node, fetcher):
        slot0 = "0x" + encode(
            ["uint160", "int24", "uint16", "uint16", "uint16", "uint8", "bool"],
            [get_sqrt_ratio_at_tick(0), 0, 0, 1, 1, 0, True],
        ).hex()

        def position(tid):
            return "0x" + encode(
                [
                    "uint96", "address", "address", "address", "uint24", "int24",
                    "int24", "uint128", "uint256", "uint256", "uint128", "uint128",
                ],
                [0, "0x" + "0" * 40, TOKEN_A, WETH, 10000, -600, 600, E18 * tid, 0, 0, 0, 0],
            ).hex()

        def eth_call(params):
            call, block = params
            assert block == hex(500)
            if call["data"] == SLOT0_SELECTOR:
                return slot0
            assert call["to"] == MANAGER
            assert call["data"].startswith(POSITIONS_SELECTOR)
            return position(int(call["data"][10:], 16))

        node.on("eth_call", eth_call)
        tokens = [Token(TOKEN_A, POOL_A, decimals=18)]

        out = fetch_lp_balances(
            fetcher, {ALICE: frozenset({1}), BOB: frozenset({2})}, tokens, 500, MANAGER
        )

        assert set(out) == {ALICE, BOB}
        assert out[BOB][TOKEN_A] > out[ALICE][TOKEN_A] > 0
