from __future__ import annotations

import argparse
import logging
from decimal import Decimal, InvalidOperation
from typing import Callable

from .config import Settings, load_excluded_wallets, load_tokens
from .draw import SelectionError
from .export import default_filename
from .fetcher import EventFetcher
from .indexer import SnapshotIndexer
from .rpc import RpcClient
from .units import format_decimal


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _decimal_arg(value: str) -> Decimal:
    try:
        d = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if d < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return d


def _with_indexer(args: argparse.Namespace, fn: Callable[[SnapshotIndexer], int]) -> int:
    try:
        settings = Settings.from_env(rpc_url_override=args.rpc_url)
        tokens = load_tokens(args.tokens)
        excluded = set(settings.excluded_holders) | load_excluded_wallets(args.exclude_file)
    except (OSError, ValueError, RuntimeError) as e:
        raise SystemExit(f"Configuration error: {e}")

    rpc = RpcClient(settings.rpc_url, timeout_s=args.timeout)
    try:
        indexer = SnapshotIndexer(
            EventFetcher(rpc),
            tokens,
            position_manager=settings.position_manager,
            excluded_holders=sorted(excluded),
        )
        return fn(indexer)
    finally:
        rpc.close()


def cmd_transfers(args: argparse.Namespace) -> int:
    out = args.out or default_filename("transfers", args.block, "csv")

    def run(ix: SnapshotIndexer) -> int:
        transfers = ix.get_transfers(args.block, out)
        print(f"Transfers     : {len(transfers)} -> {out}")
        return 0

    return _with_indexer(args, run)


def cmd_lp_holders(args: argparse.Namespace) -> int:
    out = args.out or default_filename("lp-holders", args.block, "json")

    def run(ix: SnapshotIndexer) -> int:
        holders = ix.get_lp_holders(args.block, out)
        print(f"LP holders    : {len(holders)} -> {out}")
        return 0

    return _with_indexer(args, run)


def cmd_lp_balances(args: argparse.Namespace) -> int:
    out = args.out or default_filename("lp-balances", args.block, "csv")

    def run(ix: SnapshotIndexer) -> int:
        balances = ix.get_lp_balances(args.block, out)
        print(f"LP balances   : {len(balances)} holders -> {out}")
        return 0

    return _with_indexer(args, run)


def cmd_snapshot(args: argparse.Namespace) -> int:
    out = args.out or default_filename("snapshot", args.block, "csv")

    def run(ix: SnapshotIndexer) -> int:
        snap = ix.get_balance_snapshot(args.block, not args.no_lps, out)
        print(f"Holders       : {len(snap)} -> {out}")
        return 0

    return _with_indexer(args, run)


def cmd_winners(args: argparse.Namespace) -> int:
    out = args.out or default_filename("winners", args.block, "csv")

    def run(ix: SnapshotIndexer) -> int:
        try:
            winners = ix.get_random_winners(args.block, args.lp_weight, args.count, out)
        except SelectionError as e:
            raise SystemExit(f"No draw: {e}")
        print("========================================")
        print("🎲 WEIGHTED HOLDER DRAW")
        print("========================================")
        print(f"Block number  : {args.block}")
        print(f"LP weight     : {args.lp_weight}")
        print(f"Winners       : {len(winners)} / {args.count} requested")
        print("----------------------------------------")
        for rank, w in enumerate(winners, 1):
            print(f"{rank:>4}. {w.address}  weight={format_decimal(w.weight)}")
        print("----------------------------------------")
        print(f"🧾 Wrote winners: {out}")
        return 0

    return _with_indexer(args, run)


def cmd_head(args: argparse.Namespace) -> int:
    """Prints the latest block, handy for announcing a snapshot block."""
    try:
        settings = Settings.from_env(rpc_url_override=args.rpc_url)
    except RuntimeError as e:
        raise SystemExit(f"Configuration error: {e}")
    with RpcClient(settings.rpc_url, timeout_s=args.timeout) as rpc:
        print(f"Latest block  : {rpc.get_block_number()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="evm-lottery",
        description="Token and LP-position holder snapshots with a weighted random draw.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=60.0, help="RPC timeout seconds.")
    p.add_argument("--tokens", default="tokens.json", help="Token list JSON path.")
    p.add_argument(
        "--exclude-file",
        default=None,
        help="Extra holder addresses to drop from LP ownership, one per line.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    def with_block(sp: argparse.ArgumentParser) -> argparse.ArgumentParser:
        sp.add_argument("--block", required=True, type=int, help="Snapshot block number.")
        sp.add_argument("--out", default=None, help="Output path (default: <kind>-block-<n>).")
        return sp

    t = with_block(sub.add_parser("transfers", help="Export raw token transfers to CSV."))
    t.set_defaults(func=cmd_transfers)

    lh = with_block(sub.add_parser("lp-holders", help="Export LP position owners to JSON."))
    lh.set_defaults(func=cmd_lp_holders)

    lb = with_block(sub.add_parser("lp-balances", help="Export LP-derived balances to CSV."))
    lb.set_defaults(func=cmd_lp_balances)

    s = with_block(sub.add_parser("snapshot", help="Export the merged holder snapshot."))
    s.add_argument("--no-lps", action="store_true", help="Skip LP position balances.")
    s.set_defaults(func=cmd_snapshot)

    w = with_block(sub.add_parser("winners", help="Draw weighted random winners."))
    w.add_argument(
        "--lp-weight",
        type=_decimal_arg,
        default=Decimal(0),
        help="Multiplier for LP-derived balances; 0 ignores LPs.",
    )
    w.add_argument("--count", type=int, required=True, help="Number of winners.")
    w.set_defaults(func=cmd_winners)

    h = sub.add_parser("head", help="Print the latest block number.")
    h.set_defaults(func=cmd_head)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    raise SystemExit(args.func(args))
