from __future__ import annotations

import csv
import json
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .models import HolderBalance, LPHolder, Token, TransferEvent, Winner
from .units import format_decimal, resolve_decimals, to_units

log = logging.getLogger(__name__)


def default_filename(kind: str, block_number: int, ext: str) -> str:
    return f"{kind}-block-{block_number}.{ext}"


def _write_csv(path: str, header: List[str], rows: Iterable[List[str]]) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(header)
        writer.writerows(rows)
    log.info("Wrote %s", path)


def _balance_columns(tokens: Sequence[Token]) -> List[str]:
    cols: List[str] = []
    for t in tokens:
        cols.append(f"{t.address} Token Balance")
        cols.append(f"{t.address} LP Balance")
    return cols


def _balance_cells(record: HolderBalance, tokens: Sequence[Token]) -> List[str]:
    cells: List[str] = []
    for t in tokens:
        b = record.get(t.address)
        cells.append(format_decimal(b.balance))
        cells.append(format_decimal(b.lp_balance))
    return cells


def export_transfers_csv(
    transfers: Sequence[TransferEvent],
    tokens: Sequence[Token],
    block_number: int,
    path: Optional[str] = None,
) -> str:
    path = path or default_filename("transfers", block_number, "csv")
    by_address = {t.address.lower(): t for t in tokens}
    decimals: Dict[str, int] = {}
    for address in {ev.token_address for ev in transfers}:
        token = by_address.get(address)
        decimals[address] = resolve_decimals(
            token.decimals if token else None,
            (ev.value for ev in transfers if ev.token_address == address),
            address,
        )

    def row(ev: TransferEvent) -> List[str]:
        return [
            str(ev.block_number),
            ev.token_address,
            ev.from_address,
            ev.to_address,
            format_decimal(to_units(ev.value, decimals[ev.token_address])),
            ev.tx_hash,
        ]

    header = ["Block Number", "Token Address", "From", "To", "Value", "Transaction Hash"]
    _write_csv(path, header, (row(ev) for ev in transfers))
    return path


def export_lp_holders_json(
    holders: Sequence[LPHolder],
    block_number: int,
    path: Optional[str] = None,
) -> str:
    path = path or default_filename("lp-holders", block_number, "json")
    payload = [
        {"address": h.address, "tokenIds": [str(tid) for tid in h.token_ids]}
        for h in holders
    ]
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    log.info("Wrote %s", path)
    return path


def export_lp_balances_csv(
    lp_balances: Mapping[str, Mapping[str, Decimal]],
    tokens: Sequence[Token],
    block_number: int,
    path: Optional[str] = None,
) -> str:
    path = path or default_filename("lp-balances", block_number, "csv")
    header = ["Holder Address"] + [f"{t.address} LP Balance" for t in tokens]
    rows = []
    for holder in sorted(lp_balances):
        per_token: Dict[str, Decimal] = {k.lower(): v for k, v in lp_balances[holder].items()}
        rows.append(
            [holder]
            + [format_decimal(per_token.get(t.address.lower(), Decimal(0))) for t in tokens]
        )
    _write_csv(path, header, rows)
    return path


def export_snapshot_csv(
    holders: Sequence[HolderBalance],
    tokens: Sequence[Token],
    block_number: int,
    path: Optional[str] = None,
) -> str:
    path = path or default_filename("snapshot", block_number, "csv")
    header = ["Holder Address"] + _balance_columns(tokens)
    _write_csv(path, header, ([h.address] + _balance_cells(h, tokens) for h in holders))
    return path


def export_winners_csv(
    winners: Sequence[Winner],
    tokens: Sequence[Token],
    block_number: int,
    path: Optional[str] = None,
) -> str:
    path = path or default_filename("winners", block_number, "csv")
    header = ["Holder Address", "Total Weight"] + _balance_columns(tokens)
    _write_csv(
        path,
        header,
        (
            [w.address, format_decimal(w.weight)] + _balance_cells(w.record, tokens)
            for w in winners
        ),
    )
    return path
