from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Set, Tuple

from dotenv import load_dotenv

from .models import Token
from .project_constants import DEFAULT_EXCLUDED_HOLDERS, POSITION_MANAGER

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(value: Any, field_name: str = "address") -> str:
    if not isinstance(value, str) or not _ADDRESS_RE.match(value.strip()):
        raise ValueError(f"Invalid {field_name}: {value!r}")
    return value.strip().lower()


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    position_manager: str = POSITION_MANAGER
    excluded_holders: Tuple[str, ...] = DEFAULT_EXCLUDED_HOLDERS

    @staticmethod
    def from_env(rpc_url_override: str | None = None) -> "Settings":
        load_dotenv()

        manager = os.getenv("POSITION_MANAGER", "").strip()
        manager = normalize_address(manager, "POSITION_MANAGER") if manager else POSITION_MANAGER

        excluded_env = os.getenv("EXCLUDED_HOLDERS")
        if excluded_env is None:
            excluded = DEFAULT_EXCLUDED_HOLDERS
        else:
            excluded = tuple(
                normalize_address(a, "EXCLUDED_HOLDERS entry")
                for a in excluded_env.split(",")
                if a.strip()
            )

        # If user provides --rpc-url, trust it.
        if rpc_url_override:
            rpc_url = rpc_url_override
        else:
            # Otherwise, use RPC_URL from env if present, else build alchemy url from key.
            rpc_url = os.getenv("RPC_URL", "").strip()
            if not rpc_url:
                api_key = os.getenv("ALCHEMY_API_KEY", "").strip()
                if not api_key:
                    raise RuntimeError(
                        "Missing ALCHEMY_API_KEY (or RPC_URL). Put it in .env or export it."
                    )
                network = os.getenv("ALCHEMY_NETWORK", "base-mainnet").strip()
                rpc_url = f"https://{network}.g.alchemy.com/v2/{api_key}"

        return Settings(
            rpc_url=rpc_url,
            position_manager=manager,
            excluded_holders=excluded,
        )


def _parse_token(entry: Any, index: int) -> Token:
    if not isinstance(entry, dict):
        raise ValueError(f"Token #{index} must be an object, got {type(entry).__name__}")

    decimals = entry.get("decimals")
    if decimals is not None and (not isinstance(decimals, int) or decimals < 0):
        raise ValueError(f"Token #{index}: decimals must be a non-negative integer")

    block = entry.get("blockNumber")
    if block is not None and (not isinstance(block, int) or block < 0):
        raise ValueError(f"Token #{index}: blockNumber must be a non-negative integer")

    return Token(
        address=normalize_address(entry.get("address"), f"token #{index} address"),
        lp_address=normalize_address(entry.get("lpAddress"), f"token #{index} lpAddress"),
        decimals=decimals,
        block_number=block,
    )


def load_tokens(path: str) -> List[Token]:
    """
    Reads the token list, e.g.
    [{"address": "0x..", "lpAddress": "0x..", "decimals": 18}]
    """
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Token file {path} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("tokens")
    if not isinstance(data, list) or not data:
        raise ValueError(f"Token file {path} must contain a non-empty list of tokens")

    tokens = [_parse_token(entry, i) for i, entry in enumerate(data)]
    seen: Set[str] = set()
    for t in tokens:
        if t.address in seen:
            raise ValueError(f"Duplicate token {t.address} in {path}")
        seen.add(t.address)
    return tokens


def load_excluded_wallets(path: Optional[str]) -> Set[str]:
    if not path:
        return set()
    out: Set[str] = set()
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            w = line.strip()
            if not w or w.startswith("#"):
                continue
            out.add(normalize_address(w, "excluded wallet"))
    return out
