from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from eth_abi import decode, encode

from .models import MintLog, PoolPrice, PositionDetails, PositionTransfer, TransferEvent
from .project_constants import (
    CALL_BATCH_SIZE,
    POOL_MINT_TOPIC,
    POSITIONS_SELECTOR,
    SLOT0_SELECTOR,
    TRANSFER_TOPIC,
    ZERO_TOPIC,
)
from .retry import Pacer, RetryPolicy
from .rpc import RpcClient, RpcError

log = logging.getLogger(__name__)

SLOT0_TYPES = ["uint160", "int24", "uint16", "uint16", "uint16", "uint8", "bool"]
POSITIONS_TYPES = [
    "uint96",  # nonce
    "address",  # operator
    "address",  # token0
    "address",  # token1
    "uint24",  # fee
    "int24",  # tickLower
    "int24",  # tickUpper
    "uint128",  # liquidity
    "uint256",
    "uint256",
    "uint128",
    "uint128",
]


class FetchError(RuntimeError):
    pass


def topic_to_address(topic: str) -> str:
    return ("0x" + topic[-40:]).lower()


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if not isinstance(value, str) or not value:
        raise FetchError(f"Expected hex quantity, got {value!r}")
    try:
        return int(value, 16) if value.startswith("0x") else int(value)
    except ValueError as e:
        raise FetchError(f"Expected hex quantity, got {value!r}") from e


def _log_index_from_unique_id(unique_id: Optional[str]) -> Optional[int]:
    # Alchemy: "<txhash>:log:<index>"
    if not unique_id or ":log:" not in unique_id:
        return None
    try:
        return int(unique_id.rsplit(":", 1)[1], 0)
    except ValueError:
        return None


def parse_asset_transfer(item: Dict[str, Any]) -> Optional[TransferEvent]:
    raw = item.get("rawContract") or {}
    if not raw.get("value") or not raw.get("address"):
        return None
    if not item.get("from") or not item.get("to") or not item.get("blockNum"):
        return None
    try:
        return TransferEvent(
            block_number=_hex_to_int(item["blockNum"]),
            from_address=item["from"].lower(),
            to_address=item["to"].lower(),
            value=_hex_to_int(raw["value"]),
            token_address=raw["address"].lower(),
            tx_hash=item.get("hash", ""),
            log_index=_log_index_from_unique_id(item.get("uniqueId")),
        )
    except FetchError as e:
        log.debug("Skipping malformed transfer %s: %s", item.get("uniqueId"), e)
        return None


def parse_position_transfer(entry: Dict[str, Any]) -> Optional[PositionTransfer]:
    topics = entry.get("topics") or []
    if len(topics) < 4 or entry.get("blockNumber") is None:
        return None
    try:
        return PositionTransfer(
            block_number=_hex_to_int(entry["blockNumber"]),
            from_address=topic_to_address(topics[1]),
            to_address=topic_to_address(topics[2]),
            token_id=_hex_to_int(topics[3]),
            log_index=_hex_to_int(entry.get("logIndex") or "0x0"),
        )
    except FetchError as e:
        log.debug("Skipping malformed position transfer %s: %s", entry.get("transactionHash"), e)
        return None


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


class EventFetcher:
    """
    Reads everything the snapshot needs from one JSON-RPC endpoint.
    Every remote call goes through the retry policy; pacing between
    pages and items is done with the pacer.
    """

    def __init__(
        self,
        rpc: RpcClient,
        retry: Optional[RetryPolicy] = None,
        pacer: Optional[Pacer] = None,
    ) -> None:
        self.rpc = rpc
        self.retry = retry or RetryPolicy()
        self.pacer = pacer or Pacer()

    def fetch_transfer_events(
        self,
        token_addresses: Sequence[str],
        upto_block: int,
        order: str = "asc",
        early_stop: bool = False,
    ) -> List[TransferEvent]:
        base_params: Dict[str, Any] = {
            "fromBlock": "0x0",
            "toBlock": hex(upto_block),
            "contractAddresses": [a.lower() for a in token_addresses],
            "category": ["erc20"],
            "excludeZeroValue": True,
            "withMetadata": False,
            "order": order,
            "maxCount": hex(1000),
        }

        events: List[TransferEvent] = []
        page_key: Optional[str] = None
        pages = 0
        while True:
            params = dict(base_params)
            if page_key:
                params["pageKey"] = page_key

            result = self.retry.run(
                lambda: self.rpc.call("alchemy_getAssetTransfers", [params]),
                description=f"transfers page {pages + 1}",
            )
            if not isinstance(result, dict):
                raise FetchError(f"Unexpected transfers payload: {result!r}")
            pages += 1

            page = [parse_asset_transfer(t) for t in result.get("transfers") or []]
            page_events = [e for e in page if e is not None]
            if len(page_events) != len(page):
                log.debug("Skipped %d malformed transfers", len(page) - len(page_events))
            events.extend(page_events)

            page_key = result.get("pageKey")
            if not page_key or not page:
                break
            if early_stop and order == "asc" and page_events:
                if min(e.block_number for e in page_events) > upto_block:
                    break
            self.pacer.long()

        log.debug("Fetched %d transfers in %d pages", len(events), pages)
        in_range = [e for e in events if e.block_number <= upto_block]
        if order == "desc":
            in_range.reverse()
        return in_range

    def _get_logs(
        self, address: str, topics: List[Any], from_block: int, to_block: int
    ) -> List[Dict[str, Any]]:
        params = {
            "address": address,
            "topics": topics,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }
        result = self.retry.run(
            lambda: self.rpc.call("eth_getLogs", [params]),
            description=f"eth_getLogs {address} [{from_block}, {to_block}]",
        )
        return result or []

    def fetch_position_mint_logs(self, pool_address: str, upto_block: int) -> List[MintLog]:
        out: List[MintLog] = []
        for entry in self._get_logs(pool_address, [POOL_MINT_TOPIC], 0, upto_block):
            tx_hash = entry.get("transactionHash")
            if not tx_hash or entry.get("blockNumber") is None:
                continue
            try:
                block = _hex_to_int(entry["blockNumber"])
            except FetchError as e:
                log.debug("Skipping malformed mint log %s: %s", tx_hash, e)
                continue
            out.append(MintLog(tx_hash=tx_hash, block_number=block))
        return out

    def fetch_minted_token_id(self, tx_hash: str, manager: str) -> Optional[int]:
        receipt = self.retry.run(
            lambda: self.rpc.call("eth_getTransactionReceipt", [tx_hash]),
            description=f"receipt {tx_hash}",
        )
        if not receipt:
            return None
        for entry in receipt.get("logs") or []:
            topics = entry.get("topics") or []
            if (entry.get("address") or "").lower() != manager.lower():
                continue
            if len(topics) < 4 or topics[0].lower() != TRANSFER_TOPIC:
                continue
            try:
                if _hex_to_int(topics[1]) != _hex_to_int(ZERO_TOPIC):
                    continue
                return _hex_to_int(topics[3])
            except FetchError as e:
                log.debug("Skipping malformed receipt log in %s: %s", tx_hash, e)
        return None

    def fetch_position_transfer_logs(
        self, manager: str, from_block: int, to_block: int
    ) -> List[PositionTransfer]:
        out: List[PositionTransfer] = []
        for entry in self._get_logs(manager, [TRANSFER_TOPIC], from_block, to_block):
            parsed = parse_position_transfer(entry)
            if parsed is not None:
                out.append(parsed)
        return out

    def _batched_calls(
        self, calls: List[Dict[str, str]], at_block: int, batch_size: int
    ) -> List[Any]:
        results: List[Any] = []
        for i, chunk in enumerate(_chunks(calls, batch_size)):
            if i:
                self.pacer.short()
            batch = [("eth_call", [c, hex(at_block)]) for c in chunk]
            results.extend(
                self.retry.run(
                    lambda: self.rpc.batch(batch),
                    description=f"eth_call batch of {len(batch)}",
                )
            )
        return results

    def fetch_pool_prices(
        self, pool_addresses: Sequence[str], at_block: int
    ) -> Dict[str, PoolPrice]:
        pools = list(dict.fromkeys(p.lower() for p in pool_addresses))
        calls = [{"to": p, "data": SLOT0_SELECTOR} for p in pools]
        out: Dict[str, PoolPrice] = {}
        for pool, result in zip(pools, self._batched_calls(calls, at_block, CALL_BATCH_SIZE)):
            if isinstance(result, RpcError) or not result or result == "0x":
                log.warning("slot0 unavailable for pool %s: %s", pool, result)
                continue
            values = decode(SLOT0_TYPES, bytes.fromhex(result[2:]))
            out[pool] = PoolPrice(sqrt_price_x96=int(values[0]), tick=int(values[1]))
        return out

    def fetch_position_details(
        self,
        token_ids: Sequence[int],
        at_block: int,
        manager: str,
        batch_size: int = CALL_BATCH_SIZE,
    ) -> Dict[int, PositionDetails]:
        ids = list(dict.fromkeys(token_ids))
        calls = [
            {"to": manager, "data": POSITIONS_SELECTOR + encode(["uint256"], [tid]).hex()}
            for tid in ids
        ]
        out: Dict[int, PositionDetails] = {}
        for tid, result in zip(ids, self._batched_calls(calls, at_block, batch_size)):
            if isinstance(result, RpcError) or not result or result == "0x":
                log.warning("positions(%d) unavailable: %s", tid, result)
                continue
            v = decode(POSITIONS_TYPES, bytes.fromhex(result[2:]))
            out[tid] = PositionDetails(
                token_id=tid,
                token0=v[2].lower(),
                token1=v[3].lower(),
                fee=int(v[4]),
                tick_lower=int(v[5]),
                tick_upper=int(v[6]),
                liquidity=int(v[7]),
            )
        return out
