from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}
_RETRYABLE_HINTS = (
    "rate limit",
    "too many requests",
    "exceeded",
    "timeout",
    "timed out",
    "temporarily",
    "header not found",
)


class RpcError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.retryable = retryable

    @classmethod
    def from_payload(cls, error: Any) -> "RpcError":
        if isinstance(error, dict):
            message = str(error.get("message", error))
            code = error.get("code")
        else:
            message = str(error)
            code = None
        lowered = message.lower()
        return cls(
            f"RPC error: {message}",
            code=code if isinstance(code, int) else None,
            retryable=code == 429 or any(h in lowered for h in _RETRYABLE_HINTS),
        )


Call = Tuple[str, Sequence[Any]]
BatchItem = Union[Any, RpcError]


class RpcClient:
    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.Client(
            timeout=timeout_s,
            transport=transport,
            headers={"Accept-Encoding": "gzip", "Content-Type": "application/json"},
        )
        self._next_id = 0

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _payload(self, method: str, params: Sequence[Any]) -> Dict[str, Any]:
        self._next_id += 1
        return {
            "jsonrpc": "2.0",
            "id": self._next_id,
            "method": method,
            "params": list(params),
        }

    def _post(self, payload: Any) -> Any:
        try:
            resp = self.client.post(self.rpc_url, json=payload)
        except httpx.TimeoutException as e:
            raise RpcError(f"Request timed out: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise RpcError(f"Request failed: {e}", retryable=True) from e

        if resp.status_code >= 400:
            raise RpcError(
                f"HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
                retryable=resp.status_code in _RETRYABLE_STATUS,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise RpcError(f"Invalid JSON-RPC response: {resp.text[:200]!r}") from e

    def call(self, method: str, params: Sequence[Any] = ()) -> Any:
        data = self._post(self._payload(method, params))
        if not isinstance(data, dict):
            raise RpcError(f"Unexpected {method} response type: {type(data).__name__}")
        if data.get("error") is not None:
            raise RpcError.from_payload(data["error"])
        return data.get("result")

    def batch(self, calls: Sequence[Call]) -> List[BatchItem]:
        """
        Sends one JSON-RPC batch. Results come back in call order; an item
        that failed on the node is returned as an RpcError instead of raising.
        """
        if not calls:
            return []
        payloads = [self._payload(method, params) for method, params in calls]
        data = self._post(payloads)
        if isinstance(data, dict) and data.get("error") is not None:
            raise RpcError.from_payload(data["error"])
        if not isinstance(data, list):
            raise RpcError(f"Unexpected batch response type: {type(data).__name__}")

        by_id = {item.get("id"): item for item in data if isinstance(item, dict)}
        out: List[BatchItem] = []
        for p in payloads:
            item = by_id.get(p["id"])
            if item is None:
                out.append(RpcError(f"Missing batch result for {p['method']}"))
            elif item.get("error") is not None:
                out.append(RpcError.from_payload(item["error"]))
            else:
                out.append(item.get("result"))
        return out

    def get_block_number(self) -> int:
        return int(self.call("eth_blockNumber"), 16)
