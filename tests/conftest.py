"""Shared test fixtures."""

import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from evm_lottery.fetcher import EventFetcher
from evm_lottery.retry import Pacer, RetryPolicy
from evm_lottery.rpc import RpcClient


class FakeNode:
    """In-memory JSON-RPC node served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.handlers: Dict[str, Callable[[List[Any]], Any]] = {}
        self.errors: Dict[str, Dict[str, Any]] = {}
        self.http_failures: List[int] = []
        self.requests: List[Dict[str, Any]] = []
        self.posts = 0

    def on(self, method: str, handler: Callable[[List[Any]], Any]) -> None:
        self.handlers[method] = handler

    def on_error(self, method: str, message: str, code: int = -32000) -> None:
        self.errors[method] = {"code": code, "message": message}

    def fail_next(self, *status_codes: int) -> None:
        self.http_failures.extend(status_codes)

    def calls(self, method: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["method"] == method]

    def _answer(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.requests.append(payload)
        method = payload["method"]
        if method in self.errors:
            return {"jsonrpc": "2.0", "id": payload["id"], "error": self.errors[method]}
        result = self.handlers[method](payload["params"])
        return {"jsonrpc": "2.0", "id": payload["id"], "result": result}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.posts += 1
        if self.http_failures:
            return httpx.Response(self.http_failures.pop(0), text="unavailable")
        body = json.loads(request.content)
        if isinstance(body, list):
            # nodes may answer batches out of order
            return httpx.Response(200, json=[self._answer(p) for p in body][::-1])
        return httpx.Response(200, json=self._answer(body))


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
def rpc(node: FakeNode) -> RpcClient:
    client = RpcClient("http://node.test", transport=httpx.MockTransport(node))
    yield client
    client.close()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def retry(sleeps: List[float]) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, sleep=sleeps.append)


@pytest.fixture
def pacer() -> Pacer:
    return Pacer(sleep=lambda s: None)


@pytest.fixture
def fetcher(rpc: RpcClient, retry: RetryPolicy, pacer: Pacer) -> EventFetcher:
    return EventFetcher(rpc, retry=retry, pacer=pacer)
