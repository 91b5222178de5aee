import httpx
import pytest

from evm_lottery.rpc import RpcClient, RpcError


class TestCall:
    def test_returns_result(self, node, rpc):
        node.on("eth_blockNumber", lambda params: "0x1f4")
        assert rpc.get_block_number() == 500
        assert node.requests[0]["jsonrpc"] == "2.0"

    def test_ids_increase(self, node, rpc):
        node.on("eth_chainId", lambda params: "0x2105")
        rpc.call("eth_chainId")
        rpc.call("eth_chainId")
        assert [r["id"] for r in node.requests] == [1, 2]

    def test_node_error_raises(self, node, rpc):
        node.on_error("eth_call", "execution reverted", code=3)
        with pytest.raises(RpcError) as info:
            rpc.call("eth_call", [{}, "latest"])
        assert info.value.code == 3
        assert not info.value.retryable

    def test_rate_limit_message_is_retryable(self, node, rpc):
        node.on_error("eth_getLogs", "Your app has exceeded its compute units per second capacity", code=-32000)
        with pytest.raises(RpcError) as info:
            rpc.call("eth_getLogs", [{}])
        assert info.value.retryable

    @pytest.mark.parametrize("status, retryable", [(429, True), (503, True), (401, False), (404, False)])
    def test_http_status(self, node, rpc, status, retryable):
        node.fail_next(status)
        with pytest.raises(RpcError) as info:
            rpc.call("eth_blockNumber")
        assert info.value.status_code == status
        assert info.value.retryable is retryable

    def test_invalid_json(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        with RpcClient("http://node.test", transport=transport) as client:
            with pytest.raises(RpcError, match="Invalid JSON-RPC response"):
                client.call("eth_blockNumber")

    def test_connection_failure_is_retryable(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        with RpcClient("http://node.test", transport=httpx.MockTransport(refuse)) as client:
            with pytest.raises(RpcError) as info:
                client.call("eth_blockNumber")
        assert info.value.retryable


class TestBatch:
    def test_results_in_call_order(self, node, rpc):
        node.on("eth_getBalance", lambda params: params[0])
        out = rpc.batch([("eth_getBalance", ["0x01", "latest"]), ("eth_getBalance", ["0x02", "latest"])])
        assert out == ["0x01", "0x02"]
        assert node.posts == 1

    def test_item_errors_returned_not_raised(self, node, rpc):
        node.on("eth_chainId", lambda params: "0x2105")
        node.on_error("eth_call", "execution reverted")
        out = rpc.batch([("eth_call", [{}, "latest"]), ("eth_chainId", [])])
        assert isinstance(out[0], RpcError)
        assert out[1] == "0x2105"

    def test_missing_item(self):
        def drop_second(request):
            return httpx.Response(200, json=[{"jsonrpc": "2.0", "id": 1, "result": "0x1"}])

        with RpcClient("http://node.test", transport=httpx.MockTransport(drop_second)) as client:
            out = client.batch([("eth_chainId", []), ("eth_chainId", [])])
        assert out[0] == "0x1"
        assert isinstance(out[1], RpcError)

    def test_empty_batch_makes_no_request(self, node, rpc):
        assert rpc.batch([]) == []
        assert node.posts == 0
