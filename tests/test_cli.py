import csv
import json
from decimal import Decimal

import httpx
import pytest

from evm_lottery import cli
from evm_lottery.project_constants import ZERO_ADDRESS
from evm_lottery.rpc import RpcClient

TOKEN_A = "0x" + "a" * 40
POOL_A = "0x" + "ab" * 20
X = "0x" + "1" * 40
Y = "0x" + "2" * 40


@pytest.fixture
def workdir(tmp_path, monkeypatch, node):
    monkeypatch.chdir(tmp_path)
    for key in ("RPC_URL", "ALCHEMY_API_KEY", "POSITION_MANAGER", "EXCLUDED_HOLDERS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("RPC_URL", "http://node.test")
    monkeypatch.setattr(
        cli,
        "RpcClient",
        lambda url, timeout_s: RpcClient(url, timeout_s=timeout_s, transport=httpx.MockTransport(node)),
    )
    (tmp_path / "tokens.json").write_text(
        json.dumps([{"address": TOKEN_A, "lpAddress": POOL_A, "decimals": 18}]), encoding="utf-8"
    )

    def transfer(block, frm, to, amount):
        return {
            "blockNum": hex(block),
            "hash": f"0xt{block}",
            "from": frm,
            "to": to,
            "rawContract": {"value": hex(amount * 10**18), "address": TOKEN_A},
        }

    node.on(
        "alchemy_getAssetTransfers",
        lambda params: {"transfers": [transfer(1, ZERO_ADDRESS, X, 100), transfer(2, X, Y, 40)]},
    )
    node.on("eth_blockNumber", lambda params: "0x2a")
    return tmp_path


def run(argv):
    args = cli.build_parser().parse_args(argv)
    return args.func(args)


class TestParser:
    def test_winners_args(self):
        args = cli.build_parser().parse_args(["winners", "--block", "100", "--count", "3", "--lp-weight", "1.5"])
        assert args.block == 100
        assert args.count == 3
        assert args.lp_weight == Decimal("1.5")
        assert args.tokens == "tokens.json"

    def test_negative_lp_weight_rejected(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["winners", "--block", "1", "--count", "1", "--lp-weight", "-1"])

    def test_block_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["snapshot"])


def test_missing_token_file(workdir):
    (workdir / "tokens.json").unlink()
    with pytest.raises(SystemExit, match="Configuration error"):
        run(["snapshot", "--block", "10"])


def test_snapshot_command(workdir, capsys):
    assert run(["snapshot", "--block", "10", "--no-lps"]) == 0

    with open(workdir / "snapshot-block-10.csv", newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert [r[0] for r in rows[1:]] == [X, Y]
    assert "Holders       : 2" in capsys.readouterr().out


def test_winners_command(workdir, capsys):
    out = workdir / "draw.csv"
    assert run(["winners", "--block", "10", "--count", "5", "--out", str(out)]) == 0

    printed = capsys.readouterr().out
    assert "Winners       : 2 / 5 requested" in printed
    assert f"{X}  weight=60" in printed
    assert out.exists()


def test_head_command(workdir, capsys):
    assert run(["head"]) == 0
    assert "Latest block  : 42" in capsys.readouterr().out
