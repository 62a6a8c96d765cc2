"""Tests for bench/blocktimes.py - block statistics collection."""

from __future__ import annotations

import csv

import pytest

from benchnet.bench.blocktimes import BlockTimeRow, read_block_times, write_block_times_csv
from benchnet.rpc.client import Block
from benchnet.shared.errors import BenchmarkError, RPCError


def blocks_for(*heights, txs=(b"tx-bytes",)):
    return {h: Block(height=h, time_ns=h * 1_000_000_000, txs=list(txs), last_commit_round=0) for h in heights}


class TestReadBlockTimes:
    @pytest.mark.asyncio
    async def test_range_from_status(self, make_rpc_client):
        client = make_rpc_client("val0", heights=[3], blocks=blocks_for(1, 2, 3))
        rows = await read_block_times([client])
        assert [r.height for r in rows] == [1, 2, 3]
        assert rows[0].block_size == len(b"tx-bytes")
        assert rows[0].tx_count == 1

    @pytest.mark.asyncio
    async def test_explicit_range(self, make_rpc_client):
        client = make_rpc_client("val0", blocks=blocks_for(4, 5))
        rows = await read_block_times([client], 4, 5)
        assert [r.height for r in rows] == [4, 5]
        assert client.status_calls == 0

    @pytest.mark.asyncio
    async def test_falls_back_to_next_client(self, make_rpc_client):
        first = make_rpc_client("val0", heights=[3], blocks=blocks_for(1))
        second = make_rpc_client("val1", blocks=blocks_for(1, 2, 3))
        rows = await read_block_times([first, second])

        assert [r.height for r in rows] == [1, 2, 3]
        assert first.block_calls == [1, 2]
        assert second.block_calls == [2, 3]

    @pytest.mark.asyncio
    async def test_all_clients_fail(self, make_rpc_client):
        first = make_rpc_client("val0", heights=[2], blocks=blocks_for(1))
        second = make_rpc_client("val1", blocks={1: RPCError("down")})
        with pytest.raises(BenchmarkError, match="height 2"):
            await read_block_times([first, second])

    @pytest.mark.asyncio
    async def test_status_failure(self, make_rpc_client, rpc_error):
        client = make_rpc_client("val0", heights=[rpc_error])
        with pytest.raises(BenchmarkError, match="chain status"):
            await read_block_times([client])

    @pytest.mark.asyncio
    async def test_no_clients(self):
        with pytest.raises(BenchmarkError):
            await read_block_times([])


def test_csv_output(tmp_path):
    rows = [BlockTimeRow(1, 1000, 20, 0, 2), BlockTimeRow(2, 2000, 0, 1, 0)]
    path = write_block_times_csv(rows, tmp_path / "out" / "blocks.csv")
    with path.open(newline="") as f:
        lines = list(csv.reader(f))
    assert lines[0] == ["height", "block time", "block size", "last commit round"]
    assert lines[1:] == [["1", "1000", "20", "0"], ["2", "2000", "0", "1"]]
