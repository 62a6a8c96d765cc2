"""Tests for bench/benchmark.py - manifest-driven runs against fake infrastructure."""

from __future__ import annotations

import pytest

from benchnet.bench.benchmark import BenchTest, check_throughput, trace_push_env
from benchnet.bench.blocktimes import BlockTimeRow
from benchnet.config.manifest import Manifest
from benchnet.rpc.client import Block
from benchnet.shared.enums import NetworkPhase
from benchnet.shared.errors import BenchmarkError, LivenessTimeoutError


def rows_with(*tx_counts):
    return [BlockTimeRow(i + 1, i, 0, 0, count) for i, count in enumerate(tx_counts)]


class TestCheckThroughput:
    def test_enough(self):
        assert check_throughput(rows_with(4, 6), 10) == 10

    def test_too_few(self):
        with pytest.raises(BenchmarkError, match="expected at least 10 transactions, got 3"):
            check_throughput(rows_with(1, 2), 10)


class TestTracePushEnv:
    def test_all_set(self):
        environ = {
            "TRACE_PUSH_BUCKET_NAME": "b",
            "TRACE_PUSH_REGION": "r",
            "TRACE_PUSH_ACCESS_KEY": "a",
            "TRACE_PUSH_SECRET_KEY": "s",
            "TRACE_PUSH_DELAY": "10",
        }
        assert trace_push_env(environ) == environ

    def test_partial_is_ignored(self):
        assert trace_push_env({"TRACE_PUSH_BUCKET_NAME": "b"}) == {}


@pytest.fixture
def manifest(tmp_path):
    return Manifest(
        test_name="unit",
        validators=2,
        tx_clients=1,
        test_duration=0,
        min_transactions=10,
        block_times_csv=str(tmp_path / "blocks.csv"),
        poll={"liveness_attempts": 3, "liveness_interval": 0},
    )


@pytest.fixture
def make_bench(backend, rpc_factory, tmp_path):
    def _make(manifest: Manifest) -> BenchTest:
        return BenchTest(manifest, backend, rpc_client_factory=rpc_factory, staging_root=str(tmp_path))

    return _make


def seed_blocks(rpc_factory, tx_count):
    rpc_factory.blocks[1] = Block(height=1, time_ns=1, txs=[b"x" * 10] * tx_count)


class TestBenchTest:
    @pytest.mark.asyncio
    async def test_full_run(self, manifest, make_bench, backend, rpc_factory, tmp_path):
        seed_blocks(rpc_factory, 12)
        bench = make_bench(manifest)
        result = await bench.execute()

        assert result.total_transactions == 12
        assert (tmp_path / "blocks.csv").exists()
        assert result.teardown.ok
        assert backend.names("start") == ["val0", "val1", "txsim0"]
        assert sorted(backend.names("destroy")) == ["txsim0", "val0", "val1"]
        assert backend.closed
        assert bench.testnet.phase is NetworkPhase.CLEANED

    @pytest.mark.asyncio
    async def test_throughput_failure_still_tears_down(self, manifest, make_bench, backend, rpc_factory):
        seed_blocks(rpc_factory, 3)
        with pytest.raises(BenchmarkError, match="got 3"):
            await make_bench(manifest).execute()
        assert sorted(backend.names("destroy")) == ["txsim0", "val0", "val1"]
        assert backend.closed

    @pytest.mark.asyncio
    async def test_liveness_failure(self, manifest, make_bench, backend, rpc_factory):
        rpc_factory.script("val1", [0])
        with pytest.raises(LivenessTimeoutError):
            await make_bench(manifest).execute()
        assert rpc_factory.clients["val1"].status_calls == 3
        assert "txsim0" not in backend.names("create")
        assert backend.closed

    @pytest.mark.asyncio
    async def test_manifest_options_reach_nodes(self, make_bench, backend, rpc_factory, tmp_path):
        seed_blocks(rpc_factory, 10)
        manifest = Manifest(
            validators=1,
            tx_clients=0,
            test_duration=0,
            per_peer_bandwidth="1MiB",
            gov_max_square_size=128,
            poll={"liveness_interval": 0},
        )
        bench = make_bench(manifest)
        await bench.execute()
        files = backend.files["val0"]
        assert b"send_rate = 1048576" in files["config/config.toml"]
        assert b'"gov_max_square_size": "128"' in files["config/genesis.json"]
