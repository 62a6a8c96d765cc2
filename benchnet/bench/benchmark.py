"""Manifest-driven benchmark run: set up nodes, drive load, collect results."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

from benchnet.config.manifest import Manifest
from benchnet.deploy.base import DeploymentBackend
from benchnet.rpc.client import NodeRPCClient
from benchnet.shared.errors import BenchmarkError, RPCError, TeardownReport
from benchnet.testnet.testnet import Testnet

from .blocktimes import BlockTimeRow, read_block_times, write_block_times_csv

logger = logging.getLogger(__name__)

TRACE_PUSH_VARS = (
    "TRACE_PUSH_BUCKET_NAME",
    "TRACE_PUSH_REGION",
    "TRACE_PUSH_ACCESS_KEY",
    "TRACE_PUSH_SECRET_KEY",
    "TRACE_PUSH_DELAY",
)

DEFAULT_TRACE_TABLES = ("consensus_round_state", "p2p_received_bytes")


def trace_push_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Trace push settings to forward to nodes; empty unless all are set."""
    environ = os.environ if environ is None else environ
    values = {name: environ.get(name, "") for name in TRACE_PUSH_VARS}
    if not all(values.values()):
        return {}
    return values


def check_throughput(rows: List[BlockTimeRow], minimum: int) -> int:
    total = sum(row.tx_count for row in rows)
    if total < minimum:
        raise BenchmarkError(f"expected at least {minimum} transactions, got {total}")
    return total


@dataclass
class BenchResult:
    rows: List[BlockTimeRow] = field(default_factory=list)
    total_transactions: int = 0
    csv_path: Optional[str] = None
    trace_files: List[str] = field(default_factory=list)
    teardown: Optional[TeardownReport] = None


class BenchTest:
    def __init__(
        self,
        manifest: Manifest,
        backend: DeploymentBackend,
        *,
        report_interval: float = 20.0,
        node_env: Optional[Mapping[str, str]] = None,
        rpc_client_factory: Callable[[str], NodeRPCClient] = NodeRPCClient,
        staging_root: Optional[str] = None,
    ) -> None:
        self.manifest = manifest
        self.report_interval = report_interval
        self.testnet = Testnet(
            manifest.test_name,
            manifest.seed,
            backend,
            chain_id=manifest.chain_id,
            genesis_modifiers=manifest.genesis_modifiers(),
            consensus_params=manifest.consensus_params(),
            poll=manifest.poll,
            node_env=node_env,
            rpc_client_factory=rpc_client_factory,
            staging_root=staging_root,
        )

    async def setup_nodes(self) -> None:
        m = self.manifest
        await self.testnet.create_genesis_nodes(
            m.validators,
            m.celestia_app_version,
            m.self_delegation,
            m.upgrade_height,
            m.validator_resources,
        )
        self.testnet.create_tx_clients(
            m.tx_clients,
            m.tx_client_version,
            m.blob_sequences,
            m.blob_sizes,
            m.tx_client_resources,
            blobs_per_sequence=m.blobs_per_sequence,
            poll_time=m.tx_client_poll_time,
        )
        logger.info({"bench": {"test": m.test_name, "phase": "setup"}})
        await self.testnet.setup(**self.manifest.runtime_overrides())

    async def run(self) -> None:
        logger.info({"bench": {"test": self.manifest.test_name, "phase": "start"}})
        await self.testnet.start()
        await self.testnet.start_tx_clients()
        await self._monitor(self.manifest.test_duration.total_seconds())
        report = await self.testnet.stop_tx_clients()
        if not report.ok:
            logger.warning({"bench": {"tx_clients_not_stopped": report.failed_resources()}})

    async def _monitor(self, duration: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration
        client = await self.testnet.node(0).client()
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            await asyncio.sleep(min(self.report_interval, remaining))
            try:
                status = await client.status()
            except RPCError as exc:
                logger.warning({"bench": {"status_error": str(exc)}})
                continue
            logger.info({"bench": {"height": status.latest_block_height}})

    async def collect(self) -> BenchResult:
        m = self.manifest
        result = BenchResult()
        if m.enable_tracing and m.traces_dir:
            tables = m.tracing_tables or list(DEFAULT_TRACE_TABLES)
            node = self.testnet.node(0)
            for table in tables:
                path = await node.pull_traces(table, m.traces_dir)
                result.trace_files.append(str(path))

        genesis_nodes = [n for n in self.testnet.nodes if n.start_height == 0]
        clients = [await node.client() for node in genesis_nodes]
        result.rows = await read_block_times(clients)
        if m.block_times_csv:
            result.csv_path = str(write_block_times_csv(result.rows, m.block_times_csv))
        result.total_transactions = check_throughput(result.rows, m.min_transactions)
        logger.info(
            {"bench": {"test": m.test_name, "blocks": len(result.rows), "transactions": result.total_transactions}}
        )
        return result

    async def execute(self) -> BenchResult:
        """Full run. Teardown always happens; its failures are logged, not raised."""
        async with self.testnet:
            await self.setup_nodes()
            await self.run()
            result = await self.collect()
        result.teardown = await self.testnet.cleanup()
        return result


__all__ = [
    "BenchResult",
    "BenchTest",
    "DEFAULT_TRACE_TABLES",
    "check_throughput",
    "trace_push_env",
]
