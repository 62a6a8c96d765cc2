"""Runtime configuration rendered into every node's config files.

One ``NodeRuntimeConfig`` is built per ``Testnet.setup`` call and applied
uniformly to all nodes before they are initialised.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Literal, Sequence

from pydantic import BaseModel, ConfigDict, Field

P2P_PORT = 26656
RPC_PORT = 26657
GRPC_PORT = 9090
PROMETHEUS_PORT = 26660
TRACING_PORT = 26661

DEFAULT_TRACING_TABLES = [
    "consensus_round_state",
    "consensus_block_parts",
    "consensus_block",
    "consensus_vote",
    "mempool_tx",
    "mempool_peer_state",
    "p2p_peers",
    "p2p_received_bytes",
    "p2p_sent_bytes",
]


def format_duration(value: timedelta) -> str:
    """Render a duration the way the node's TOML config expects it ("10s", "500ms")."""
    total_ms = int(round(value.total_seconds() * 1000))
    if total_ms % 1000 == 0:
        return f"{total_ms // 1000}s"
    return f"{total_ms}ms"


class TracingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    tables: List[str] = Field(default_factory=lambda: list(DEFAULT_TRACING_TABLES))
    buffer_size: int = Field(default=5000, ge=1)
    push_config: str = ""


class NodeRuntimeConfig(BaseModel):
    """Node process tuning. Affects only the rendered config files."""

    model_config = ConfigDict(extra="forbid")

    per_peer_bandwidth: int = Field(
        default=5 * 1024 * 1024,
        ge=1,
        description="Send and receive rate cap per peer, bytes per second.",
    )
    timeout_propose: timedelta = Field(default=timedelta(seconds=10))
    timeout_commit: timedelta = Field(default=timedelta(seconds=11))
    mempool: Literal["v0", "v1", "v2"] = "v1"
    broadcast_txs: bool = True
    prometheus: bool = False
    pex: bool = False
    tx_indexer: Literal["kv", "null"] = "kv"
    mempool_max_txs_bytes: int = Field(default=1_000_000_000, ge=1)
    mempool_max_tx_bytes: int = Field(default=1_000_000_000, ge=1)
    mempool_ttl_num_blocks: int = Field(default=100, ge=0)
    mempool_ttl_duration: timedelta = Field(default=timedelta(minutes=40))
    tracing: TracingSettings = Field(default_factory=TracingSettings)
    minimum_gas_prices: str = "0.002utia"

    def with_overrides(self, **overrides: Any) -> "NodeRuntimeConfig":
        """Return a validated copy with ``overrides`` applied."""
        data = self.model_dump()
        tracing = overrides.pop("tracing", None)
        if isinstance(tracing, bool):
            data["tracing"]["enabled"] = tracing
        elif tracing is not None:
            data["tracing"] = tracing
        data.update(overrides)
        return NodeRuntimeConfig.model_validate(data)

    def comet_config(self, moniker: str, peers: Sequence[str]) -> Dict[str, Any]:
        instrumentation: Dict[str, Any] = {
            "prometheus": self.prometheus,
            "prometheus_listen_addr": f":{PROMETHEUS_PORT}",
            "trace_type": "noop",
        }
        if self.tracing.enabled:
            instrumentation.update(
                {
                    "trace_type": "local",
                    "trace_buffer_size": self.tracing.buffer_size,
                    "tracing_tables": ",".join(self.tracing.tables),
                    "trace_pull_address": f":{TRACING_PORT}",
                    "trace_push_config": self.tracing.push_config,
                }
            )
        return {
            "moniker": moniker,
            "proxy_app": "tcp://127.0.0.1:26658",
            "rpc": {"laddr": f"tcp://0.0.0.0:{RPC_PORT}"},
            "p2p": {
                "laddr": f"tcp://0.0.0.0:{P2P_PORT}",
                "persistent_peers": ",".join(peers),
                "pex": self.pex,
                "send_rate": self.per_peer_bandwidth,
                "recv_rate": self.per_peer_bandwidth,
                "addr_book_strict": False,
            },
            "mempool": {
                "version": self.mempool,
                "broadcast": self.broadcast_txs,
                "max_txs_bytes": self.mempool_max_txs_bytes,
                "max_tx_bytes": self.mempool_max_tx_bytes,
                "ttl-num-blocks": self.mempool_ttl_num_blocks,
                "ttl-duration": format_duration(self.mempool_ttl_duration),
            },
            "consensus": {
                "timeout_propose": format_duration(self.timeout_propose),
                "timeout_commit": format_duration(self.timeout_commit),
            },
            "tx_index": {"indexer": self.tx_indexer},
            "instrumentation": instrumentation,
        }

    def app_config(self) -> Dict[str, Any]:
        return {
            "minimum-gas-prices": self.minimum_gas_prices,
            "api": {"enable": True},
            "grpc": {"enable": True, "address": f"0.0.0.0:{GRPC_PORT}"},
            "telemetry": {"enabled": self.prometheus},
        }


__all__ = [
    "NodeRuntimeConfig",
    "TracingSettings",
    "format_duration",
    "DEFAULT_TRACING_TABLES",
    "P2P_PORT",
    "RPC_PORT",
    "GRPC_PORT",
    "PROMETHEUS_PORT",
    "TRACING_PORT",
]
