"""Benchmark manifest: the single configuration object a run is built from.

Each option feeds exactly one layer of the run: node/tx client resources,
genesis content (``genesis_modifiers()``, ``consensus_params()``) or the node
runtime config (``runtime_overrides()``).
"""

from __future__ import annotations

import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from benchnet.shared.errors import ConfigurationError

from .resources import DEFAULT_RESOURCES, Resources

_BANDWIDTH_RE = re.compile(r"^([0-9]+(?:\.[0-9]+)?)\s*([KMGT])(ib|iB|b|B)$")
_BANDWIDTH_POWERS = {"K": 1, "M": 2, "G": 3, "T": 4}


def parse_bandwidth(value: Union[str, int]) -> int:
    """Parse ``"5MiB"``/``"5Mib"`` (1024 powers) or ``"5MB"``/``"5Mb"`` (1000 powers) to bytes."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    match = _BANDWIDTH_RE.match(text)
    if match is None:
        raise ValueError(f"unknown unit in bandwidth: {value!r}")
    number, prefix, unit = match.groups()
    base = 1024 if unit.lower() == "ib" else 1000
    return int(float(number) * base ** _BANDWIDTH_POWERS[prefix])


class PollSettings(BaseModel):
    """Attempt budgets for the two readiness gates."""

    liveness_attempts: int = Field(default=10, ge=1, description="Status polls per node after start.")
    liveness_interval: float = Field(default=1.0, ge=0, description="Seconds between status polls.")
    creation_attempts: int = Field(default=250, ge=1, description="Status polls per provisioned machine.")
    creation_interval: float = Field(default=2.0, ge=0, description="Seconds between machine status polls.")


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_logs: bool = False
    events_dir: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _alias_json(cls, data: Any) -> Any:
        if isinstance(data, dict) and "json" in data and "json_logs" not in data:
            data = dict(data)
            data["json_logs"] = data.pop("json")
        return data


class MachineBackendSettings(BaseModel):
    region: str = "nyc3"
    size: str = "s-4vcpu-8gb"
    os_image: str = "ubuntu-22-04-x64"
    user_data: str = ""
    user_data_vars: Dict[str, str] = Field(default_factory=dict)
    ssh_user: str = "root"
    kube_context: Optional[str] = None


class Manifest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    test_name: str = "benchmark"
    chain_id: str = "benchnet"
    seed: int = 42

    # validators
    validators: int = Field(default=2, ge=1)
    celestia_app_version: str = "latest"
    self_delegation: int = Field(default=10_000_000, ge=0)
    upgrade_height: int = Field(default=0, ge=0)
    validator_resources: Resources = Field(default_factory=lambda: DEFAULT_RESOURCES.model_copy())

    # tx clients
    tx_clients: int = Field(default=1, ge=0)
    tx_client_version: str = "latest"
    tx_client_resources: Resources = Field(default_factory=lambda: DEFAULT_RESOURCES.model_copy())
    blob_sequences: int = Field(default=1, ge=1)
    blob_sizes: str = "200000-200000"
    blobs_per_sequence: int = Field(default=1, ge=1)
    tx_client_poll_time: int = Field(default=3, ge=1, description="Seconds between sequences.")

    # runtime
    per_peer_bandwidth: int = Field(default=5 * 1024 * 1024, ge=1)
    timeout_commit: timedelta = Field(default=timedelta(seconds=11))
    timeout_propose: timedelta = Field(default=timedelta(seconds=10))
    mempool: Literal["v0", "v1", "v2"] = "v1"
    broadcast_txs: bool = True
    prometheus: bool = False
    enable_tracing: bool = False
    tracing_tables: Optional[List[str]] = None

    # genesis
    gov_max_square_size: int = Field(default=64, ge=1)
    max_block_bytes: int = Field(default=1974272, ge=1)
    app_version: int = Field(default=1, ge=1)
    immediate_proposals: bool = False

    # run
    test_duration: timedelta = Field(default=timedelta(minutes=1))
    min_transactions: int = Field(default=10, ge=0)
    block_times_csv: Optional[str] = None
    traces_dir: Optional[str] = None
    backend: Literal["docker", "machine"] = "docker"
    machine: MachineBackendSettings = Field(default_factory=MachineBackendSettings)
    poll: PollSettings = Field(default_factory=PollSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("per_peer_bandwidth", mode="before")
    @classmethod
    def _parse_bandwidth(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_bandwidth(value)
        return value

    @field_validator("seed")
    @classmethod
    def _check_seed(cls, value: int) -> int:
        if not -(2**63) <= value <= 2**63 - 1:
            raise ValueError("seed must fit in a signed 64-bit integer")
        return value

    @field_validator("gov_max_square_size")
    @classmethod
    def _check_square_size(cls, value: int) -> int:
        if value & (value - 1):
            raise ValueError("gov_max_square_size must be a power of two")
        return value

    def genesis_modifiers(self) -> list:
        from benchnet.testnet.genesis import immediate_proposals, set_blob_params

        modifiers = [set_blob_params(gov_max_square_size=self.gov_max_square_size)]
        if self.immediate_proposals:
            modifiers.append(immediate_proposals())
        return modifiers

    def consensus_params(self) -> Dict[str, Any]:
        from benchnet.testnet.genesis import default_consensus_params

        params = default_consensus_params()
        params["block"]["max_bytes"] = str(self.max_block_bytes)
        params["version"]["app_version"] = str(self.app_version)
        return params

    def runtime_overrides(self) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {
            "per_peer_bandwidth": self.per_peer_bandwidth,
            "timeout_propose": self.timeout_propose,
            "timeout_commit": self.timeout_commit,
            "mempool": self.mempool,
            "broadcast_txs": self.broadcast_txs,
            "prometheus": self.prometheus,
        }
        if self.enable_tracing and self.tracing_tables:
            overrides["tracing"] = {"enabled": True, "tables": list(self.tracing_tables)}
        else:
            overrides["tracing"] = self.enable_tracing
        return overrides


def load_manifest(path: Union[str, Path]) -> Manifest:
    """Load a manifest from YAML. Accepts a top-level mapping or a ``manifest:`` section."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigurationError(f"cannot read manifest {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in manifest {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"manifest {path} must contain a mapping")
    section = data.get("manifest", data)
    if not isinstance(section, dict):
        raise ConfigurationError(f"manifest section in {path} must be a mapping")
    try:
        return Manifest.model_validate(section)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid manifest {path}: {exc}") from exc


__all__ = [
    "LoggingSettings",
    "MachineBackendSettings",
    "Manifest",
    "PollSettings",
    "load_manifest",
    "parse_bandwidth",
]
