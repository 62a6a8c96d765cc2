"""A single chain node and its deployment handle."""

from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Sequence

import httpx
import toml

from benchnet.config.resources import DEFAULT_RESOURCES, Resources
from benchnet.deploy.base import DeploymentBackend, InstanceHandle, InstanceSpec
from benchnet.rpc.client import NodeRPCClient
from benchnet.shared.enums import InstanceState, NodeState
from benchnet.shared.errors import DeploymentError, OrchestrationError
from benchnet.shared.logging import log_event

from .genesis import GenesisDocument
from .keygen import KeyPair
from .runtime import (
    GRPC_PORT,
    P2P_PORT,
    PROMETHEUS_PORT,
    RPC_PORT,
    TRACING_PORT,
    NodeRuntimeConfig,
)

logger = logging.getLogger(__name__)

NODE_IMAGE = "ghcr.io/celestiaorg/celestia-app"
HOME_DIR = "/home/celestia/.celestia-app"

NODE_PORTS = {
    "p2p": P2P_PORT,
    "rpc": RPC_PORT,
    "grpc": GRPC_PORT,
    "prometheus": PROMETHEUS_PORT,
    "tracing": TRACING_PORT,
}

RPCClientFactory = Callable[[str], NodeRPCClient]


@dataclass(frozen=True)
class NodeIdentity:
    signing_key: KeyPair
    network_key: KeyPair
    account_key: KeyPair


def node_args(upgrade_height: int) -> list:
    args = ["start", f"--home={HOME_DIR}", f"--rpc.laddr=tcp://0.0.0.0:{RPC_PORT}"]
    if upgrade_height > 0:
        args.append(f"--v2-upgrade-height={upgrade_height}")
    return args


class Node:
    """One node process. Genesis node when ``start_height == 0``,
    validator when ``self_delegation > 0``.
    """

    def __init__(
        self,
        name: str,
        version: str,
        start_height: int,
        self_delegation: int,
        identity: NodeIdentity,
        backend: DeploymentBackend,
        handle: InstanceHandle,
        *,
        upgrade_height: int = 0,
        resources: Resources = DEFAULT_RESOURCES,
        rpc_client_factory: RPCClientFactory = NodeRPCClient,
        staging_root: Optional[str] = None,
    ) -> None:
        self.name = name
        self.version = version
        self.start_height = start_height
        self.self_delegation = self_delegation
        self.identity = identity
        self.backend = backend
        self.handle = handle
        self.upgrade_height = upgrade_height
        self.resources = resources
        self.rpc_client_factory = rpc_client_factory
        self.staging_root = staging_root
        self.state = NodeState.CREATED
        self._client: Optional[NodeRPCClient] = None

    @classmethod
    async def create(
        cls,
        backend: DeploymentBackend,
        name: str,
        version: str,
        start_height: int,
        self_delegation: int,
        identity: NodeIdentity,
        *,
        upgrade_height: int = 0,
        resources: Optional[Resources] = None,
        image: str = NODE_IMAGE,
        env: Optional[Mapping[str, str]] = None,
        rpc_client_factory: RPCClientFactory = NodeRPCClient,
        staging_root: Optional[str] = None,
    ) -> "Node":
        resources = resources or DEFAULT_RESOURCES
        spec = InstanceSpec(
            name=name,
            image=f"{image}:{version}",
            args=node_args(upgrade_height),
            env=dict(env or {}),
            ports=dict(NODE_PORTS),
            resources=resources,
        )
        handle = await backend.create(spec)
        logger.info({"node": {"name": name, "version": version, "start_height": start_height, "state": "created"}})
        return cls(
            name,
            version,
            start_height,
            self_delegation,
            identity,
            backend,
            handle,
            upgrade_height=upgrade_height,
            resources=resources,
            rpc_client_factory=rpc_client_factory,
            staging_root=staging_root,
        )

    # genesis participant view
    @property
    def signing_key(self) -> KeyPair:
        return self.identity.signing_key

    @property
    def network_key(self) -> KeyPair:
        return self.identity.network_key

    @property
    def account_key(self) -> KeyPair:
        return self.identity.account_key

    @property
    def is_genesis(self) -> bool:
        return self.start_height == 0

    @property
    def is_validator(self) -> bool:
        return self.self_delegation > 0

    # ------------------------------------------------------------------
    # Config rendering
    # ------------------------------------------------------------------
    def render_files(
        self,
        genesis: GenesisDocument,
        peers: Sequence[str],
        runtime: NodeRuntimeConfig,
    ) -> Dict[str, bytes]:
        """Home-relative path -> file content."""
        signing = self.signing_key
        return {
            "config/config.toml": toml.dumps(runtime.comet_config(self.name, peers)).encode("utf-8"),
            "config/app.toml": toml.dumps(runtime.app_config()).encode("utf-8"),
            "config/genesis.json": genesis.to_json(),
            "config/priv_validator_key.json": _json_bytes(
                {
                    "address": signing.address,
                    "pub_key": signing.comet_public_key(),
                    "priv_key": signing.comet_private_key(),
                }
            ),
            "config/node_key.json": _json_bytes({"priv_key": self.network_key.comet_private_key()}),
            "data/priv_validator_state.json": _json_bytes({"height": "0", "round": 0, "step": 0}),
        }

    async def init(
        self,
        genesis: GenesisDocument,
        peers: Sequence[str],
        runtime: Optional[NodeRuntimeConfig] = None,
    ) -> None:
        if self.state is not NodeState.CREATED:
            raise OrchestrationError(f"node {self.name} cannot be initialised from state {self.state.value}")
        own_prefix = f"{self.network_key.node_id}@"
        if any(peer.startswith(own_prefix) for peer in peers):
            raise OrchestrationError(f"node {self.name} cannot list itself as a peer")

        files = self.render_files(genesis, peers, runtime or NodeRuntimeConfig())
        staging = Path(tempfile.mkdtemp(prefix=f"benchnet-{self.name}-", dir=self.staging_root))
        for relative, content in files.items():
            path = staging / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        (staging / "config" / "priv_validator_key.json").chmod(0o600)
        (staging / "config" / "node_key.json").chmod(0o600)

        await self.backend.add_file(self.handle, f"{staging}/.", HOME_DIR)
        self.state = NodeState.INITIALIZED
        logger.info({"node": {"name": self.name, "state": self.state.value, "peers": len(peers)}})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        await self.backend.start(self.handle)
        self.state = NodeState.STARTED
        log_event({"node_started": self.name})

    async def stop(self) -> None:
        await self.backend.stop(self.handle)
        self.state = NodeState.STOPPED

    async def destroy(self) -> None:
        try:
            await self.backend.destroy(self.handle)
            self.state = NodeState.DESTROYED
        finally:
            if self._client is not None:
                client, self._client = self._client, None
                await client.close()

    async def is_started(self) -> bool:
        return await self.backend.is_in_state(self.handle, InstanceState.STARTED)

    # ------------------------------------------------------------------
    # Addresses
    # ------------------------------------------------------------------
    def address_p2p(self, with_id: bool = True) -> str:
        address = f"{self.backend.internal_host(self.handle)}:{P2P_PORT}"
        if with_id:
            return f"{self.network_key.node_id}@{address}"
        return address

    def address_rpc(self) -> str:
        return f"{self.backend.internal_host(self.handle)}:{RPC_PORT}"

    def address_grpc(self) -> str:
        return f"{self.backend.internal_host(self.handle)}:{GRPC_PORT}"

    async def remote_address_rpc(self) -> str:
        return await self.backend.resolve_address(self.handle, "rpc")

    async def remote_address_grpc(self) -> str:
        return await self.backend.resolve_address(self.handle, "grpc")

    async def remote_address_tracing(self) -> str:
        return await self.backend.resolve_address(self.handle, "tracing")

    async def client(self) -> NodeRPCClient:
        if self._client is None:
            self._client = self.rpc_client_factory(await self.remote_address_rpc())
        return self._client

    async def pull_traces(self, table: str, dest_dir: str, *, timeout_seconds: float = 60.0) -> Path:
        """Download one traced table (JSON lines) to ``<dest_dir>/<node>/<table>.jsonl``."""
        address = await self.remote_address_tracing()
        target = Path(dest_dir) / self.name / f"{table}.jsonl"
        target.parent.mkdir(parents=True, exist_ok=True)
        url = f"http://{address}/get_table"
        try:
            async with httpx.AsyncClient(timeout=timeout_seconds) as client:
                async with client.stream("GET", url, params={"table": table}) as resp:
                    resp.raise_for_status()
                    with target.open("wb") as fh:
                        async for chunk in resp.aiter_bytes():
                            fh.write(chunk)
        except httpx.HTTPError as exc:
            raise DeploymentError(self.name, f"pull traces {table}", str(exc)) from exc
        logger.info({"node": {"name": self.name, "traces": table, "path": str(target)}})
        return target

    def __repr__(self) -> str:
        return f"Node(name={self.name!r}, state={self.state.value}, start_height={self.start_height})"


def _json_bytes(payload: object) -> bytes:
    return json.dumps(payload, indent=2).encode("utf-8")


__all__ = ["HOME_DIR", "NODE_IMAGE", "NODE_PORTS", "Node", "NodeIdentity", "node_args"]
