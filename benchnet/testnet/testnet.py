"""Test network orchestrator.

Owns the nodes, genesis accounts and tx clients of one network and drives
them through ``NEW -> SETUP -> STARTED -> CLEANED``:

- genesis is computed once in ``setup()`` from the genesis-height nodes
- every node is initialised with that genesis and all other nodes as peers
- ``start()`` starts genesis-height nodes in order, then gates on each
  node reporting a block height above zero
- ``cleanup()`` tears every resource down, continuing past failures
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from benchnet.config.manifest import PollSettings
from benchnet.config.resources import Resources
from benchnet.deploy.base import DeploymentBackend
from benchnet.rpc.client import NodeRPCClient, NodeStatus
from benchnet.shared.enums import KeyRole, NetworkPhase
from benchnet.shared.errors import (
    ConfigurationError,
    LivenessTimeoutError,
    OrchestrationError,
    RPCError,
    TeardownReport,
)
from benchnet.shared.logging import log_event
from benchnet.shared.polling import PollExhausted, poll_until

from .accounts import DirectoryKeyring, GenesisAccount, InMemoryKeyring
from .genesis import GenesisBuilder, GenesisDocument, Modifier
from .keygen import KeyGenerator, validate_seed
from .node import NODE_IMAGE, Node, NodeIdentity
from .runtime import NodeRuntimeConfig
from .txclient import TxClient, TxClientConfig

logger = logging.getLogger(__name__)

DEFAULT_TX_CLIENT_TOKENS = 10**16


class Testnet:
    __test__ = False

    def __init__(
        self,
        name: str,
        seed: int,
        backend: DeploymentBackend,
        *,
        chain_id: str = "benchnet",
        genesis_modifiers: Iterable[Modifier] = (),
        consensus_params: Optional[Mapping[str, Any]] = None,
        poll: Optional[PollSettings] = None,
        runtime: Optional[NodeRuntimeConfig] = None,
        genesis_time: Optional[datetime] = None,
        node_image: str = NODE_IMAGE,
        node_env: Optional[Mapping[str, str]] = None,
        staging_root: Optional[str] = None,
        rpc_client_factory: Callable[[str], NodeRPCClient] = NodeRPCClient,
    ) -> None:
        self.seed = validate_seed(seed)
        self.name = name
        self.identifier = f"{name.lower()}-{uuid.uuid4().hex[:8]}"
        self.backend = backend
        self.chain_id = chain_id
        self.genesis_modifiers: List[Modifier] = list(genesis_modifiers)
        self.consensus_params = dict(consensus_params) if consensus_params is not None else None
        self.poll = poll or PollSettings()
        self.runtime = runtime or NodeRuntimeConfig()
        self.genesis_time = genesis_time or datetime.now(timezone.utc)
        self.node_image = node_image
        self.node_env = dict(node_env or {})
        self.staging_root = staging_root
        self.rpc_client_factory = rpc_client_factory

        self.keygen = KeyGenerator(self.seed)
        self.phase = NetworkPhase.NEW
        self._nodes: List[Node] = []
        self._genesis_accounts: List[GenesisAccount] = []
        self._tx_clients: List[TxClient] = []
        self._genesis: Optional[GenesisDocument] = None
        self._cleanup_report: Optional[TeardownReport] = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes)

    def node(self, index: int) -> Node:
        return self._nodes[index]

    @property
    def genesis(self) -> Optional[GenesisDocument]:
        return self._genesis

    @property
    def genesis_accounts(self) -> List[GenesisAccount]:
        return list(self._genesis_accounts)

    @property
    def tx_clients(self) -> List[TxClient]:
        return list(self._tx_clients)

    def set_consensus_params(self, params: Mapping[str, Any]) -> None:
        self._require_phase(NetworkPhase.NEW, "set consensus params")
        self.consensus_params = dict(params)

    def _require_phase(self, phase: NetworkPhase, operation: str) -> None:
        if self.phase is not phase:
            raise OrchestrationError(
                f"cannot {operation} in phase {self.phase.value} (requires {phase.value})"
            )

    def _genesis_height_nodes(self) -> List[Node]:
        return [node for node in self._nodes if node.start_height == 0]

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------
    async def _add_node(
        self,
        version: str,
        start_height: int,
        self_delegation: int,
        upgrade_height: int,
        resources: Optional[Resources],
    ) -> Node:
        identity = NodeIdentity(
            signing_key=self.keygen.generate(KeyRole.CONSENSUS),
            network_key=self.keygen.generate(KeyRole.NETWORK),
            account_key=self.keygen.generate(KeyRole.ACCOUNT),
        )
        node = await Node.create(
            self.backend,
            f"val{len(self._nodes)}",
            version,
            start_height,
            self_delegation,
            identity,
            upgrade_height=upgrade_height,
            resources=resources,
            image=self.node_image,
            env=self.node_env,
            rpc_client_factory=self.rpc_client_factory,
            staging_root=self.staging_root,
        )
        self._nodes.append(node)
        return node

    async def create_genesis_node(
        self,
        version: str,
        self_delegation: int,
        upgrade_height: int = 0,
        resources: Optional[Resources] = None,
    ) -> Node:
        self._require_phase(NetworkPhase.NEW, "create genesis node")
        if self_delegation < 0:
            raise ConfigurationError("self delegation must be non-negative")
        return await self._add_node(version, 0, self_delegation, upgrade_height, resources)

    async def create_genesis_nodes(
        self,
        count: int,
        version: str,
        self_delegation: int,
        upgrade_height: int = 0,
        resources: Optional[Resources] = None,
    ) -> List[Node]:
        created = []
        for _ in range(count):
            created.append(
                await self.create_genesis_node(version, self_delegation, upgrade_height, resources)
            )
        return created

    async def create_node(
        self,
        version: str,
        start_height: int,
        upgrade_height: int = 0,
        resources: Optional[Resources] = None,
    ) -> Node:
        """Full node joining after genesis; never a validator."""
        self._require_phase(NetworkPhase.NEW, "create node")
        if start_height < 0:
            raise ConfigurationError("start height must be non-negative")
        return await self._add_node(version, start_height, 0, upgrade_height, resources)

    # ------------------------------------------------------------------
    # Accounts and tx clients
    # ------------------------------------------------------------------
    def _register_account(self, name: str, tokens: int, keyring: InMemoryKeyring) -> GenesisAccount:
        self._require_phase(NetworkPhase.NEW, "add genesis account")
        if any(account.name == name for account in self._genesis_accounts):
            raise ConfigurationError(f"genesis account {name!r} already exists")
        key = self.keygen.generate(KeyRole.GENESIS_ACCOUNT)
        try:
            account = GenesisAccount.from_keypair(name, key, tokens)
        except ValueError as exc:
            raise ConfigurationError(f"account {name}: {exc}") from exc
        keyring.add(name, key)
        self._genesis_accounts.append(account)
        logger.info({"testnet": {"genesis_account": name, "address": account.address, "tokens": tokens}})
        return account

    def create_account(self, name: str, tokens: int) -> InMemoryKeyring:
        keyring = InMemoryKeyring()
        self._register_account(name, tokens, keyring)
        return keyring

    def create_and_add_account_to_genesis(
        self, name: str, tokens: int, keyring_dir: str
    ) -> DirectoryKeyring:
        keyring = DirectoryKeyring(keyring_dir)
        self._register_account(name, tokens, keyring)
        return keyring

    def create_tx_client(
        self,
        name: str,
        version: str,
        sequences: int,
        blob_range: str,
        resources: Optional[Resources] = None,
        *,
        blobs_per_sequence: int = 1,
        poll_time: int = 3,
        tokens: int = DEFAULT_TX_CLIENT_TOKENS,
        keyring_dir: Optional[str] = None,
    ) -> TxClient:
        self._require_phase(NetworkPhase.NEW, "create tx client")
        keyring_dir = keyring_dir or tempfile.mkdtemp(prefix=f"benchnet-{name}-", dir=self.staging_root)
        keyring = self.create_and_add_account_to_genesis(name, tokens, keyring_dir)
        config = TxClientConfig(
            version=version,
            seed=self.seed,
            sequences=sequences,
            blob_range=blob_range,
            blobs_per_sequence=blobs_per_sequence,
            poll_time=poll_time,
        )
        if resources is not None:
            config.resources = resources
        client = TxClient(name, config, keyring)
        self._tx_clients.append(client)
        logger.info({"testnet": {"tx_client": name, "keyring": keyring_dir}})
        return client

    def create_tx_clients(
        self,
        count: int,
        version: str,
        sequences: int,
        blob_range: str,
        resources: Optional[Resources] = None,
        **kwargs: Any,
    ) -> List[TxClient]:
        offset = len(self._tx_clients)
        return [
            self.create_tx_client(f"txsim{offset + i}", version, sequences, blob_range, resources, **kwargs)
            for i in range(count)
        ]

    # ------------------------------------------------------------------
    # Setup and start
    # ------------------------------------------------------------------
    async def setup(self, **runtime_overrides: Any) -> GenesisDocument:
        self._require_phase(NetworkPhase.NEW, "set up network")
        try:
            runtime = self.runtime.with_overrides(**runtime_overrides)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid runtime options: {exc}") from exc

        builder = GenesisBuilder(self.chain_id, self.genesis_time, self.consensus_params)
        genesis = builder.build(self._genesis_height_nodes(), self._genesis_accounts, self.genesis_modifiers)
        logger.info(
            {"testnet": {"name": self.name, "genesis_validators": genesis.validator_names(), "accounts": len(self._genesis_accounts)}}
        )

        peers_by_node: Dict[str, List[str]] = {
            node.name: [peer.address_p2p(with_id=True) for peer in self._nodes if peer.name != node.name]
            for node in self._nodes
        }
        for node in self._nodes:
            await node.init(genesis, peers_by_node[node.name], runtime)

        self._genesis = genesis
        self.runtime = runtime
        self.phase = NetworkPhase.SETUP
        log_event({"testnet_setup": self.name, "nodes": len(self._nodes)})
        return genesis

    async def start(self) -> None:
        self._require_phase(NetworkPhase.SETUP, "start network")
        genesis_nodes = self._genesis_height_nodes()
        for node in genesis_nodes:
            await node.start()
        for node in genesis_nodes:
            await self.wait_for_liveness(node)
        self.phase = NetworkPhase.STARTED
        log_event({"testnet_started": self.name, "nodes": [n.name for n in genesis_nodes]})

    async def wait_for_liveness(self, node: Node) -> NodeStatus:
        client = await node.client()

        async def probe() -> Optional[NodeStatus]:
            status = await client.status()
            return status if status.latest_block_height > 0 else None

        try:
            outcome = await poll_until(
                probe,
                attempts=self.poll.liveness_attempts,
                interval=self.poll.liveness_interval,
                retry_on=(RPCError,),
                label="liveness",
            )
        except PollExhausted as exc:
            raise LivenessTimeoutError(node.name, exc.attempts) from exc.last_error
        logger.info(
            {"testnet": {"node_live": node.name, "height": outcome.value.latest_block_height, "polls": outcome.attempts}}
        )
        return outcome.value

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------
    def rpc_endpoints(self) -> List[str]:
        return [node.address_rpc() for node in self._nodes]

    def grpc_endpoints(self) -> List[str]:
        return [node.address_grpc() for node in self._nodes]

    async def remote_rpc_endpoints(self) -> List[str]:
        return [await node.remote_address_rpc() for node in self._nodes]

    async def remote_grpc_endpoints(self) -> List[str]:
        return [await node.remote_address_grpc() for node in self._nodes]

    # ------------------------------------------------------------------
    # Tx clients
    # ------------------------------------------------------------------
    async def start_tx_clients(self) -> None:
        self._require_phase(NetworkPhase.STARTED, "start tx clients")
        if not self._tx_clients:
            return
        # in-network addresses; tx clients run beside the nodes
        endpoints = [node.address_grpc() for node in self._genesis_height_nodes()]
        if not endpoints:
            raise OrchestrationError("no gRPC endpoints available for tx clients")
        for i, client in enumerate(self._tx_clients):
            if not client.deployed:
                await client.deploy(self.backend, endpoints[i % len(endpoints)])
            await client.start()

    async def stop_tx_clients(self) -> TeardownReport:
        report = TeardownReport()
        for client in self._tx_clients:
            if not client.started:
                continue
            report.attempted.append(client.name)
            try:
                await client.stop()
            except Exception as exc:
                report.record(client.name, "stop", exc, logger)
        return report

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    async def _teardown(
        self,
        name: str,
        is_started: Callable[[], Any],
        stop: Callable[[], Any],
        destroy: Callable[[], Any],
    ) -> TeardownReport:
        report = TeardownReport(attempted=[name])
        try:
            started = await is_started()
        except Exception as exc:
            report.record(name, "inspect", exc, logger)
            started = False
        if started:
            try:
                await stop()
            except Exception as exc:
                report.record(name, "stop", exc, logger)
        try:
            await destroy()
        except Exception as exc:
            report.record(name, "destroy", exc, logger)
        return report

    async def cleanup(self) -> TeardownReport:
        """Stop and destroy everything. Never raises for resource failures; idempotent."""
        if self._cleanup_report is not None:
            return self._cleanup_report

        logger.info({"testnet": {"name": self.name, "cleanup": "started"}})
        sweeps = [self._teardown(n.name, n.is_started, n.stop, n.destroy) for n in self._nodes]
        sweeps.extend(
            self._teardown(c.name, c.is_started, c.stop, c.destroy)
            for c in self._tx_clients
            if c.deployed
        )
        report = TeardownReport()
        for partial in await asyncio.gather(*sweeps):
            report.merge(partial)

        try:
            await self.backend.close()
        except Exception as exc:
            report.record(self.identifier, "close backend", exc, logger)

        self._cleanup_report = report
        self.phase = NetworkPhase.CLEANED
        logger.info(
            {"testnet": {"name": self.name, "cleanup": "finished", "failed": report.failed_resources()}}
        )
        log_event({"testnet_cleaned": self.name, "failures": len(report.failures)})
        return report

    async def __aenter__(self) -> "Testnet":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()


__all__ = ["DEFAULT_TX_CLIENT_TOKENS", "Testnet"]
