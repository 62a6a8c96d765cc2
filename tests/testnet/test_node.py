"""Tests for testnet/node.py - node lifecycle, config files and addresses."""

from __future__ import annotations

import json
import os
import stat
from datetime import datetime, timezone

import httpx
import pytest
import toml

from benchnet.shared.enums import KeyRole, NodeState
from benchnet.shared.errors import DeploymentError, OrchestrationError
from benchnet.testnet.genesis import GenesisBuilder
from benchnet.testnet.keygen import KeyGenerator
from benchnet.testnet.node import HOME_DIR, Node, NodeIdentity, node_args
from benchnet.testnet.runtime import NodeRuntimeConfig


@pytest.fixture
def keygen():
    return KeyGenerator(7)


@pytest.fixture
def make_identity(keygen):
    def _make() -> NodeIdentity:
        return NodeIdentity(
            signing_key=keygen.generate(KeyRole.CONSENSUS),
            network_key=keygen.generate(KeyRole.NETWORK),
            account_key=keygen.generate(KeyRole.ACCOUNT),
        )

    return _make


@pytest.fixture
def make_node(backend, rpc_factory, make_identity, tmp_path):
    async def _make(name: str = "val0", **kwargs) -> Node:
        kwargs.setdefault("rpc_client_factory", rpc_factory)
        kwargs.setdefault("staging_root", str(tmp_path))
        return await Node.create(backend, name, "v1.0.0", 0, 10_000_000, make_identity(), **kwargs)

    return _make


@pytest.fixture
def genesis_for():
    def _build(*nodes):
        builder = GenesisBuilder("node-test", datetime(2024, 1, 1, tzinfo=timezone.utc))
        return builder.build(list(nodes), [])

    return _build


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_instance_with_image_and_ports(self, backend, make_node):
        node = await make_node(image="registry/app", env={"A": "1"})
        spec = backend.specs["val0"]
        assert spec.image == "registry/app:v1.0.0"
        assert spec.env == {"A": "1"}
        assert set(spec.ports) == {"p2p", "rpc", "grpc", "prometheus", "tracing"}
        assert node.state is NodeState.CREATED

    def test_upgrade_height_flag(self):
        assert not any("upgrade" in a for a in node_args(0))
        assert "--v2-upgrade-height=40" in node_args(40)

    @pytest.mark.asyncio
    async def test_roles(self, make_node, backend, make_identity):
        node = await make_node()
        assert node.is_genesis and node.is_validator
        late = await Node.create(backend, "val1", "v1", 5, 0, make_identity())
        assert not late.is_genesis and not late.is_validator


class TestInit:
    @pytest.mark.asyncio
    async def test_writes_home_directory(self, backend, make_node, genesis_for):
        node = await make_node()
        genesis = genesis_for(node)
        await node.init(genesis, ["abc@val1:26656"])

        assert ("add_file", "val0") in backend.calls
        files = backend.files["val0"]
        assert files["config/genesis.json"] == genesis.to_json()
        config = toml.loads(files["config/config.toml"].decode())
        assert config["p2p"]["persistent_peers"] == "abc@val1:26656"
        key = json.loads(files["config/priv_validator_key.json"])
        assert key["address"] == node.signing_key.address
        assert node.state is NodeState.INITIALIZED

    @pytest.mark.asyncio
    async def test_key_files_private(self, make_node, genesis_for, tmp_path):
        node = await make_node()
        await node.init(genesis_for(node), [])
        staged = next(p for p in tmp_path.iterdir() if p.name.startswith("benchnet-val0-"))
        mode = stat.S_IMODE(os.stat(staged / "config" / "node_key.json").st_mode)
        assert mode == 0o600

    @pytest.mark.asyncio
    async def test_rejects_self_peer(self, backend, make_node, genesis_for):
        node = await make_node()
        with pytest.raises(OrchestrationError, match="itself"):
            await node.init(genesis_for(node), [node.address_p2p()])
        assert "add_file" not in [op for op, _ in backend.calls]

    @pytest.mark.asyncio
    async def test_only_once(self, make_node, genesis_for):
        node = await make_node()
        await node.init(genesis_for(node), [])
        with pytest.raises(OrchestrationError):
            await node.init(genesis_for(node), [])

    @pytest.mark.asyncio
    async def test_runtime_applied(self, make_node, genesis_for):
        node = await make_node()
        runtime = NodeRuntimeConfig(per_peer_bandwidth=2048)
        files = node.render_files(genesis_for(node), [], runtime)
        assert set(files) == {
            "config/config.toml",
            "config/app.toml",
            "config/genesis.json",
            "config/priv_validator_key.json",
            "config/node_key.json",
            "data/priv_validator_state.json",
        }
        assert toml.loads(files["config/config.toml"].decode())["p2p"]["send_rate"] == 2048


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_stop_destroy(self, backend, make_node):
        node = await make_node()
        await node.start()
        assert await node.is_started()
        await node.stop()
        assert not await node.is_started()
        await node.destroy()
        assert node.state is NodeState.DESTROYED
        assert backend.names("destroy") == ["val0"]

    @pytest.mark.asyncio
    async def test_destroy_closes_client(self, make_node, rpc_factory):
        node = await make_node()
        await node.client()
        await node.destroy()
        assert rpc_factory.clients["val0"].closed

    @pytest.mark.asyncio
    async def test_failed_destroy_still_closes_client(self, backend, make_node, rpc_factory):
        node = await make_node()
        await node.client()
        backend.fail("val0", "destroy")
        with pytest.raises(DeploymentError):
            await node.destroy()
        assert rpc_factory.clients["val0"].closed
        assert node.state is not NodeState.DESTROYED


class TestAddresses:
    @pytest.mark.asyncio
    async def test_internal_addresses(self, make_node):
        node = await make_node()
        assert node.address_p2p() == f"{node.network_key.node_id}@val0:26656"
        assert node.address_p2p(with_id=False) == "val0:26656"
        assert node.address_rpc() == "val0:26657"
        assert node.address_grpc() == "val0:9090"

    @pytest.mark.asyncio
    async def test_remote_addresses(self, make_node):
        node = await make_node()
        assert await node.remote_address_rpc() == "val0.remote:26657"
        assert await node.remote_address_grpc() == "val0.remote:9090"
        assert await node.remote_address_tracing() == "val0.remote:26661"

    @pytest.mark.asyncio
    async def test_client_cached(self, make_node, rpc_factory):
        node = await make_node()
        first = await node.client()
        assert await node.client() is first
        assert first.address == "val0.remote:26657"


class TestPullTraces:
    @pytest.mark.asyncio
    async def test_streams_table_to_file(self, make_node, tmp_path, monkeypatch):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url)
            return httpx.Response(200, content=b'{"a":1}\n{"a":2}\n')

        real_client = httpx.AsyncClient
        monkeypatch.setattr(
            "benchnet.testnet.node.httpx.AsyncClient",
            lambda **kw: real_client(transport=httpx.MockTransport(handler), **kw),
        )
        node = await make_node()
        path = await node.pull_traces("mempool_tx", str(tmp_path / "traces"))

        assert path == tmp_path / "traces" / "val0" / "mempool_tx.jsonl"
        assert path.read_bytes() == b'{"a":1}\n{"a":2}\n'
        assert seen[0].params["table"] == "mempool_tx"
        assert seen[0].host == "val0.remote"

    @pytest.mark.asyncio
    async def test_http_error(self, make_node, tmp_path, monkeypatch):
        real_client = httpx.AsyncClient
        transport = httpx.MockTransport(lambda request: httpx.Response(404))
        monkeypatch.setattr(
            "benchnet.testnet.node.httpx.AsyncClient",
            lambda **kw: real_client(transport=transport, **kw),
        )
        node = await make_node()
        with pytest.raises(DeploymentError, match="pull traces"):
            await node.pull_traces("mempool_tx", str(tmp_path))


def test_home_dir_constant():
    assert HOME_DIR.endswith(".celestia-app")
