"""Shared fakes for the orchestration tests.

The fakes stand in for the external collaborators (container runtime, node
status endpoint, host provisioner, cluster API) and record every call so tests
can assert on ordering and counts.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from benchnet.deploy.base import DeploymentBackend, InstanceHandle, InstanceSpec
from benchnet.machine.cluster import ClusterBackend, CustomResource
from benchnet.machine.provisioner import HostSpec, ProvisionedHost, Provisioner
from benchnet.rpc.client import Block, NodeStatus
from benchnet.shared.enums import InstanceState
from benchnet.shared.errors import (
    AddressUnavailableError,
    ClusterResourceNotFound,
    DeploymentError,
    ProvisioningError,
    RPCError,
)


class FakeBackend(DeploymentBackend):
    def __init__(self) -> None:
        self.calls: List[Tuple[str, str]] = []
        self.states: Dict[str, InstanceState] = {}
        self.specs: Dict[str, InstanceSpec] = {}
        self.files: Dict[str, Dict[str, bytes]] = {}
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.unresolvable: set = set()
        self.closed = False

    def fail(self, name: str, operation: str, exc: Optional[Exception] = None) -> None:
        self.failures[(name, operation)] = exc or DeploymentError(name, operation, "injected")

    def _record(self, name: str, operation: str) -> None:
        self.calls.append((operation, name))
        failure = self.failures.get((name, operation))
        if failure is not None:
            raise failure

    def names(self, operation: str) -> List[str]:
        return [name for op, name in self.calls if op == operation]

    async def create(self, spec: InstanceSpec) -> InstanceHandle:
        self._record(spec.name, "create")
        self.specs[spec.name] = spec
        self.states[spec.name] = InstanceState.CREATED
        return InstanceHandle(name=spec.name, spec=spec, backend_id=f"id-{spec.name}")

    async def add_file(self, handle: InstanceHandle, src: str, dest: str) -> None:
        self._record(handle.name, "add_file")
        root = Path(src[:-2]) if src.endswith("/.") else Path(src)
        snapshot = self.files.setdefault(handle.name, {})
        for path in root.rglob("*"):
            if path.is_file():
                snapshot[str(path.relative_to(root))] = path.read_bytes()

    async def start(self, handle: InstanceHandle) -> None:
        self._record(handle.name, "start")
        self.states[handle.name] = InstanceState.STARTED

    async def stop(self, handle: InstanceHandle) -> None:
        self._record(handle.name, "stop")
        self.states[handle.name] = InstanceState.STOPPED

    async def destroy(self, handle: InstanceHandle) -> None:
        self._record(handle.name, "destroy")
        self.states[handle.name] = InstanceState.DESTROYED

    async def is_in_state(self, handle: InstanceHandle, state: InstanceState) -> bool:
        return self.states.get(handle.name) is state

    async def resolve_address(self, handle: InstanceHandle, port: str) -> str:
        if handle.name in self.unresolvable:
            raise AddressUnavailableError(handle.name, f"resolve {port}", "not exposed")
        return f"{handle.name}.remote:{handle.spec.ports[port]}"

    def internal_host(self, handle: InstanceHandle) -> str:
        return handle.name

    async def close(self) -> None:
        self.closed = True


class FakeRPCClient:
    """Status client returning a scripted sequence of heights (or exceptions).

    ``blocks`` maps height to a ``Block`` or an exception to raise.
    """

    def __init__(
        self,
        address: str,
        heights: Sequence[object] = (1,),
        blocks: Optional[Dict[int, object]] = None,
    ) -> None:
        self.address = address
        self.heights = list(heights)
        self.blocks = dict(blocks or {})
        self.status_calls = 0
        self.block_calls: List[int] = []
        self.closed = False

    async def status(self) -> NodeStatus:
        index = min(self.status_calls, len(self.heights) - 1)
        self.status_calls += 1
        value = self.heights[index]
        if isinstance(value, Exception):
            raise value
        return NodeStatus(latest_block_height=value, earliest_block_height=1, catching_up=False)

    async def block(self, height: int) -> Block:
        self.block_calls.append(height)
        value = self.blocks.get(height)
        if value is None:
            raise RPCError(f"height {height} is not available")
        if isinstance(value, Exception):
            raise value
        return value

    async def close(self) -> None:
        self.closed = True


class RPCClientFactory:
    """Hands out one ``FakeRPCClient`` per node, keyed by node name."""

    def __init__(self) -> None:
        self.scripts: Dict[str, Sequence[object]] = {}
        self.clients: Dict[str, FakeRPCClient] = {}
        self.blocks: Dict[int, object] = {}

    def script(self, node: str, heights: Sequence[object]) -> None:
        self.scripts[node] = heights

    def __call__(self, address: str) -> FakeRPCClient:
        node = address.split(".", 1)[0]
        client = FakeRPCClient(address, self.scripts.get(node, (1,)), self.blocks)
        self.clients[node] = client
        return client


class FakeProvisioner(Provisioner):
    def __init__(self, statuses: Sequence[object] = ("active",), ip: str = "203.0.113.10") -> None:
        self.statuses = list(statuses)
        self.ip = ip
        self.provisioned: List[HostSpec] = []
        self.status_calls = 0
        self.deleted: List[str] = []
        self.delete_error: Optional[Exception] = None
        self.closed = False

    async def provision(self, spec: HostSpec) -> ProvisionedHost:
        self.provisioned.append(spec)
        return ProvisionedHost(id=f"host-{len(self.provisioned)}", status="new")

    async def status(self, host_id: str) -> ProvisionedHost:
        index = min(self.status_calls, len(self.statuses) - 1)
        self.status_calls += 1
        value = self.statuses[index]
        if isinstance(value, Exception):
            raise value
        ip = self.ip if value == "active" else ""
        return ProvisionedHost(id=host_id, status=value, ip=ip)

    async def delete(self, host_id: str) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(host_id)

    async def close(self) -> None:
        self.closed = True


class FakeCluster(ClusterBackend):
    def __init__(self, crds: Sequence[str] = ("ipaddresspools.metallb.io", "l2advertisements.metallb.io")) -> None:
        self.crds = set(crds)
        self.nodes: Dict[str, Dict[str, str]] = {}
        self.objects: Dict[Tuple[str, str, str], dict] = {}
        self.calls: List[Tuple[str, str]] = []

    async def list_nodes(self, selector):
        self.calls.append(("list_nodes", ",".join(f"{k}={v}" for k, v in selector.items())))
        return [name for name, labels in self.nodes.items() if all(labels.get(k) == v for k, v in selector.items())]

    async def delete_node(self, name: str) -> None:
        self.calls.append(("delete_node", name))
        if self.nodes.pop(name, None) is None:
            raise ClusterResourceNotFound(name)

    async def custom_resource_definition_exists(self, resource: CustomResource) -> bool:
        return resource.qualified in self.crds

    async def create_custom_resource(self, resource: CustomResource, namespace: str, obj: dict) -> None:
        self.calls.append(("create", resource.kind))
        self.objects[(resource.kind, namespace, obj["metadata"]["name"])] = obj

    async def delete_custom_resource(self, resource: CustomResource, namespace: str, name: str) -> None:
        self.calls.append(("delete", resource.kind))
        if resource.qualified not in self.crds or self.objects.pop((resource.kind, namespace, name), None) is None:
            raise ClusterResourceNotFound(f"{resource.kind} {name}")


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def rpc_factory() -> RPCClientFactory:
    return RPCClientFactory()


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def make_provisioner():
    return FakeProvisioner


@pytest.fixture
def make_rpc_client():
    return FakeRPCClient


@pytest.fixture
def rpc_error():
    return RPCError("connection refused")


@pytest.fixture
def provisioning_error():
    return ProvisioningError("status unavailable")


@pytest.fixture
def make_cluster():
    return FakeCluster
