"""Deployment backend contract.

A backend owns the execution substrate for nodes and tx clients. The
orchestrator only talks to this interface and never branches on the
concrete backend type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from benchnet.config.resources import DEFAULT_RESOURCES, Resources
from benchnet.shared.enums import InstanceState


@dataclass
class InstanceSpec:
    """Everything a backend needs to create one instance."""

    name: str
    image: str
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    # port name -> container port
    ports: Dict[str, int] = field(default_factory=dict)
    resources: Resources = field(default_factory=lambda: DEFAULT_RESOURCES.model_copy())
    user: Optional[str] = None


@dataclass
class InstanceHandle:
    """Opaque reference returned by ``DeploymentBackend.create``."""

    name: str
    spec: InstanceSpec
    backend_id: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


class DeploymentBackend(ABC):
    @abstractmethod
    async def create(self, spec: InstanceSpec) -> InstanceHandle:
        """Allocate the instance without starting it."""

    @abstractmethod
    async def add_file(self, handle: InstanceHandle, src: str, dest: str) -> None:
        """Copy a local file or directory into the instance."""

    @abstractmethod
    async def start(self, handle: InstanceHandle) -> None: ...

    @abstractmethod
    async def stop(self, handle: InstanceHandle) -> None: ...

    @abstractmethod
    async def destroy(self, handle: InstanceHandle) -> None: ...

    @abstractmethod
    async def is_in_state(self, handle: InstanceHandle, state: InstanceState) -> bool: ...

    @abstractmethod
    async def resolve_address(self, handle: InstanceHandle, port: str) -> str:
        """Return a ``host:port`` reachable from the orchestrator.

        Raises ``AddressUnavailableError`` when no such address exists yet.
        """

    @abstractmethod
    def internal_host(self, handle: InstanceHandle) -> str:
        """Hostname other instances of the same network use to reach this one."""

    async def close(self) -> None:
        """Release backend-wide resources (networks, clients)."""
        return None


__all__ = ["DeploymentBackend", "InstanceHandle", "InstanceSpec"]
