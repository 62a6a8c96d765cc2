"""Kubernetes cluster objects tied to provisioned machines, reached through kubectl."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from benchnet.shared.cli import CommandResult, run_command
from benchnet.shared.errors import ClusterError, ClusterResourceNotFound

logger = logging.getLogger(__name__)

METALLB_NAMESPACE = "metallb-system"

_NOT_FOUND_MARKERS = (
    "NotFound",
    "not found",
    "doesn't have a resource type",
)


@dataclass(frozen=True)
class CustomResource:
    group: str
    version: str
    plural: str
    kind: str

    @property
    def qualified(self) -> str:
        return f"{self.plural}.{self.group}"

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


IP_ADDRESS_POOL = CustomResource("metallb.io", "v1beta1", "ipaddresspools", "IPAddressPool")
L2_ADVERTISEMENT = CustomResource("metallb.io", "v1beta1", "l2advertisements", "L2Advertisement")


def format_selector(selector: Mapping[str, str]) -> str:
    return ",".join(f"{key}={value}" for key, value in sorted(selector.items()))


class ClusterBackend(ABC):
    @abstractmethod
    async def list_nodes(self, selector: Mapping[str, str]) -> List[str]: ...

    @abstractmethod
    async def delete_node(self, name: str) -> None: ...

    @abstractmethod
    async def custom_resource_definition_exists(self, resource: CustomResource) -> bool: ...

    @abstractmethod
    async def create_custom_resource(
        self, resource: CustomResource, namespace: str, obj: Dict[str, Any]
    ) -> None: ...

    @abstractmethod
    async def delete_custom_resource(
        self, resource: CustomResource, namespace: str, name: str
    ) -> None:
        """Delete one object. Raises ``ClusterResourceNotFound`` if it, or its CRD, is absent."""


class KubectlCluster(ClusterBackend):
    def __init__(
        self,
        *,
        context: Optional[str] = None,
        kubeconfig: Optional[str] = None,
        timeout: float = 60,
    ) -> None:
        self.context = context
        self.kubeconfig = kubeconfig
        self.timeout = timeout

    def _base(self) -> List[str]:
        args = ["kubectl"]
        if self.kubeconfig:
            args.extend(["--kubeconfig", self.kubeconfig])
        if self.context:
            args.extend(["--context", self.context])
        return args

    async def _kubectl(self, *args: str, input_text: Optional[str] = None) -> CommandResult:
        return await run_command([*self._base(), *args], input_text=input_text, timeout=self.timeout)

    async def list_nodes(self, selector: Mapping[str, str]) -> List[str]:
        result = await self._kubectl("get", "nodes", "-l", format_selector(selector), "-o", "json")
        if not result.ok:
            raise ClusterError(f"failed to list Kubernetes nodes: {result.error_text()}")
        try:
            items = json.loads(result.stdout or "{}").get("items", [])
        except json.JSONDecodeError as exc:
            raise ClusterError(f"unparseable node list: {exc}") from exc
        return [item["metadata"]["name"] for item in items]

    async def delete_node(self, name: str) -> None:
        result = await self._kubectl("delete", "node", name)
        if not result.ok:
            if _is_not_found(result):
                raise ClusterResourceNotFound(f"Kubernetes node {name} not found")
            raise ClusterError(f"failed to delete Kubernetes node {name}: {result.error_text()}")

    async def custom_resource_definition_exists(self, resource: CustomResource) -> bool:
        result = await self._kubectl("get", "crd", resource.qualified, "-o", "name")
        if result.ok:
            return True
        if _is_not_found(result):
            return False
        raise ClusterError(
            f"error checking {resource.kind} CRD existence: {result.error_text()}"
        )

    async def create_custom_resource(
        self, resource: CustomResource, namespace: str, obj: Dict[str, Any]
    ) -> None:
        manifest = {"apiVersion": resource.api_version, "kind": resource.kind, **obj}
        manifest.setdefault("metadata", {})["namespace"] = namespace
        result = await self._kubectl("apply", "-f", "-", input_text=json.dumps(manifest))
        if not result.ok:
            raise ClusterError(f"failed to create {resource.kind}: {result.error_text()}")

    async def delete_custom_resource(
        self, resource: CustomResource, namespace: str, name: str
    ) -> None:
        result = await self._kubectl("delete", resource.qualified, name, "-n", namespace)
        if not result.ok:
            if _is_not_found(result):
                raise ClusterResourceNotFound(f"{resource.kind} {namespace}/{name} not found")
            raise ClusterError(f"failed to delete {resource.kind} {name}: {result.error_text()}")


def _is_not_found(result: CommandResult) -> bool:
    text = result.error_text()
    return any(marker in text for marker in _NOT_FOUND_MARKERS)


__all__ = [
    "ClusterBackend",
    "CustomResource",
    "IP_ADDRESS_POOL",
    "KubectlCluster",
    "L2_ADVERTISEMENT",
    "METALLB_NAMESPACE",
    "format_selector",
]
