"""Deployment backend that gives every instance its own provisioned machine.

Each machine runs the instance as a container through the Docker CLI over
``ssh://root@<ip>`` with host networking, so the node ports are reachable on
the machine IP directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from benchnet.machine.cluster import ClusterBackend
from benchnet.machine.machine import Machine
from benchnet.machine.provisioner import Provisioner
from benchnet.shared.enums import InstanceState
from benchnet.shared.errors import DeploymentError, ProvisioningError

from .base import DeploymentBackend, InstanceHandle, InstanceSpec
from .docker import HOST_NETWORK, DockerBackend

logger = logging.getLogger(__name__)


@dataclass
class MachineSettings:
    region: str = "nyc3"
    size: str = "s-4vcpu-8gb"
    os_image: str = "ubuntu-22-04-x64"
    user_data: str = ""
    ssh_user: str = "root"
    creation_attempts: int = 250
    creation_interval: float = 2.0


class MachineBackend(DeploymentBackend):
    def __init__(
        self,
        scope: str,
        provisioner: Provisioner,
        cluster: ClusterBackend,
        settings: Optional[MachineSettings] = None,
        *,
        user_data_vars: Optional[Dict[str, str]] = None,
    ) -> None:
        self.scope = scope
        self.provisioner = provisioner
        self.cluster = cluster
        self.settings = settings or MachineSettings()
        self.user_data_vars = dict(user_data_vars or {})
        self._machines: Dict[str, Machine] = {}
        self._dockers: Dict[str, DockerBackend] = {}

    def machine(self, handle: InstanceHandle) -> Machine:
        try:
            return self._machines[handle.name]
        except KeyError:
            raise DeploymentError(handle.name, "lookup machine", "no machine for instance") from None

    def _docker(self, handle: InstanceHandle) -> DockerBackend:
        try:
            return self._dockers[handle.name]
        except KeyError:
            raise DeploymentError(handle.name, "lookup machine", "no machine for instance") from None

    async def create(self, spec: InstanceSpec) -> InstanceHandle:
        machine_name = f"{self.scope}-{spec.name}"
        variables = {"NAME": machine_name, **self.user_data_vars}
        try:
            machine = await Machine.provision(
                self.provisioner,
                self.cluster,
                machine_name,
                self.settings.region,
                self.settings.size,
                self.settings.os_image,
                user_data=self.settings.user_data,
                user_data_vars=variables,
            )
        except ProvisioningError as exc:
            raise DeploymentError(spec.name, "provision machine", str(exc)) from exc

        self._machines[spec.name] = machine
        try:
            inner = await self._prepare(spec, machine)
        except BaseException:
            # the host is billed from provisioning on; never leave it behind
            await self._release(spec.name, machine)
            raise
        return InstanceHandle(
            name=spec.name,
            spec=spec,
            backend_id=inner.backend_id,
            extra={"machine": machine.name, "ip": machine.ip},
        )

    async def _prepare(self, spec: InstanceSpec, machine: Machine) -> InstanceHandle:
        try:
            await machine.wait_for_creation(
                attempts=self.settings.creation_attempts,
                interval=self.settings.creation_interval,
            )
            await machine.setup()
        except ProvisioningError as exc:
            raise DeploymentError(spec.name, "provision machine", str(exc)) from exc

        docker = DockerBackend(
            self.scope,
            network=HOST_NETWORK,
            docker_host=f"ssh://{self.settings.ssh_user}@{machine.ip}",
            advertise_host=machine.ip,
            pull=True,
        )
        self._dockers[spec.name] = docker
        return await docker.create(spec)

    async def _release(self, name: str, machine: Machine) -> None:
        logger.warning({"machine_backend": {"instance": name, "machine": machine.name, "action": "release"}})
        self._dockers.pop(name, None)
        try:
            await machine.remove()
        except ProvisioningError as exc:
            raise DeploymentError(name, "remove machine", str(exc)) from exc
        self._machines.pop(name, None)

    async def add_file(self, handle: InstanceHandle, src: str, dest: str) -> None:
        await self._docker(handle).add_file(handle, src, dest)

    async def start(self, handle: InstanceHandle) -> None:
        await self._docker(handle).start(handle)

    async def stop(self, handle: InstanceHandle) -> None:
        await self._docker(handle).stop(handle)

    async def destroy(self, handle: InstanceHandle) -> None:
        """Remove the container, then the machine; the machine is removed even if the container is not."""
        machine = self.machine(handle)
        docker = self._dockers.pop(handle.name, None)
        try:
            if docker is not None:
                await docker.destroy(handle)
        finally:
            try:
                await machine.remove()
            except ProvisioningError as exc:
                raise DeploymentError(handle.name, "remove machine", str(exc)) from exc
            self._machines.pop(handle.name, None)

    async def is_in_state(self, handle: InstanceHandle, state: InstanceState) -> bool:
        docker = self._dockers.get(handle.name)
        if docker is None:
            return state is InstanceState.DESTROYED
        return await docker.is_in_state(handle, state)

    async def resolve_address(self, handle: InstanceHandle, port: str) -> str:
        return await self._docker(handle).resolve_address(handle, port)

    def internal_host(self, handle: InstanceHandle) -> str:
        return self.machine(handle).ip

    async def close(self) -> None:
        await self.provisioner.close()


__all__ = ["MachineBackend", "MachineSettings"]
