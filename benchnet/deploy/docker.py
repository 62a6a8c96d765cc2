"""Container deployment backend driven through the Docker CLI."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import List, Optional, Sequence

from benchnet.shared.cli import CommandResult, command_exists, run_command
from benchnet.shared.enums import InstanceState
from benchnet.shared.errors import AddressUnavailableError, ConfigurationError, DeploymentError

from .base import DeploymentBackend, InstanceHandle, InstanceSpec

__all__ = ["DockerBackend"]

logger = logging.getLogger(__name__)

HOST_NETWORK = "host"

_STATUS_TO_STATE = {
    "created": InstanceState.CREATED,
    "running": InstanceState.STARTED,
    "restarting": InstanceState.STARTED,
    "paused": InstanceState.STARTED,
    "exited": InstanceState.STOPPED,
    "dead": InstanceState.STOPPED,
}

_MISSING_MARKERS = ("No such container", "No such object")


def _is_missing(result: CommandResult) -> bool:
    text = result.error_text()
    return any(marker in text for marker in _MISSING_MARKERS)


class DockerBackend(DeploymentBackend):
    """Runs each instance as one container on a per-testnet Docker network.

    With ``network="host"`` (remote machines) containers share the host's
    network namespace and ports are reached on ``advertise_host`` directly.
    """

    def __init__(
        self,
        scope: str,
        *,
        network: Optional[str] = None,
        docker_host: Optional[str] = None,
        advertise_host: str = "127.0.0.1",
        pull: bool = False,
        stop_timeout: int = 10,
        command_timeout: float = 120,
    ) -> None:
        self.scope = scope
        self.network = network or f"benchnet-{scope}"
        self.docker_host = docker_host
        self.advertise_host = advertise_host
        self.pull = pull
        self.stop_timeout = stop_timeout
        self.command_timeout = command_timeout
        self._network_ready = self.network == HOST_NETWORK
        self._network_created = False
        self._network_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # CLI plumbing
    # ------------------------------------------------------------------
    def _base(self) -> List[str]:
        if self.docker_host:
            return ["docker", "-H", self.docker_host]
        return ["docker"]

    async def _docker(self, *args: str, timeout: Optional[float] = None) -> CommandResult:
        return await run_command(
            [*self._base(), *args],
            timeout=timeout if timeout is not None else self.command_timeout,
        )

    async def _checked(self, resource: str, operation: str, *args: str) -> CommandResult:
        result = await self._docker(*args)
        if not result.ok:
            raise DeploymentError(resource, operation, result.error_text())
        return result

    async def _ensure_network(self) -> None:
        if self._network_ready:
            return
        async with self._network_lock:
            if self._network_ready:
                return
            if not command_exists("docker"):
                raise ConfigurationError("docker CLI not found on PATH")
            inspect = await self._docker("network", "inspect", self.network)
            if not inspect.ok:
                await self._checked(
                    self.network,
                    "create network",
                    "network",
                    "create",
                    "--label",
                    f"benchnet.scope={self.scope}",
                    self.network,
                )
                self._network_created = True
                logger.info({"docker": {"network_created": self.network}})
            self._network_ready = True

    async def _pull_image(self, image: str) -> None:
        logger.info({"docker": {"action": "pull", "image": image}})
        result = await self._docker("pull", image, timeout=600)
        if result.ok:
            logger.info({"docker": {"pulled": image}})
        else:
            logger.warning({"docker": {"pull_failed": result.error_text(200)}})

    # ------------------------------------------------------------------
    # DeploymentBackend
    # ------------------------------------------------------------------
    def create_args(self, spec: InstanceSpec) -> List[str]:
        args = [
            "create",
            "--name",
            spec.name,
            "--label",
            f"benchnet.scope={self.scope}",
            "--network",
            self.network,
            "--memory",
            str(spec.resources.memory_limit_bytes),
            "--memory-reservation",
            str(spec.resources.memory_request_bytes),
            "--cpus",
            _format_cpus(spec.resources.cpu_cores),
        ]
        if self.network != HOST_NETWORK:
            args.extend(["--hostname", spec.name])
            for port in spec.ports.values():
                args.extend(["-p", f"{port}/tcp"])
        for key, value in sorted(spec.env.items()):
            args.extend(["-e", f"{key}={value}"])
        if spec.user:
            args.extend(["--user", spec.user])
        args.append(spec.image)
        args.extend(spec.args)
        return args

    async def create(self, spec: InstanceSpec) -> InstanceHandle:
        await self._ensure_network()
        if self.pull:
            await self._pull_image(spec.image)
        result = await self._checked(spec.name, "create", *self.create_args(spec))
        container_id = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else spec.name
        logger.info({"docker": {"created": spec.name, "image": spec.image, "id": container_id[:12]}})
        return InstanceHandle(name=spec.name, spec=spec, backend_id=container_id)

    async def add_file(self, handle: InstanceHandle, src: str, dest: str) -> None:
        await self._checked(handle.name, "copy files", "cp", src, f"{handle.name}:{dest}")

    async def start(self, handle: InstanceHandle) -> None:
        await self._checked(handle.name, "start", "start", handle.name)
        logger.info({"docker": {"started": handle.name}})

    async def stop(self, handle: InstanceHandle) -> None:
        await self._checked(handle.name, "stop", "stop", "-t", str(self.stop_timeout), handle.name)
        logger.info({"docker": {"stopped": handle.name}})

    async def destroy(self, handle: InstanceHandle) -> None:
        result = await self._docker("rm", "-f", "-v", handle.name)
        if not result.ok and not _is_missing(result):
            raise DeploymentError(handle.name, "destroy", result.error_text())
        logger.info({"docker": {"destroyed": handle.name}})

    async def observed_state(self, handle: InstanceHandle) -> InstanceState:
        result = await self._docker("inspect", "-f", "{{.State.Status}}", handle.name)
        if not result.ok:
            if _is_missing(result):
                return InstanceState.DESTROYED
            raise DeploymentError(handle.name, "inspect", result.error_text())
        status = result.stdout.strip()
        return _STATUS_TO_STATE.get(status, InstanceState.STOPPED)

    async def is_in_state(self, handle: InstanceHandle, state: InstanceState) -> bool:
        return await self.observed_state(handle) is state

    async def resolve_address(self, handle: InstanceHandle, port: str) -> str:
        container_port = handle.spec.ports.get(port)
        if container_port is None:
            raise AddressUnavailableError(handle.name, f"resolve {port}", "port not exposed")
        if self.network == HOST_NETWORK:
            return f"{self.advertise_host}:{container_port}"
        result = await self._docker("port", handle.name, f"{container_port}/tcp")
        if not result.ok:
            raise AddressUnavailableError(handle.name, f"resolve {port}", result.error_text())
        host_port = _parse_published_port(result.stdout.splitlines())
        if host_port is None:
            raise AddressUnavailableError(
                handle.name, f"resolve {port}", "no published port (instance not started?)"
            )
        return f"{self.advertise_host}:{host_port}"

    def internal_host(self, handle: InstanceHandle) -> str:
        if self.network == HOST_NETWORK:
            return self.advertise_host
        return handle.name

    async def close(self) -> None:
        if not self._network_created:
            return
        result = await self._docker("network", "rm", self.network)
        if not result.ok:
            logger.warning({"docker": {"network_rm_failed": self.network, "error": result.error_text(200)}})
            return
        self._network_created = False
        self._network_ready = False
        logger.info({"docker": {"network_removed": self.network}})


def _format_cpus(cores: Decimal) -> str:
    return format(cores.normalize(), "f")


def _parse_published_port(lines: Sequence[str]) -> Optional[int]:
    for line in lines:
        line = line.strip()
        if not line or ":" not in line:
            continue
        try:
            return int(line.rsplit(":", 1)[1])
        except ValueError:
            continue
    return None
