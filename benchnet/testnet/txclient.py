"""Load-generating transaction client (txsim) instances."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from benchnet.config.resources import DEFAULT_RESOURCES, Resources
from benchnet.deploy.base import DeploymentBackend, InstanceHandle, InstanceSpec
from benchnet.shared.enums import InstanceState
from benchnet.shared.errors import OrchestrationError
from benchnet.shared.logging import log_event

from .accounts import DirectoryKeyring

logger = logging.getLogger(__name__)

TXSIM_IMAGE = "ghcr.io/celestiaorg/txsim"
TXSIM_ROOT = "/home/celestia"
TXSIM_USER = "10001:10001"


@dataclass
class TxClientConfig:
    version: str
    seed: int
    sequences: int
    blob_range: str = "200000-200000"
    blobs_per_sequence: int = 1
    poll_time: int = 3
    resources: Resources = field(default_factory=lambda: DEFAULT_RESOURCES.model_copy())
    image: str = TXSIM_IMAGE

    def args(self, grpc_endpoint: str) -> List[str]:
        return [
            f"--key-path={TXSIM_ROOT}",
            f"--grpc-endpoint={grpc_endpoint}",
            f"--poll-time={self.poll_time}s",
            f"--seed={self.seed}",
            f"--blob={self.sequences}",
            f"--blob-sizes={self.blob_range}",
            f"--blob-amounts={self.blobs_per_sequence}",
        ]


class TxClient:
    """Registered before setup so its account is in genesis; deployed when started."""

    def __init__(self, name: str, config: TxClientConfig, keyring: DirectoryKeyring) -> None:
        self.name = name
        self.config = config
        self.keyring = keyring
        self.handle: Optional[InstanceHandle] = None
        self.backend: Optional[DeploymentBackend] = None
        self.grpc_endpoint: Optional[str] = None
        self.started = False

    def spec(self, grpc_endpoint: str) -> InstanceSpec:
        return InstanceSpec(
            name=self.name,
            image=f"{self.config.image}:{self.config.version}",
            args=self.config.args(grpc_endpoint),
            resources=self.config.resources,
            user=TXSIM_USER,
        )

    async def deploy(self, backend: DeploymentBackend, grpc_endpoint: str) -> InstanceHandle:
        if self.handle is not None:
            raise OrchestrationError(f"tx client {self.name} is already deployed")
        self.backend = backend
        self.grpc_endpoint = grpc_endpoint
        self.handle = await backend.create(self.spec(grpc_endpoint))
        await backend.add_file(self.handle, f"{self.keyring.root}/.", TXSIM_ROOT)
        logger.info({"txsim": {"name": self.name, "grpc_endpoint": grpc_endpoint, "state": "created"}})
        return self.handle

    def _require(self) -> InstanceHandle:
        if self.handle is None or self.backend is None:
            raise OrchestrationError(f"tx client {self.name} is not deployed")
        return self.handle

    async def start(self) -> None:
        handle = self._require()
        await self.backend.start(handle)
        self.started = True
        log_event({"txsim_started": self.name, "grpc_endpoint": self.grpc_endpoint})

    async def stop(self) -> None:
        handle = self._require()
        await self.backend.stop(handle)
        self.started = False

    async def destroy(self) -> None:
        handle = self._require()
        await self.backend.destroy(handle)
        self.started = False

    async def is_started(self) -> bool:
        if self.handle is None or self.backend is None:
            return False
        return await self.backend.is_in_state(self.handle, InstanceState.STARTED)

    @property
    def deployed(self) -> bool:
        return self.handle is not None


__all__ = ["TXSIM_IMAGE", "TXSIM_ROOT", "TxClient", "TxClientConfig"]
