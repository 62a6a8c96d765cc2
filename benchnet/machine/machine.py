"""Remotely provisioned bare-metal hosts joined to a Kubernetes cluster."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

from benchnet.shared.enums import MachineState
from benchnet.shared.errors import (
    ClusterResourceNotFound,
    NotProvisionedError,
    ProvisioningError,
    ProvisioningTimeoutError,
)
from benchnet.shared.logging import log_event
from benchnet.shared.polling import PollExhausted, poll_until

from .cluster import (
    IP_ADDRESS_POOL,
    L2_ADVERTISEMENT,
    METALLB_NAMESPACE,
    ClusterBackend,
)
from .provisioner import HostSpec, ProvisionedHost, Provisioner

logger = logging.getLogger(__name__)

DEFAULT_CREATION_ATTEMPTS = 250
DEFAULT_CREATION_INTERVAL = 2.0
HOSTNAME_LABEL = "kubernetes.io/hostname"


def render_user_data(template: str, variables: Mapping[str, str]) -> str:
    """Substitute ``%KEY%`` placeholders."""
    rendered = template
    for key, value in variables.items():
        rendered = rendered.replace(f"%{key}%", value)
    return rendered


class Machine:
    """One host requested from a provisioner.

    State: REQUESTED -> POLLING -> ACTIVE | TIMED_OUT, terminal REMOVED.
    """

    def __init__(
        self,
        name: str,
        region: str,
        size: str,
        provisioner: Provisioner,
        cluster: ClusterBackend,
    ) -> None:
        self.name = name
        self.region = region
        self.size = size
        self.provisioner = provisioner
        self.cluster = cluster
        self.handle: Optional[ProvisionedHost] = None
        self.host: Optional[ProvisionedHost] = None
        self.state = MachineState.REQUESTED

    @classmethod
    async def provision(
        cls,
        provisioner: Provisioner,
        cluster: ClusterBackend,
        name: str,
        region: str,
        size: str,
        os_image: str,
        user_data: str = "",
        user_data_vars: Optional[Mapping[str, str]] = None,
    ) -> "Machine":
        machine = cls(name, region, size, provisioner, cluster)
        spec = HostSpec(
            name=name,
            os=os_image,
            plan=size,
            region=region,
            user_data=render_user_data(user_data, user_data_vars or {}),
        )
        machine.handle = await provisioner.provision(spec)
        machine.state = MachineState.POLLING
        logger.info({"machine": {"name": name, "state": machine.state.value, "id": machine.handle.id}})
        return machine

    # ------------------------------------------------------------------
    # Host record accessors
    # ------------------------------------------------------------------
    def _require_handle(self) -> ProvisionedHost:
        if self.handle is None:
            raise NotProvisionedError(self.name)
        return self.handle

    def _require_host(self) -> ProvisionedHost:
        if self.host is None:
            raise NotProvisionedError(self.name)
        return self.host

    @property
    def ip(self) -> str:
        return self._require_host().ip

    @property
    def host_id(self) -> str:
        return self._require_host().id

    @property
    def node_selector(self) -> Dict[str, str]:
        return {HOSTNAME_LABEL: self.name}

    @property
    def pool_name(self) -> str:
        return f"{self.name}-pool"

    @property
    def advertisement_name(self) -> str:
        return f"{self.name}-l2"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def wait_for_creation(
        self,
        attempts: int = DEFAULT_CREATION_ATTEMPTS,
        interval: float = DEFAULT_CREATION_INTERVAL,
    ) -> ProvisionedHost:
        handle = self._require_handle()

        async def probe() -> Optional[ProvisionedHost]:
            host = await self.provisioner.status(handle.id)
            return host if host.active else None

        try:
            outcome = await poll_until(
                probe,
                attempts=attempts,
                interval=interval,
                retry_on=(ProvisioningError,),
                label="machine_creation",
            )
        except PollExhausted as exc:
            self.state = MachineState.TIMED_OUT
            logger.error(
                {"machine": {"name": self.name, "state": self.state.value, "attempts": exc.attempts}}
            )
            raise ProvisioningTimeoutError(self.name, exc.attempts) from exc.last_error

        self.host = outcome.value
        self.state = MachineState.ACTIVE
        logger.info(
            {"machine": {"name": self.name, "state": self.state.value, "ip": self.host.ip, "polls": outcome.attempts}}
        )
        log_event({"machine_active": self.name, "ip": self.host.ip})
        return self.host

    async def setup(self) -> None:
        """Announce the machine IP through MetalLB when the cluster runs it."""
        ip = self.ip
        if await self.cluster.custom_resource_definition_exists(IP_ADDRESS_POOL):
            await self.cluster.create_custom_resource(
                IP_ADDRESS_POOL,
                METALLB_NAMESPACE,
                {
                    "metadata": {"name": self.pool_name},
                    "spec": {"addresses": [f"{ip}/32"], "autoAssign": False},
                },
            )
        else:
            logger.info({"machine": {"name": self.name, "skipped": IP_ADDRESS_POOL.kind}})

        if await self.cluster.custom_resource_definition_exists(L2_ADVERTISEMENT):
            await self.cluster.create_custom_resource(
                L2_ADVERTISEMENT,
                METALLB_NAMESPACE,
                {
                    "metadata": {"name": self.advertisement_name},
                    "spec": {
                        "ipAddressPools": [self.pool_name],
                        "nodeSelectors": [{"matchLabels": self.node_selector}],
                    },
                },
            )
        else:
            logger.info({"machine": {"name": self.name, "skipped": L2_ADVERTISEMENT.kind}})

    async def remove(self) -> None:
        """Delete the host and its cluster objects. Stops at the first failure."""
        handle = self._require_handle()
        await self.provisioner.delete(handle.id)

        for node_name in await self.cluster.list_nodes(self.node_selector):
            try:
                await self.cluster.delete_node(node_name)
            except ClusterResourceNotFound:
                logger.debug({"machine": {"name": self.name, "node_gone": node_name}})

        for resource, obj_name in (
            (IP_ADDRESS_POOL, self.pool_name),
            (L2_ADVERTISEMENT, self.advertisement_name),
        ):
            try:
                await self.cluster.delete_custom_resource(resource, METALLB_NAMESPACE, obj_name)
            except ClusterResourceNotFound:
                logger.debug({"machine": {"name": self.name, "absent": resource.kind}})

        self.state = MachineState.REMOVED
        logger.info({"machine": {"name": self.name, "state": self.state.value}})
        log_event({"machine_removed": self.name})


__all__ = [
    "DEFAULT_CREATION_ATTEMPTS",
    "DEFAULT_CREATION_INTERVAL",
    "Machine",
    "render_user_data",
]
