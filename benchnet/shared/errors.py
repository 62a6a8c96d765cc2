"""Exception hierarchy and teardown result collection.

Errors raised by lower layers carry the resource and operation they concern
so the orchestrator can attribute them without reinterpreting them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional


class BenchnetError(Exception):
    """Base class for all benchnet errors."""


class ConfigurationError(BenchnetError):
    """Invalid configuration detected before any external resource is touched."""


class GenesisError(ConfigurationError):
    """Genesis document could not be built."""


class NoValidatorsError(GenesisError):
    """The genesis node set contains no node with positive self-delegation."""


class OrchestrationError(BenchnetError):
    """An operation was called in a phase that does not allow it."""


class DeploymentError(BenchnetError):
    """A deployment backend operation failed for one resource."""

    def __init__(self, resource: str, operation: str, message: str = "") -> None:
        self.resource = resource
        self.operation = operation
        detail = f": {message}" if message else ""
        super().__init__(f"{operation} failed for {resource}{detail}")


class AddressUnavailableError(DeploymentError):
    """The backend cannot produce a reachable address for an instance."""


class RPCError(BenchnetError):
    """The node status endpoint returned an error or could not be reached."""


class LivenessTimeoutError(BenchnetError):
    """A started node never reported a block height above zero."""

    def __init__(self, node: str, attempts: int) -> None:
        self.node = node
        self.attempts = attempts
        super().__init__(
            f"node {node} did not produce a block after {attempts} status polls"
        )


class ProvisioningError(BenchnetError):
    """The provisioning backend failed to create, report or delete a host."""


class ProvisioningTimeoutError(ProvisioningError):
    def __init__(self, machine: str, attempts: int) -> None:
        self.machine = machine
        self.attempts = attempts
        super().__init__(
            f"timeout waiting for instance creation for machine {machine} "
            f"after {attempts} status polls"
        )


class NotProvisionedError(ProvisioningError):
    def __init__(self, machine: str) -> None:
        self.machine = machine
        super().__init__(f"host is not provisioned for machine {machine}")


class ClusterError(BenchnetError):
    """A cluster resource operation failed."""


class ClusterResourceNotFound(ClusterError):
    """The object, or its resource type, does not exist in the cluster."""


class BenchmarkError(BenchnetError):
    """A benchmark run produced results outside its expectations."""


@dataclass(frozen=True)
class TeardownFailure:
    resource: str
    operation: str
    error: BaseException

    def __str__(self) -> str:
        return f"{self.resource} failed to {self.operation}: {self.error}"


@dataclass
class TeardownReport:
    """Accumulate-and-continue result of a teardown sweep.

    Every failure is recorded and logged; nothing is raised.
    """

    attempted: List[str] = field(default_factory=list)
    failures: List[TeardownFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def record(
        self,
        resource: str,
        operation: str,
        error: BaseException,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        failure = TeardownFailure(resource=resource, operation=operation, error=error)
        self.failures.append(failure)
        if logger is not None:
            logger.error(
                {"teardown": {"resource": resource, "operation": operation, "error": str(error)}}
            )

    def merge(self, other: "TeardownReport") -> None:
        self.attempted.extend(other.attempted)
        self.failures.extend(other.failures)

    def failed_resources(self) -> List[str]:
        seen: List[str] = []
        for failure in self.failures:
            if failure.resource not in seen:
                seen.append(failure.resource)
        return seen


__all__ = [
    "BenchnetError",
    "ConfigurationError",
    "GenesisError",
    "NoValidatorsError",
    "OrchestrationError",
    "DeploymentError",
    "AddressUnavailableError",
    "RPCError",
    "LivenessTimeoutError",
    "ProvisioningError",
    "ProvisioningTimeoutError",
    "NotProvisionedError",
    "ClusterError",
    "ClusterResourceNotFound",
    "BenchmarkError",
    "TeardownFailure",
    "TeardownReport",
]
