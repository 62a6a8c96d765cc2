from .base import DeploymentBackend, InstanceHandle, InstanceSpec
from .docker import DockerBackend
from .machine import MachineBackend, MachineSettings

__all__ = [
    "DeploymentBackend",
    "DockerBackend",
    "InstanceHandle",
    "InstanceSpec",
    "MachineBackend",
    "MachineSettings",
]
