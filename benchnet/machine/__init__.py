from .cluster import ClusterBackend, KubectlCluster
from .machine import Machine
from .provisioner import DigitalOceanProvisioner, HostSpec, ProvisionedHost, Provisioner

__all__ = [
    "ClusterBackend",
    "DigitalOceanProvisioner",
    "HostSpec",
    "KubectlCluster",
    "Machine",
    "ProvisionedHost",
    "Provisioner",
]
