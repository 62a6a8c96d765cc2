from .manifest import (
    LoggingSettings,
    MachineBackendSettings,
    Manifest,
    PollSettings,
    load_manifest,
    parse_bandwidth,
)
from .resources import (
    DEFAULT_RESOURCES,
    MAX_TX_CLIENT_RESOURCES,
    MAX_VALIDATOR_RESOURCES,
    Resources,
)

__all__ = [
    "DEFAULT_RESOURCES",
    "LoggingSettings",
    "MAX_TX_CLIENT_RESOURCES",
    "MAX_VALIDATOR_RESOURCES",
    "MachineBackendSettings",
    "Manifest",
    "PollSettings",
    "Resources",
    "load_manifest",
    "parse_bandwidth",
]
