from __future__ import annotations

from enum import Enum


class KeyType(str, Enum):
    ED25519 = "ed25519"
    SECP256K1 = "secp256k1"


class KeyRole(str, Enum):
    CONSENSUS = "consensus"
    NETWORK = "network"
    ACCOUNT = "account"
    GENESIS_ACCOUNT = "genesis_account"

    @property
    def key_type(self) -> KeyType:
        if self in (KeyRole.ACCOUNT, KeyRole.GENESIS_ACCOUNT):
            return KeyType.SECP256K1
        return KeyType.ED25519


class InstanceState(str, Enum):
    """Lifecycle state of a deployed instance as observed by a backend."""

    CREATED = "created"
    STARTED = "started"
    STOPPED = "stopped"
    DESTROYED = "destroyed"


class NodeState(str, Enum):
    CREATED = "created"
    INITIALIZED = "initialized"
    STARTED = "started"
    STOPPED = "stopped"
    DESTROYED = "destroyed"


class MachineState(str, Enum):
    REQUESTED = "requested"
    POLLING = "polling"
    ACTIVE = "active"
    TIMED_OUT = "timed_out"
    REMOVED = "removed"


class NetworkPhase(str, Enum):
    NEW = "new"
    SETUP = "setup"
    STARTED = "started"
    CLEANED = "cleaned"


__all__ = [
    "KeyType",
    "KeyRole",
    "InstanceState",
    "NodeState",
    "MachineState",
    "NetworkPhase",
]
