"""Deterministic key material for test networks.

Every key is derived from the network seed so a topology and its key set can
be reproduced exactly from one configuration value. Each role owns its own
pseudo-random stream: the Nth key of a role only depends on (seed, role, N).
"""

from __future__ import annotations

import base64
import hashlib
import random
from dataclasses import dataclass, field
from typing import Dict

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from ecdsa import SECP256k1, SigningKey

from benchnet.shared.enums import KeyRole, KeyType
from benchnet.shared.errors import ConfigurationError

SEED_SIZE = 32
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_COMET_KEY_TYPES = {
    KeyType.ED25519: ("tendermint/PubKeyEd25519", "tendermint/PrivKeyEd25519"),
    KeyType.SECP256K1: ("tendermint/PubKeySecp256k1", "tendermint/PrivKeySecp256k1"),
}


def validate_seed(seed: object) -> int:
    """Reject seeds that cannot drive a reproducible run."""
    if isinstance(seed, bool) or not isinstance(seed, int):
        raise ConfigurationError(f"seed must be an integer, got {seed!r}")
    if not _INT64_MIN <= seed <= _INT64_MAX:
        raise ConfigurationError(f"seed {seed} is outside the 64-bit signed range")
    return seed


@dataclass(frozen=True)
class KeyPair:
    key_type: KeyType
    role: KeyRole
    index: int
    private_key: bytes = field(repr=False)
    public_key: bytes

    @property
    def address(self) -> str:
        """Upper-case hex of the first 20 bytes of SHA-256(pubkey)."""
        return hashlib.sha256(self.public_key).digest()[:20].hex().upper()

    @property
    def node_id(self) -> str:
        """Peer ID used in ``id@host:port`` P2P addresses."""
        return self.address.lower()

    @property
    def public_key_b64(self) -> str:
        return base64.b64encode(self.public_key).decode("ascii")

    def comet_private_key(self) -> Dict[str, str]:
        """Private key in the node's JSON key-file encoding."""
        _, priv_type = _COMET_KEY_TYPES[self.key_type]
        raw = self.private_key
        if self.key_type is KeyType.ED25519:
            # seed || pubkey, 64 bytes
            raw = self.private_key + self.public_key
        return {"type": priv_type, "value": base64.b64encode(raw).decode("ascii")}

    def comet_public_key(self) -> Dict[str, str]:
        pub_type, _ = _COMET_KEY_TYPES[self.key_type]
        return {"type": pub_type, "value": self.public_key_b64}


def derive_keypair(key_type: KeyType, role: KeyRole, index: int, secret: bytes) -> KeyPair:
    if len(secret) != SEED_SIZE:
        raise ValueError(f"key secret must be {SEED_SIZE} bytes")
    if key_type is KeyType.ED25519:
        private = Ed25519PrivateKey.from_private_bytes(secret)
        public = private.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return KeyPair(key_type, role, index, secret, public)

    # map the secret onto a valid scalar in [1, n-1]
    order = SECP256k1.order
    scalar = int.from_bytes(secret, "big") % (order - 1) + 1
    return keypair_from_private(key_type, role, index, scalar.to_bytes(SEED_SIZE, "big"))


def keypair_from_private(key_type: KeyType, role: KeyRole, index: int, private: bytes) -> KeyPair:
    """Rebuild a key pair from stored private bytes (ed25519 seed or secp256k1 scalar)."""
    if key_type is KeyType.ED25519:
        return derive_keypair(key_type, role, index, private)
    signing_key = SigningKey.from_string(private, curve=SECP256k1)
    public = signing_key.get_verifying_key().to_string("compressed")
    return KeyPair(key_type, role, index, private, public)


class KeyGenerator:
    """Seeded generator handing out key pairs per role in call order."""

    def __init__(self, seed: int) -> None:
        self.seed = validate_seed(seed)
        self._streams: Dict[KeyRole, random.Random] = {}
        self._counts: Dict[KeyRole, int] = {}

    def _stream(self, role: KeyRole) -> random.Random:
        stream = self._streams.get(role)
        if stream is None:
            stream = random.Random(f"benchnet:{self.seed}:{role.value}")
            self._streams[role] = stream
            self._counts[role] = 0
        return stream

    def generate(self, role: KeyRole) -> KeyPair:
        stream = self._stream(role)
        index = self._counts[role]
        secret = stream.randbytes(SEED_SIZE)
        self._counts[role] = index + 1
        return derive_keypair(role.key_type, role, index, secret)

    def generated(self, role: KeyRole) -> int:
        return self._counts.get(role, 0)


__all__ = [
    "KeyGenerator",
    "KeyPair",
    "derive_keypair",
    "keypair_from_private",
    "validate_seed",
    "SEED_SIZE",
]
