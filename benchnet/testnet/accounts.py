"""Genesis accounts and the keyrings that hold their private keys."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, Optional

from benchnet.shared.enums import KeyRole, KeyType

from .keygen import KeyPair, keypair_from_private

KEYRING_SUBDIR = "keyring-test"


@dataclass(frozen=True)
class GenesisAccount:
    """A pre-funded account. Immutable once added to the genesis set."""

    name: str
    public_key: bytes
    address: str
    initial_tokens: int

    @classmethod
    def from_keypair(cls, name: str, key: KeyPair, tokens: int) -> "GenesisAccount":
        if tokens < 0:
            raise ValueError("initial tokens must be non-negative")
        return cls(name=name, public_key=key.public_key, address=key.address, initial_tokens=tokens)


class InMemoryKeyring:
    """Keys for accounts the orchestrator itself owns."""

    def __init__(self) -> None:
        self._keys: Dict[str, KeyPair] = {}

    def add(self, name: str, key: KeyPair) -> None:
        if name in self._keys:
            raise ValueError(f"key {name!r} already exists in keyring")
        self._keys[name] = key

    def get(self, name: str) -> KeyPair:
        return self._keys[name]

    def __contains__(self, name: object) -> bool:
        return name in self._keys

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)


class DirectoryKeyring(InMemoryKeyring):
    """Keyring persisted on disk so it can be copied into another process.

    Layout: ``<root>/keyring-test/<name>.json``.
    """

    def __init__(self, root: str | os.PathLike) -> None:
        super().__init__()
        self.root = Path(root)
        self.key_dir = self.root / KEYRING_SUBDIR

    def add(self, name: str, key: KeyPair) -> None:
        super().add(name, key)
        self.key_dir.mkdir(parents=True, exist_ok=True)
        path = self.key_dir / f"{name}.json"
        record = {
            "name": name,
            "type": key.key_type.value,
            "role": key.role.value,
            "index": key.index,
            "address": key.address,
            "pub_key": key.public_key.hex(),
            "priv_key": key.private_key.hex(),
        }
        path.write_text(json.dumps(record, indent=2, sort_keys=True), encoding="utf-8")
        os.chmod(path, 0o600)

    def load(self, name: str) -> Optional[KeyPair]:
        path = self.key_dir / f"{name}.json"
        if not path.exists():
            return None
        record = json.loads(path.read_text(encoding="utf-8"))
        return keypair_from_private(
            KeyType(record["type"]),
            KeyRole(record["role"]),
            int(record["index"]),
            bytes.fromhex(record["priv_key"]),
        )


__all__ = ["GenesisAccount", "InMemoryKeyring", "DirectoryKeyring", "KEYRING_SUBDIR"]
