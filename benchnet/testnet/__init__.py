from .accounts import DirectoryKeyring, GenesisAccount, InMemoryKeyring
from .genesis import GenesisBuilder, GenesisDocument
from .keygen import KeyGenerator, KeyPair
from .node import Node, NodeIdentity
from .runtime import NodeRuntimeConfig
from .testnet import Testnet
from .txclient import TxClient, TxClientConfig

__all__ = [
    "DirectoryKeyring",
    "GenesisAccount",
    "GenesisBuilder",
    "GenesisDocument",
    "InMemoryKeyring",
    "KeyGenerator",
    "KeyPair",
    "Node",
    "NodeIdentity",
    "NodeRuntimeConfig",
    "Testnet",
    "TxClient",
    "TxClientConfig",
]
