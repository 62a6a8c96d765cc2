from .client import Block, NodeRPCClient, NodeStatus

__all__ = ["Block", "NodeRPCClient", "NodeStatus"]
