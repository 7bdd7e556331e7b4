"""
Ledger node records.

One node object per endpoint (proxy) of a consensus or mirror node:
- health.py: NodeHealth backoff state
- address.py: NodeAddress and well-known ports
- node.py: BaseNode, Node, MirrorNode with their gRPC channels
"""

from .address import (
    PORT_MIRROR_PLAIN,
    PORT_MIRROR_TLS,
    PORT_NODE_PLAIN,
    PORT_NODE_TLS,
    NodeAddress,
)
from .health import NodeHealth
from .node import BaseNode, MirrorNode, Node

__all__ = [
    # Health
    "NodeHealth",
    # Addressing
    "NodeAddress",
    "PORT_NODE_PLAIN",
    "PORT_NODE_TLS",
    "PORT_MIRROR_PLAIN",
    "PORT_MIRROR_TLS",
    # Nodes
    "BaseNode",
    "Node",
    "MirrorNode",
]
