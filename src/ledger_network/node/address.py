"""
Network endpoint addresses.
"""

from __future__ import annotations

from dataclasses import dataclass

PORT_NODE_PLAIN = 50211
PORT_NODE_TLS = 50212
PORT_MIRROR_PLAIN = 5600
PORT_MIRROR_TLS = 443

_TLS_PORTS = frozenset({PORT_NODE_TLS, PORT_MIRROR_TLS})


@dataclass(frozen=True)
class NodeAddress:
    """One ``host:port`` endpoint through which a node can be reached."""

    host: str
    port: int

    @classmethod
    def from_string(cls, text: str) -> NodeAddress:
        host, sep, port = text.strip().rpartition(":")
        if not sep or not host:
            raise ValueError(f"Malformed node address (expected host:port): {text!r}")
        try:
            port_number = int(port)
        except ValueError as e:
            raise ValueError(f"Malformed node address port: {text!r}") from e
        if not 0 < port_number < 65536:
            raise ValueError(f"Node address port out of range: {text!r}")
        return cls(host=host, port=port_number)

    @property
    def is_transport_security(self) -> bool:
        return self.port in _TLS_PORTS

    def to_secure(self) -> NodeAddress:
        if self.port == PORT_NODE_PLAIN:
            return NodeAddress(self.host, PORT_NODE_TLS)
        if self.port == PORT_MIRROR_PLAIN:
            return NodeAddress(self.host, PORT_MIRROR_TLS)
        return self

    def to_insecure(self) -> NodeAddress:
        if self.port == PORT_NODE_TLS:
            return NodeAddress(self.host, PORT_NODE_PLAIN)
        if self.port == PORT_MIRROR_TLS:
            return NodeAddress(self.host, PORT_MIRROR_PLAIN)
        return self

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"
