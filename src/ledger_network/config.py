"""
Client configuration.

Every knob the engine consumes lives here with its built-in default. Request
objects may override the dispatch knobs per call; anything they leave unset
falls back to the client's ``ClientConfig``, and from there to these
defaults. Durations are in seconds.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Any

from .errors import IllegalArgumentError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_MIN_BACKOFF = 0.25
DEFAULT_MAX_BACKOFF = 8.0
DEFAULT_REQUEST_TIMEOUT = 120.0
DEFAULT_GRPC_DEADLINE = 10.0
DEFAULT_CHUNK_SIZE = 1024
DEFAULT_MAX_CHUNKS = 20
DEFAULT_MIN_NODE_BACKOFF = 8.0
DEFAULT_MAX_NODE_BACKOFF = 3600.0
DEFAULT_MAX_NODE_ATTEMPTS = -1
DEFAULT_CONNECT_TIMEOUT = 10.0


@dataclass
class ClientConfig:
    """Client-level defaults for dispatch, chunking, node health and streaming."""

    # Dispatch
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    min_backoff: float = DEFAULT_MIN_BACKOFF
    max_backoff: float = DEFAULT_MAX_BACKOFF
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    grpc_deadline: float = DEFAULT_GRPC_DEADLINE

    # Chunking
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_chunks: int = DEFAULT_MAX_CHUNKS

    # Node health
    min_node_backoff: float = DEFAULT_MIN_NODE_BACKOFF
    max_node_backoff: float = DEFAULT_MAX_NODE_BACKOFF
    max_node_attempts: int = DEFAULT_MAX_NODE_ATTEMPTS  # <= 0 disables eviction
    min_node_readmit_time: float = DEFAULT_MIN_NODE_BACKOFF
    max_node_readmit_time: float = DEFAULT_MAX_NODE_BACKOFF
    max_nodes_per_request: int = 0  # 0 = a third of the network
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    # Streaming
    subscription_max_attempts: int = DEFAULT_MAX_ATTEMPTS
    subscription_max_backoff: float = DEFAULT_MAX_BACKOFF

    # Address book refresh
    network_update_period: float = 24 * 3600.0

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise ``IllegalArgumentError`` if any values are inconsistent."""
        if self.max_attempts < 1:
            raise IllegalArgumentError("max_attempts must be at least 1")
        if self.min_backoff < 0:
            raise IllegalArgumentError("min_backoff must not be negative")
        if self.min_backoff > self.max_backoff:
            raise IllegalArgumentError("min_backoff must not exceed max_backoff")
        if self.request_timeout <= 0 or self.grpc_deadline <= 0:
            raise IllegalArgumentError("request_timeout and grpc_deadline must be positive")
        if self.chunk_size <= 0:
            raise IllegalArgumentError("chunk_size must be positive")
        if self.max_chunks <= 0:
            raise IllegalArgumentError("max_chunks must be positive")
        if self.min_node_backoff > self.max_node_backoff:
            raise IllegalArgumentError("min_node_backoff must not exceed max_node_backoff")
        if self.min_node_readmit_time > self.max_node_readmit_time:
            raise IllegalArgumentError("min_node_readmit_time must not exceed max_node_readmit_time")
        if self.subscription_max_attempts < 0:
            raise IllegalArgumentError("subscription_max_attempts must not be negative")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls, prefix: str = "LEDGER_", environ: dict[str, str] | None = None) -> ClientConfig:
        """Build a config from ``<PREFIX><FIELD_NAME>`` environment variables."""
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(prefix + f.name.upper())
            if raw is None:
                continue
            caster = int if f.type in ("int", int) else float
            try:
                values[f.name] = caster(raw)
            except ValueError as e:
                raise IllegalArgumentError(f"Invalid value for {prefix + f.name.upper()}: {raw!r}") from e
        return cls(**values)
