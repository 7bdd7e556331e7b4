"""
Consensus and mirror node records.

A node object is one endpoint (proxy) of a logical node. Several proxies of
the same consensus node share an account ID but each has its own channel and
its own ``NodeHealth``. Only the health record mutates during normal
operation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import grpc
import grpc.aio

from ..ids import AccountId
from .address import NodeAddress
from .health import NodeHealth

logger = logging.getLogger(__name__)

_CHANNEL_OPTIONS = [
    ("grpc.enable_retries", 0),
    ("grpc.keepalive_timeout_ms", 10000),
    ("grpc.keepalive_permit_without_calls", 1),
]


class BaseNode:
    """Shared channel and health handling for consensus and mirror nodes."""

    def __init__(
        self,
        address: NodeAddress,
        *,
        min_backoff: float = 8.0,
        max_backoff: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.address = address
        self.health = NodeHealth(min_backoff=min_backoff, max_backoff=max_backoff, clock=clock)
        self._channel: grpc.aio.Channel | None = None
        self._connected = False

    @property
    def key(self) -> Any:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def is_healthy(self) -> bool:
        return self.health.is_healthy()

    def remaining_backoff(self) -> float:
        return self.health.remaining_backoff()

    def increase_backoff(self) -> None:
        self.health.increase_backoff()

    def decrease_backoff(self) -> None:
        self.health.decrease_backoff()

    @property
    def bad_attempt_count(self) -> int:
        return self.health.bad_attempt_count

    @property
    def readmit_time(self) -> float:
        return self.health.readmit_time

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def get_channel(self) -> grpc.aio.Channel:
        if self._channel is None:
            target = str(self.address)
            if self.address.is_transport_security:
                self._channel = grpc.aio.secure_channel(
                    target, grpc.ssl_channel_credentials(), options=_CHANNEL_OPTIONS
                )
            else:
                self._channel = grpc.aio.insecure_channel(target, options=_CHANNEL_OPTIONS)
        return self._channel

    async def channel_failed_to_connect(self, timeout: float = 10.0) -> bool:
        """Try to bring the channel up; True if it could not connect in ``timeout``."""
        if self._connected:
            return False
        try:
            await asyncio.wait_for(self.get_channel().channel_ready(), timeout=timeout)
        except (TimeoutError, asyncio.TimeoutError):
            logger.debug("Channel to %s did not become ready within %.1fs", self.address, timeout)
            return True
        self._connected = True
        return False

    async def unary_call(self, method: str, request: bytes, timeout: float | None) -> bytes:
        """Send serialized ``request`` to ``method`` and return the raw response bytes."""
        call = self.get_channel().unary_unary(method)
        return await call(request, timeout=timeout)

    def stream_call(self, method: str, request: bytes):
        """Open a server stream; the returned call is async-iterable and cancellable."""
        call = self.get_channel().unary_stream(method)
        return call(request)

    async def close(self) -> None:
        if self._channel is not None:
            channel, self._channel = self._channel, None
            self._connected = False
            await channel.close()


class Node(BaseNode):
    """One endpoint of a consensus node, identified by its account ID."""

    def __init__(self, account_id: AccountId, address: NodeAddress, **kwargs: Any) -> None:
        super().__init__(address, **kwargs)
        self.account_id = account_id

    @property
    def key(self) -> AccountId:
        return self.account_id

    def __repr__(self) -> str:
        return f"Node({self.account_id} @ {self.address})"


class MirrorNode(BaseNode):
    """A streaming-capable mirror endpoint, identified by its address."""

    @property
    def key(self) -> NodeAddress:
        return self.address

    def __repr__(self) -> str:
        return f"MirrorNode({self.address})"
