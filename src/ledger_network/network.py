"""
Node registry for consensus and mirror networks.

The registry maps a logical key (an account ID for consensus nodes, an
address for mirror nodes) to the proxies through which that node can be
reached. Its membership only changes through ``set_network`` (admit and
evict in bulk) or through bad-attempt eviction during node selection;
requests in flight keep the node objects they already resolved.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Generic, TypeVar

from .config import ClientConfig
from .errors import IllegalStateError
from .ids import AccountId
from .node.address import NodeAddress
from .node.node import BaseNode, MirrorNode, Node

logger = logging.getLogger(__name__)

KeyT = TypeVar("KeyT")
NodeT = TypeVar("NodeT", bound=BaseNode)


class BaseNetwork(Generic[KeyT, NodeT]):
    """Shared bookkeeping for consensus and mirror networks.

    Tracks every node, the proxies per key, and the subset currently
    considered healthy. Nodes are readmitted to the healthy set lazily, at
    most once per ``earliest_readmit_time``.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or ClientConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._nodes: list[NodeT] = []
        self._network: dict[KeyT, list[NodeT]] = {}
        self._healthy: list[NodeT] = []
        self._earliest_readmit_time = 0.0

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def nodes(self) -> list[NodeT]:
        with self._lock:
            return list(self._nodes)

    @property
    def healthy_nodes(self) -> list[NodeT]:
        with self._lock:
            return list(self._healthy)

    def _create_node(self, address: NodeAddress, key: KeyT) -> NodeT:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def _apply_network(self, entries: Iterable[tuple[str, KeyT]]) -> list[NodeT]:
        """Replace membership, reusing unchanged nodes. Returns removed nodes."""
        with self._lock:
            remaining = list(self._nodes)
            new_nodes: list[NodeT] = []
            new_network: dict[KeyT, list[NodeT]] = {}

            for address_text, key in entries:
                address = NodeAddress.from_string(address_text)

                # Same host and key on another port is the same node (plain vs TLS).
                existing = next(
                    (n for n in remaining if n.address.host == address.host and n.key == key),
                    None,
                )
                if existing is not None:
                    remaining.remove(existing)
                    new_nodes.append(existing)
                    new_network.setdefault(key, []).append(existing)
                    continue
                if any(n.address.host == address.host and n.key == key for n in new_nodes):
                    continue

                node = self._create_node(address, key)
                new_nodes.append(node)
                new_network.setdefault(key, []).append(node)

            self._nodes = new_nodes
            self._network = new_network
            self._healthy = []
            self._earliest_readmit_time = self._clock()
            self._readmit_nodes()

        for node in remaining:
            logger.debug("Node %r removed from network", node)
        return remaining

    async def _close_nodes(self, nodes: Iterable[NodeT]) -> None:
        for node in nodes:
            await node.close()

    def evict(self, node: NodeT) -> None:
        """Remove ``node`` from the registry. The caller closes its channel."""
        with self._lock:
            proxies = self._network.get(node.key, [])
            if node in proxies:
                proxies.remove(node)
            if not proxies:
                self._network.pop(node.key, None)
            if node in self._nodes:
                self._nodes.remove(node)
            if node in self._healthy:
                self._healthy.remove(node)

    async def close(self) -> None:
        await self._close_nodes(self.nodes)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def increase_backoff(self, node: NodeT) -> None:
        with self._lock:
            node.increase_backoff()
            if node in self._healthy:
                self._healthy.remove(node)
            # The next sweep must not wait past this node's readmission.
            self._earliest_readmit_time = min(self._earliest_readmit_time, node.readmit_time)

    def decrease_backoff(self, node: NodeT) -> None:
        node.decrease_backoff()

    def _readmit_nodes(self) -> None:
        now = self._clock()
        if now < self._earliest_readmit_time:
            return

        next_earliest = now + self._config.max_node_readmit_time
        for node in self._nodes:
            readmit_time = node.readmit_time
            if now < readmit_time < next_earliest:
                next_earliest = readmit_time
        self._earliest_readmit_time = max(next_earliest, now + self._config.min_node_readmit_time)

        for node in self._nodes:
            if node not in self._healthy and node.readmit_time <= now:
                self._healthy.append(node)

    def readmit_nodes(self) -> None:
        with self._lock:
            self._readmit_nodes()

    def _evict_bad_nodes(self) -> list[NodeT]:
        max_attempts = self._config.max_node_attempts
        if max_attempts <= 0:
            return []
        with self._lock:
            bad = [n for n in self._nodes if n.bad_attempt_count >= max_attempts]
            for node in bad:
                logger.error(
                    "Evicting node %r after %d bad attempts",
                    node,
                    node.bad_attempt_count,
                )
                self.evict(node)
        return bad

    async def most_healthy_nodes(self, count: int) -> list[NodeT]:
        """Pick ``count`` distinct healthy nodes at random.

        Evicts nodes over the bad-attempt threshold first, and waits for the
        earliest readmission whenever no node is currently healthy.
        """
        await self._close_nodes(self._evict_bad_nodes())

        with self._lock:
            count = min(count, len(self._nodes))
        if count <= 0:
            raise IllegalStateError("Network has no nodes to select from")

        selected: list[NodeT] = []
        while len(selected) < count:
            with self._lock:
                self._readmit_nodes()
                candidates = [n for n in self._healthy if n not in selected]
                wait = self._earliest_readmit_time - self._clock()
            if not candidates:
                if not self._healthy and wait > 0:
                    logger.debug("No healthy nodes, waiting %.3fs for readmission", wait)
                    await asyncio.sleep(wait)
                    continue
                # Every healthy node is already selected.
                break
            selected.append(random.choice(candidates))
        return selected

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "nodes": [
                    {"key": str(n.key), "address": str(n.address), "health": n.health.to_dict()}
                    for n in self._nodes
                ],
                "healthy": len(self._healthy),
                "earliest_readmit_time": self._earliest_readmit_time,
            }


class Network(BaseNetwork[AccountId, Node]):
    """The consensus nodes a client submits requests to."""

    def __init__(
        self,
        network: Mapping[str, AccountId | str] | None = None,
        config: ClientConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(config, clock=clock)
        if network:
            self._apply_network(self._entries(network))

    @staticmethod
    def _entries(network: Mapping[str, AccountId | str]) -> list[tuple[str, AccountId]]:
        return [
            (address, account if isinstance(account, AccountId) else AccountId.from_string(account))
            for address, account in network.items()
        ]

    def _create_node(self, address: NodeAddress, key: AccountId) -> Node:
        return Node(
            key,
            address,
            min_backoff=self._config.min_node_backoff,
            max_backoff=self._config.max_node_backoff,
            clock=self._clock,
        )

    async def set_network(self, network: Mapping[str, AccountId | str]) -> None:
        """Replace the node set, keeping health for nodes that did not change."""
        removed = self._apply_network(self._entries(network))
        await self._close_nodes(removed)

    @property
    def network(self) -> dict[str, AccountId]:
        with self._lock:
            return {str(n.address): n.account_id for n in self._nodes}

    def node_proxies(self, account_id: AccountId) -> list[Node]:
        with self._lock:
            self._readmit_nodes()
            return list(self._network.get(account_id, []))

    def nodes_for(self, account_ids: list[AccountId]) -> list[Node]:
        """Resolve the candidate nodes for a request.

        A single target returns every proxy of that node so a dead proxy can
        fail over to a sibling. Several targets return one random proxy per
        node so dispatch fails over across distinct nodes.

        Raises:
            IllegalStateError: If an account ID is not in the network
        """
        if not account_ids:
            raise IllegalStateError("No node account IDs to resolve")

        if len(account_ids) == 1:
            proxies = self.node_proxies(account_ids[0])
            if not proxies:
                raise IllegalStateError(f"Node account ID {account_ids[0]} did not map to a node in this network")
            return proxies

        nodes: list[Node] = []
        for account_id in account_ids:
            proxies = self.node_proxies(account_id)
            if not proxies:
                raise IllegalStateError(f"Node account ID {account_id} did not map to a node in this network")
            nodes.append(random.choice(proxies))
        return nodes

    def number_of_nodes_for_request(self) -> int:
        with self._lock:
            total = len(self._network)
        if self._config.max_nodes_per_request > 0:
            return min(self._config.max_nodes_per_request, total)
        return math.ceil(total / 3)

    async def node_account_ids_for_execute(self) -> list[AccountId]:
        """Account IDs of the healthiest nodes to target when none were chosen."""
        nodes = await self.most_healthy_nodes(self.number_of_nodes_for_request())
        account_ids: list[AccountId] = []
        for node in nodes:
            if node.account_id not in account_ids:
                account_ids.append(node.account_id)
        return account_ids


class MirrorNetwork(BaseNetwork[NodeAddress, MirrorNode]):
    """The mirror endpoints a client streams topic messages from."""

    def __init__(
        self,
        addresses: Iterable[str] = (),
        config: ClientConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(config, clock=clock)
        self._next_index = 0
        addresses = list(addresses)
        if addresses:
            self._apply_network(self._entries(addresses))

    @staticmethod
    def _entries(addresses: Iterable[str]) -> list[tuple[str, NodeAddress]]:
        return [(address, NodeAddress.from_string(address)) for address in addresses]

    def _create_node(self, address: NodeAddress, key: NodeAddress) -> MirrorNode:
        return MirrorNode(
            address,
            min_backoff=self._config.min_node_backoff,
            max_backoff=self._config.max_node_backoff,
            clock=self._clock,
        )

    async def set_network(self, addresses: Iterable[str]) -> None:
        removed = self._apply_network(self._entries(addresses))
        await self._close_nodes(removed)

    @property
    def network(self) -> list[str]:
        with self._lock:
            return [str(n.address) for n in self._nodes]

    def next_mirror_node(self) -> MirrorNode:
        """Round-robin over healthy mirror nodes, or all of them if none are healthy."""
        with self._lock:
            self._readmit_nodes()
            pool = self._healthy or self._nodes
            if not pool:
                raise IllegalStateError("Mirror network has no nodes")
            node = pool[self._next_index % len(pool)]
            self._next_index += 1
            return node

    async def connected_mirror_node(self, connect_timeout: float | None = None) -> MirrorNode:
        """Keep drawing mirror nodes until one connects.

        Nodes that fail to connect are backed off, and the loop sleeps for
        the earliest readmission once every node is backed off.
        """
        timeout = self._config.connect_timeout if connect_timeout is None else connect_timeout
        while True:
            node = self.next_mirror_node()
            if not node.is_healthy():
                await asyncio.sleep(node.remaining_backoff())
            if not await node.channel_failed_to_connect(timeout):
                return node
            logger.warning("Mirror node %s failed to connect, trying another", node.address)
            self.increase_backoff(node)
