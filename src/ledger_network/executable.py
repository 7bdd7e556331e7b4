"""
Generic request dispatch with node failover and retry.

``Executable`` drives one request to completion against a list of candidate
nodes. Subclasses supply the request-specific pieces (how to build the wire
request for a node, how to read the precheck status out of a response, and
how to map a response to the caller's result); the retry loop itself is
shared by every transaction and query.

Two independent backoffs pace the loop:

- Node backoff (``NodeHealth``) throttles *selection*: a node that failed at
  the transport level is skipped until it is readmitted.
- Call backoff throttles *busy responses*: when nodes ask us to slow down,
  the call sleeps and doubles its own backoff before the next attempt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import grpc

from .config import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_GRPC_DEADLINE,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MIN_BACKOFF,
)
from .errors import (
    IllegalArgumentError,
    MaxAttemptsExceededError,
    PrecheckStatusError,
    TransportError,
)
from .ids import AccountId, TransactionId
from .status import ExecutionStatus, Status, classify_status, status_name

if TYPE_CHECKING:
    from .client import Client
    from .node.node import Node

logger = logging.getLogger(__name__)

ResponseT = TypeVar("ResponseT")

#: Transport codes absorbed into node backoff and retried on another attempt.
TRANSIENT_GRPC_CODES = frozenset(
    {
        grpc.StatusCode.UNAVAILABLE,
        grpc.StatusCode.RESOURCE_EXHAUSTED,
        grpc.StatusCode.INTERNAL,
    }
)


@dataclass
class ExecutionParameters:
    """Dispatch knobs after per-request, client and default precedence."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    min_backoff: float = DEFAULT_MIN_BACKOFF
    max_backoff: float = DEFAULT_MAX_BACKOFF
    grpc_deadline: float = DEFAULT_GRPC_DEADLINE
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT


@dataclass
class AttemptState:
    """Per-call retry state. Never shared between calls."""

    nodes: list[Node]
    deadline: float
    current_backoff: float
    attempt: int = 0
    server_error_nodes: set[int] = field(default_factory=set)

    def remaining(self) -> float:
        return self.deadline - time.monotonic()


class Executable(Generic[ResponseT]):
    """Base class for everything submitted to consensus nodes."""

    def __init__(self) -> None:
        self._node_account_ids: list[AccountId] = []
        self._max_attempts: int | None = None
        self._min_backoff: float | None = None
        self._max_backoff: float | None = None
        self._grpc_deadline: float | None = None
        self._request_listener: Callable[[bytes], bytes] | None = None
        self._response_listener: Callable[[Any], Any] | None = None

    # ------------------------------------------------------------------
    # Request-specific hooks
    # ------------------------------------------------------------------

    def _method(self) -> str:
        """gRPC method path this request is sent to."""
        raise NotImplementedError

    def _make_request(self, node: Node) -> bytes:
        """Serialized request addressed to ``node``."""
        raise NotImplementedError

    def _parse_response(self, raw: bytes) -> Any:
        raise NotImplementedError

    def _map_response_status(self, response: Any) -> Status | int:
        raise NotImplementedError

    def _map_response(self, response: Any, node_account_id: AccountId, request: bytes) -> ResponseT:
        raise NotImplementedError

    def _determine_status(self, status: Status | int, response: Any) -> ExecutionStatus:
        return classify_status(status)

    def _transaction_id_for_error(self) -> TransactionId | None:
        return None

    async def _on_execute(self, client: Client) -> None:
        """Prepare the request (freeze, sign) before the first attempt."""
        if not self._node_account_ids:
            self._node_account_ids = await client.network.node_account_ids_for_execute()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def node_account_ids(self) -> list[AccountId]:
        return list(self._node_account_ids)

    def set_node_account_ids(self, account_ids: list[AccountId]):
        self._node_account_ids = list(account_ids)
        return self

    @property
    def max_attempts(self) -> int | None:
        return self._max_attempts

    def set_max_attempts(self, attempts: int):
        if attempts < 1:
            raise IllegalArgumentError("max_attempts must be at least 1")
        self._max_attempts = attempts
        return self

    @property
    def min_backoff(self) -> float | None:
        return self._min_backoff

    def set_min_backoff(self, backoff: float):
        upper = self._max_backoff if self._max_backoff is not None else DEFAULT_MAX_BACKOFF
        if backoff > upper:
            raise IllegalArgumentError("Minimum backoff would be larger than maximum backoff")
        self._min_backoff = backoff
        return self

    @property
    def max_backoff(self) -> float | None:
        return self._max_backoff

    def set_max_backoff(self, backoff: float):
        lower = self._min_backoff if self._min_backoff is not None else DEFAULT_MIN_BACKOFF
        if backoff < lower:
            raise IllegalArgumentError("Maximum backoff would be smaller than minimum backoff")
        self._max_backoff = backoff
        return self

    def set_grpc_deadline(self, deadline: float):
        if deadline <= 0:
            raise IllegalArgumentError("grpc_deadline must be positive")
        self._grpc_deadline = deadline
        return self

    def set_request_listener(self, listener: Callable[[bytes], bytes] | None):
        """Observe or replace the serialized request before each submission."""
        self._request_listener = listener
        return self

    def set_response_listener(self, listener: Callable[[Any], Any] | None):
        """Observe or replace the parsed response before it is classified."""
        self._response_listener = listener
        return self

    def _execution_parameters(self, client: Client) -> ExecutionParameters:
        config = client.config

        def pick(own, client_value):
            return own if own is not None else client_value

        params = ExecutionParameters(
            max_attempts=pick(self._max_attempts, config.max_attempts),
            min_backoff=pick(self._min_backoff, config.min_backoff),
            max_backoff=pick(self._max_backoff, config.max_backoff),
            grpc_deadline=pick(self._grpc_deadline, config.grpc_deadline),
            connect_timeout=config.connect_timeout,
        )
        if params.min_backoff > params.max_backoff:
            raise IllegalArgumentError("Minimum backoff would be larger than maximum backoff")
        return params

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    @staticmethod
    def _node_index_for_execute(nodes: list[Node], attempt: int) -> int:
        """Index of the node to use for ``attempt``.

        Scans forward from ``attempt % len(nodes)`` for the first healthy
        node. If none is healthy, returns the one with the least remaining
        backoff.
        """
        candidate_index = -1
        candidate_delay = float("inf")
        for i in range(attempt % len(nodes), len(nodes)):
            node = nodes[i]
            if node.is_healthy():
                return i
            delay = node.remaining_backoff()
            if delay < candidate_delay:
                candidate_index = i
                candidate_delay = delay
        return candidate_index

    async def execute(self, client: Client, timeout: float | None = None) -> ResponseT:
        """Submit this request, failing over and retrying as needed.

        Raises:
            MaxAttemptsExceededError: If attempts or time run out
            PrecheckStatusError: If a node rejects the request outright
            TransportError: If the transport fails with a non-retryable code
            IllegalStateError: If a target node is not in the client's network
        """
        params = self._execution_parameters(client)
        await self._on_execute(client)

        nodes = client.network.nodes_for(self._node_account_ids)
        timeout = client.config.request_timeout if timeout is None else timeout
        state = AttemptState(
            nodes=nodes,
            deadline=time.monotonic() + timeout,
            current_backoff=params.min_backoff,
        )

        while True:
            if state.attempt >= params.max_attempts:
                raise MaxAttemptsExceededError(
                    f"Max number of attempts made (max attempts allowed: {params.max_attempts})",
                    attempts=state.attempt,
                )
            if state.remaining() <= 0:
                raise MaxAttemptsExceededError(
                    f"Request timed out after {timeout:.3f}s and {state.attempt} attempts",
                    attempts=state.attempt,
                    timed_out=True,
                )

            attempt = state.attempt
            state.attempt += 1

            node_index = self._node_index_for_execute(nodes, attempt)
            node = nodes[node_index]
            logger.debug("Using node %s at %s for attempt #%d", node.account_id, node.address, attempt)

            # No healthy node: the chosen one has the shortest wait.
            if not node.is_healthy():
                await asyncio.sleep(min(node.remaining_backoff(), max(state.remaining(), 0.0)))
                if state.remaining() <= 0:
                    continue

            if await node.channel_failed_to_connect(min(params.connect_timeout, state.remaining())):
                logger.warning(
                    "Failed to connect to node %s at %s during attempt #%d, backing off",
                    node.account_id,
                    node.address,
                    attempt,
                )
                client.network.increase_backoff(node)
                continue

            request = self._make_request(node)
            if self._request_listener is not None:
                request = self._request_listener(request)

            attempt_timeout = max(min(params.grpc_deadline, state.remaining()), 0.0)
            try:
                raw = await node.unary_call(self._method(), request, attempt_timeout)
            except grpc.RpcError as e:
                code = e.code() if callable(getattr(e, "code", None)) else None
                if code in TRANSIENT_GRPC_CODES:
                    logger.warning(
                        "Transport error %s from node %s during attempt #%d, backing off node",
                        code.name,
                        node.account_id,
                        attempt,
                    )
                    client.network.increase_backoff(node)
                    continue
                name = code.name if code is not None else "UNKNOWN"
                raise TransportError(f"Request to node {node.account_id} failed with {name}", code=name) from e

            client.network.decrease_backoff(node)

            response = self._parse_response(raw)
            if self._response_listener is not None:
                response = self._response_listener(response)

            status = self._map_response_status(response)
            execution = self._determine_status(status, response)
            logger.debug(
                "Received %s from node %s during attempt #%d (%s)",
                status_name(status),
                node.account_id,
                attempt,
                execution.value,
            )

            if execution is ExecutionStatus.SUCCESS:
                return self._map_response(response, node.account_id, request)

            if execution is ExecutionStatus.REQUEST_ERROR:
                raise PrecheckStatusError(status, self._transaction_id_for_error())

            if execution is ExecutionStatus.SERVER_ERROR:
                state.server_error_nodes.add(node_index)
                if len(state.server_error_nodes) < len(nodes):
                    logger.warning(
                        "Node %s not ready (%s) during attempt #%d, trying another node",
                        node.account_id,
                        status_name(status),
                        attempt,
                    )
                    continue
                # Every candidate is not ready; pace like a busy response.
                state.server_error_nodes.clear()

            delay = min(state.current_backoff, max(state.remaining(), 0.0))
            logger.warning(
                "Retrying in %.0f ms after %s from node %s during attempt #%d",
                delay * 1000,
                status_name(status),
                node.account_id,
                attempt,
            )
            await asyncio.sleep(delay)
            state.current_backoff = min(state.current_backoff * 2, params.max_backoff)
