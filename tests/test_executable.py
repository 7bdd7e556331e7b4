"""Tests for request dispatch with failover and retry.

Covers:
- Parameter precedence and validation
- Node failover on transport errors
- Busy-response pacing with call backoff
- Not-ready escalation
- Fatal precheck and exhaustion errors
- Request and response listeners
"""

from __future__ import annotations

from unittest.mock import AsyncMock, call, patch

import grpc
import pytest

from ledger_network import wire
from ledger_network.client import Client
from ledger_network.config import ClientConfig
from ledger_network.errors import (
    IllegalArgumentError,
    IllegalStateError,
    MaxAttemptsExceededError,
    PrecheckStatusError,
    TransportError,
)
from ledger_network.ids import AccountId, TransactionId
from ledger_network.status import Status
from ledger_network.transaction import Transaction

NODE_IDS = [AccountId(0, 0, 3), AccountId(0, 0, 4), AccountId(0, 0, 5)]
TX_ID = TransactionId(AccountId(0, 0, 1001), 1_700_000_000_000_000_000)


class FakeRpcError(grpc.RpcError):
    def __init__(self, code: grpc.StatusCode, details: str = "") -> None:
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self) -> grpc.StatusCode:
        return self._code

    def details(self) -> str:
        return self._details


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def precheck(status: Status) -> bytes:
    return wire.TransactionResponse(nodeTransactionPrecheckCode=int(status)).SerializeToString()


def body_for(context) -> bytes:
    return f"body for {context.node_account_id}".encode()


def sent_body(request: bytes) -> bytes:
    transaction = wire.Transaction.FromString(request)
    return wire.SignedTransaction.FromString(transaction.signedTransactionBytes).bodyBytes


@pytest.fixture
def client():
    network = {f"10.0.0.{i + 1}:50211": account_id for i, account_id in enumerate(NODE_IDS)}
    return Client.for_network(network)


@pytest.fixture
def nodes(client):
    """Consensus nodes with stubbed transport, in NODE_IDS order."""
    stubbed = [client.network.node_proxies(account_id)[0] for account_id in NODE_IDS]
    for node in stubbed:
        node.channel_failed_to_connect = AsyncMock(return_value=False)
        node.unary_call = AsyncMock(return_value=precheck(Status.OK))
    return stubbed


def make_transaction(node_ids=NODE_IDS) -> Transaction:
    return Transaction(body_for).set_transaction_id(TX_ID).set_node_account_ids(list(node_ids))


# =============================================================================
# Configuration
# =============================================================================


class TestExecutableConfiguration:
    """Tests for per-request settings."""

    def test_defaults_are_unset(self) -> None:
        transaction = Transaction(body_for)
        assert transaction.max_attempts is None
        assert transaction.min_backoff is None
        assert transaction.max_backoff is None

    def test_min_backoff_above_max_rejected(self) -> None:
        transaction = Transaction(body_for).set_max_backoff(1.0)
        with pytest.raises(IllegalArgumentError):
            transaction.set_min_backoff(2.0)

    def test_max_backoff_below_min_rejected(self) -> None:
        transaction = Transaction(body_for).set_min_backoff(1.0)
        with pytest.raises(IllegalArgumentError):
            transaction.set_max_backoff(0.5)

    def test_max_backoff_below_default_min_rejected(self) -> None:
        with pytest.raises(IllegalArgumentError):
            Transaction(body_for).set_max_backoff(0.1)

    def test_invalid_attempts_and_deadline_rejected(self) -> None:
        with pytest.raises(IllegalArgumentError):
            Transaction(body_for).set_max_attempts(0)
        with pytest.raises(IllegalArgumentError):
            Transaction(body_for).set_grpc_deadline(0)

    def test_precedence_request_then_client(self, client) -> None:
        client.config = ClientConfig(max_attempts=4, min_backoff=0.5, max_backoff=2.0)
        transaction = Transaction(body_for).set_max_attempts(7)
        params = transaction._execution_parameters(client)
        assert params.max_attempts == 7
        assert params.min_backoff == 0.5
        assert params.max_backoff == 2.0

    def test_inconsistent_resolved_backoff_rejected(self, client) -> None:
        client.config = ClientConfig(min_backoff=0.5, max_backoff=0.5)
        transaction = Transaction(body_for).set_min_backoff(1.0)
        with pytest.raises(IllegalArgumentError):
            transaction._execution_parameters(client)


# =============================================================================
# Failover
# =============================================================================


class TestFailover:
    """Tests for node failover on transport errors."""

    @pytest.mark.asyncio
    async def test_fails_over_to_third_node(self, client, nodes) -> None:
        """Nodes 0 and 1 unavailable, node 2 succeeds on the third attempt."""
        nodes[0].unary_call.side_effect = FakeRpcError(grpc.StatusCode.UNAVAILABLE)
        nodes[1].unary_call.side_effect = FakeRpcError(grpc.StatusCode.UNAVAILABLE)

        with patch.object(client.network, "decrease_backoff", wraps=client.network.decrease_backoff) as decrease:
            response = await make_transaction().execute(client)

        assert response.node_id == NODE_IDS[2]
        assert response.transaction_id == TX_ID
        assert nodes[0].bad_attempt_count == 1
        assert nodes[1].bad_attempt_count == 1
        assert nodes[2].bad_attempt_count == 0
        decrease.assert_called_once_with(nodes[2])
        for node in nodes:
            node.unary_call.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_each_node_gets_its_own_signed_body(self, client, nodes) -> None:
        nodes[0].unary_call.side_effect = FakeRpcError(grpc.StatusCode.UNAVAILABLE)

        await make_transaction().execute(client)

        assert sent_body(nodes[0].unary_call.await_args.args[1]) == b"body for 0.0.3"
        assert sent_body(nodes[1].unary_call.await_args.args[1]) == b"body for 0.0.4"

    @pytest.mark.asyncio
    async def test_unconnected_node_is_backed_off_without_sending(self, client, nodes) -> None:
        nodes[0].channel_failed_to_connect.return_value = True

        response = await make_transaction().execute(client)

        assert response.node_id == NODE_IDS[1]
        nodes[0].unary_call.assert_not_awaited()
        assert nodes[0].bad_attempt_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code",
        [
            grpc.StatusCode.UNAVAILABLE,
            grpc.StatusCode.RESOURCE_EXHAUSTED,
            grpc.StatusCode.INTERNAL,
        ],
    )
    async def test_transient_codes_fail_over(self, client, nodes, code) -> None:
        nodes[0].unary_call.side_effect = FakeRpcError(code)
        response = await make_transaction().execute(client)
        assert response.node_id == NODE_IDS[1]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "code",
        [
            grpc.StatusCode.UNAUTHENTICATED,
            grpc.StatusCode.DEADLINE_EXCEEDED,
            grpc.StatusCode.INVALID_ARGUMENT,
        ],
    )
    async def test_non_transient_code_raises_transport_error(self, client, nodes, code) -> None:
        nodes[0].unary_call.side_effect = FakeRpcError(code, "rejected")

        with pytest.raises(TransportError) as exc_info:
            await make_transaction().execute(client)

        assert exc_info.value.code == code.name
        assert nodes[0].bad_attempt_count == 0
        nodes[1].unary_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_node_is_illegal_state(self, client, nodes) -> None:
        transaction = make_transaction([AccountId(0, 0, 99)])
        with pytest.raises(IllegalStateError):
            await transaction.execute(client)

    @pytest.mark.asyncio
    async def test_single_node_uses_all_proxies(self) -> None:
        client = Client.for_network({"10.0.0.1:50211": "0.0.3", "10.0.0.2:50211": "0.0.3"})
        proxies = client.network.node_proxies(AccountId(0, 0, 3))
        for proxy in proxies:
            proxy.channel_failed_to_connect = AsyncMock(return_value=False)
        proxies[0].unary_call = AsyncMock(side_effect=FakeRpcError(grpc.StatusCode.UNAVAILABLE))
        proxies[1].unary_call = AsyncMock(return_value=precheck(Status.OK))

        response = await make_transaction([AccountId(0, 0, 3)]).execute(client)

        assert response.node_id == AccountId(0, 0, 3)
        proxies[1].unary_call.assert_awaited_once()


# =============================================================================
# Node selection
# =============================================================================


class TestNodeSelection:
    """Tests for picking a node when some are backed off."""

    @pytest.fixture
    def clock(self, nodes):
        fake = FakeClock()
        for node in nodes:
            node.health.clock = fake
        return fake

    @pytest.mark.parametrize(("attempt", "expected"), [(0, 0), (1, 1), (2, 2), (3, 0), (7, 1)])
    def test_starts_at_attempt_modulo_node_count(self, nodes, attempt, expected) -> None:
        assert Transaction._node_index_for_execute(nodes, attempt) == expected

    def test_skips_unhealthy_nodes_going_forward(self, client, nodes, clock) -> None:
        client.network.increase_backoff(nodes[0])
        assert Transaction._node_index_for_execute(nodes, 0) == 1
        assert Transaction._node_index_for_execute(nodes, 3) == 1

    @pytest.mark.asyncio
    async def test_waits_for_node_with_least_backoff(self, client, nodes, clock) -> None:
        """Backed off 3, 1 and 2 times: the node with one failure is used after 8s."""
        for node, failures in zip(nodes, (3, 1, 2)):
            for _ in range(failures):
                client.network.increase_backoff(node)

        with patch("ledger_network.executable.asyncio.sleep", side_effect=clock.advance) as sleep:
            response = await make_transaction().execute(client)

        assert response.node_id == NODE_IDS[1]
        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(8.0)
        nodes[0].unary_call.assert_not_awaited()
        nodes[2].unary_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_scan_does_not_wrap_around(self, client, nodes, clock) -> None:
        """On the third attempt only the last node is scanned, even though the first is healthy."""
        client.network.increase_backoff(nodes[2])
        nodes[0].unary_call.return_value = precheck(Status.PLATFORM_NOT_ACTIVE)
        nodes[1].unary_call.return_value = precheck(Status.PLATFORM_NOT_ACTIVE)

        with patch("ledger_network.executable.asyncio.sleep", side_effect=clock.advance) as sleep:
            response = await make_transaction().execute(client)

        assert response.node_id == NODE_IDS[2]
        sleep.assert_awaited_once()
        assert sleep.await_args.args[0] == pytest.approx(8.0)
        nodes[0].unary_call.assert_awaited_once()


# =============================================================================
# Retry pacing
# =============================================================================


class TestRetryPacing:
    """Tests for busy and not-ready responses."""

    @pytest.mark.asyncio
    async def test_busy_sleeps_and_doubles_call_backoff(self, client, nodes) -> None:
        nodes[0].unary_call.side_effect = [precheck(Status.BUSY), precheck(Status.BUSY), precheck(Status.OK)]

        with patch("ledger_network.executable.asyncio.sleep", new_callable=AsyncMock) as sleep:
            response = await make_transaction([NODE_IDS[0]]).execute(client)

        assert response.node_id == NODE_IDS[0]
        assert sleep.await_args_list == [call(0.25), call(0.5)]
        # Busy responses are a successful round trip for the node.
        assert nodes[0].bad_attempt_count == 0

    @pytest.mark.asyncio
    async def test_call_backoff_capped_at_max(self, client, nodes) -> None:
        nodes[0].unary_call.side_effect = [precheck(Status.THROTTLED_AT_CONSENSUS)] * 4 + [precheck(Status.OK)]
        transaction = make_transaction([NODE_IDS[0]]).set_min_backoff(1.0).set_max_backoff(2.0)

        with patch("ledger_network.executable.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await transaction.execute(client)

        assert sleep.await_args_list == [call(1.0), call(2.0), call(2.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_not_ready_moves_on_without_sleeping(self, client, nodes) -> None:
        nodes[0].unary_call.return_value = precheck(Status.PLATFORM_NOT_ACTIVE)

        with patch("ledger_network.executable.asyncio.sleep", new_callable=AsyncMock) as sleep:
            response = await make_transaction().execute(client)

        assert response.node_id == NODE_IDS[1]
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_nodes_not_ready_falls_back_to_backoff(self, client, nodes) -> None:
        nodes[0].unary_call.side_effect = [precheck(Status.PLATFORM_TRANSACTION_NOT_CREATED), precheck(Status.OK)]
        nodes[1].unary_call.return_value = precheck(Status.PLATFORM_NOT_ACTIVE)

        with patch("ledger_network.executable.asyncio.sleep", new_callable=AsyncMock) as sleep:
            response = await make_transaction(NODE_IDS[:2]).execute(client)

        assert response.node_id == NODE_IDS[0]
        assert sleep.await_args_list == [call(0.25)]


# =============================================================================
# Failures
# =============================================================================


class TestFailures:
    """Tests for errors surfaced to callers."""

    @pytest.mark.asyncio
    async def test_fatal_precheck_is_not_retried(self, client, nodes) -> None:
        nodes[0].unary_call.return_value = precheck(Status.INVALID_SIGNATURE)

        with pytest.raises(PrecheckStatusError) as exc_info:
            await make_transaction().execute(client)

        assert exc_info.value.status is Status.INVALID_SIGNATURE
        assert exc_info.value.transaction_id == TX_ID
        nodes[0].unary_call.assert_awaited_once()
        nodes[1].unary_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unnamed_precheck_code_is_fatal(self, client, nodes) -> None:
        nodes[0].unary_call.return_value = wire.TransactionResponse(nodeTransactionPrecheckCode=4242).SerializeToString()

        with pytest.raises(PrecheckStatusError) as exc_info:
            await make_transaction().execute(client)

        assert exc_info.value.status == 4242

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_attempts", [1, 3, 5])
    async def test_attempt_bound(self, client, nodes, max_attempts) -> None:
        for node in nodes:
            node.unary_call.side_effect = FakeRpcError(grpc.StatusCode.UNAVAILABLE)
        transaction = make_transaction().set_max_attempts(max_attempts)

        with patch("ledger_network.executable.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(MaxAttemptsExceededError) as exc_info:
                await transaction.execute(client)

        submitted = sum(node.unary_call.await_count for node in nodes)
        assert submitted == max_attempts
        assert exc_info.value.attempts == max_attempts
        assert not exc_info.value.timed_out

    @pytest.mark.asyncio
    async def test_attempt_bound_from_client_config(self, client, nodes) -> None:
        client.config = ClientConfig(max_attempts=2)
        nodes[0].unary_call.return_value = precheck(Status.BUSY)

        with patch("ledger_network.executable.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(MaxAttemptsExceededError):
                await make_transaction([NODE_IDS[0]]).execute(client)

        assert nodes[0].unary_call.await_count == 2

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self, client, nodes) -> None:
        with pytest.raises(MaxAttemptsExceededError) as exc_info:
            await make_transaction().execute(client, timeout=0)

        assert exc_info.value.timed_out
        for node in nodes:
            node.unary_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_per_attempt_deadline_capped(self, client, nodes) -> None:
        transaction = make_transaction().set_grpc_deadline(3.0)
        await transaction.execute(client, timeout=60)

        timeout = nodes[0].unary_call.await_args.args[2]
        assert 0 < timeout <= 3.0


# =============================================================================
# Listeners
# =============================================================================


class TestListeners:
    """Tests for request and response listeners."""

    @pytest.mark.asyncio
    async def test_request_listener_can_replace_request(self, client, nodes) -> None:
        seen = []

        def listener(request: bytes) -> bytes:
            seen.append(request)
            return request

        await make_transaction().set_request_listener(listener).execute(client)

        assert seen == [nodes[0].unary_call.await_args.args[1]]

    @pytest.mark.asyncio
    async def test_response_listener_can_replace_response(self, client, nodes) -> None:
        nodes[0].unary_call.return_value = precheck(Status.INVALID_SIGNATURE)

        def listener(response):
            return wire.TransactionResponse(nodeTransactionPrecheckCode=int(Status.OK))

        response = await make_transaction().set_response_listener(listener).execute(client)

        assert response.node_id == NODE_IDS[0]
