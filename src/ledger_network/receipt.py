"""
Transaction responses and receipt polling.

A node accepting a transaction at precheck only means it will forward it to
consensus. The receipt query polls the same node until the outcome is known,
retrying with call backoff while the receipt is still pending.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from . import wire
from .errors import IllegalStateError, ReceiptStatusError
from .executable import Executable
from .ids import AccountId, TopicId, TransactionId
from .status import ExecutionStatus, Status, classify_receipt_status, status_name

if TYPE_CHECKING:
    from .client import Client
    from .node.node import Node

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransactionReceipt:
    """Consensus outcome of a transaction."""

    transaction_id: TransactionId | None
    status: Status | int
    account_id: AccountId | None = None
    topic_id: TopicId | None = None
    topic_sequence_number: int = 0
    topic_running_hash: bytes = b""

    @classmethod
    def from_protobuf(cls, proto, transaction_id: TransactionId | None = None) -> TransactionReceipt:
        return cls(
            transaction_id=transaction_id,
            status=Status.from_code(proto.status),
            account_id=AccountId.from_protobuf(proto.accountID) if proto.HasField("accountID") else None,
            topic_id=TopicId.from_protobuf(proto.topicID) if proto.HasField("topicID") else None,
            topic_sequence_number=proto.topicSequenceNumber,
            topic_running_hash=proto.topicRunningHash,
        )

    def validate_status(self) -> TransactionReceipt:
        """Raise ``ReceiptStatusError`` unless the receipt status is SUCCESS."""
        if self.status != Status.SUCCESS:
            raise ReceiptStatusError(self.status, self.transaction_id)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": str(self.transaction_id) if self.transaction_id else None,
            "status": status_name(self.status),
            "account_id": str(self.account_id) if self.account_id else None,
            "topic_id": str(self.topic_id) if self.topic_id else None,
            "topic_sequence_number": self.topic_sequence_number,
            "topic_running_hash": self.topic_running_hash.hex(),
        }


class TransactionReceiptQuery(Executable[TransactionReceipt]):
    """Poll a node for the receipt of a submitted transaction.

    Receipt queries are free, so the request carries no payment.
    """

    def __init__(self, transaction_id: TransactionId | None = None) -> None:
        super().__init__()
        self._transaction_id = transaction_id
        self._validate_status = True

    @property
    def transaction_id(self) -> TransactionId | None:
        return self._transaction_id

    def set_transaction_id(self, transaction_id: TransactionId):
        self._transaction_id = transaction_id
        return self

    def set_validate_status(self, validate: bool):
        """Whether a final non-SUCCESS receipt raises ``ReceiptStatusError``."""
        self._validate_status = validate
        return self

    async def _on_execute(self, client: Client) -> None:
        if self._transaction_id is None:
            raise IllegalStateError("Receipt query requires a transaction ID")
        await super()._on_execute(client)

    def _method(self) -> str:
        return wire.GET_RECEIPT_METHOD

    def _make_request(self, node: Node) -> bytes:
        query = wire.Query(
            transactionGetReceipt=wire.TransactionGetReceiptQuery(
                header=wire.QueryHeader(),
                transactionID=self._transaction_id.to_protobuf(),
            )
        )
        return query.SerializeToString()

    def _parse_response(self, raw: bytes) -> Any:
        return wire.Response.FromString(raw)

    def _map_response_status(self, response: Any) -> Status | int:
        return Status.from_code(response.transactionGetReceipt.header.nodeTransactionPrecheckCode)

    def _determine_status(self, status: Status | int, response: Any) -> ExecutionStatus:
        receipt_status = Status.from_code(response.transactionGetReceipt.receipt.status)
        return classify_receipt_status(status, receipt_status)

    def _map_response(self, response: Any, node_account_id: AccountId, request: bytes) -> TransactionReceipt:
        receipt = TransactionReceipt.from_protobuf(response.transactionGetReceipt.receipt, self._transaction_id)
        logger.debug("Receipt for %s from node %s: %s", self._transaction_id, node_account_id, status_name(receipt.status))
        if self._validate_status:
            receipt.validate_status()
        return receipt

    def _transaction_id_for_error(self) -> TransactionId | None:
        return self._transaction_id


@dataclass(frozen=True)
class TransactionResponse:
    """What a node returned when it accepted a transaction at precheck."""

    node_id: AccountId
    transaction_id: TransactionId
    transaction_hash: bytes
    validate_status: bool = field(default=True, compare=False)

    def get_receipt_query(self) -> TransactionReceiptQuery:
        return (
            TransactionReceiptQuery(self.transaction_id)
            .set_node_account_ids([self.node_id])
            .set_validate_status(self.validate_status)
        )

    async def get_receipt(self, client: Client, timeout: float | None = None) -> TransactionReceipt:
        """Wait for the receipt from the node that accepted the transaction."""
        return await self.get_receipt_query().execute(client, timeout)

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": str(self.node_id),
            "transaction_id": str(self.transaction_id),
            "transaction_hash": self.transaction_hash.hex(),
        }
