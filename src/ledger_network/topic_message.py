"""
Topic messages delivered by a subscription.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from . import wire
from .ids import TransactionId


@dataclass(frozen=True)
class TopicMessageChunk:
    """One part of a topic message as pushed by the mirror node."""

    consensus_timestamp_ns: int
    content_size: int
    running_hash: bytes
    sequence_number: int

    @classmethod
    def from_protobuf(cls, response) -> TopicMessageChunk:
        return cls(
            consensus_timestamp_ns=wire.timestamp_to_nanos(response.consensusTimestamp),
            content_size=len(response.message),
            running_hash=response.runningHash,
            sequence_number=response.sequenceNumber,
        )


@dataclass(frozen=True)
class TopicMessage:
    """A complete message, reassembled from its chunks if it had several.

    Timestamp, running hash and sequence number are those of the last chunk.
    """

    consensus_timestamp_ns: int
    contents: bytes
    running_hash: bytes
    sequence_number: int
    chunks: list[TopicMessageChunk] = field(default_factory=list)
    transaction_id: TransactionId | None = None

    @classmethod
    def of_single(cls, response) -> TopicMessage:
        transaction_id = None
        if response.HasField("chunkInfo") and response.chunkInfo.HasField("initialTransactionID"):
            transaction_id = TransactionId.from_protobuf(response.chunkInfo.initialTransactionID)
        return cls(
            consensus_timestamp_ns=wire.timestamp_to_nanos(response.consensusTimestamp),
            contents=response.message,
            running_hash=response.runningHash,
            sequence_number=response.sequenceNumber,
            chunks=[TopicMessageChunk.from_protobuf(response)],
            transaction_id=transaction_id,
        )

    @classmethod
    def of_many(cls, responses: list) -> TopicMessage:
        """Reassemble ``responses`` in the order they arrived."""
        if not responses:
            raise ValueError("Cannot build a topic message from zero chunks")
        first, last = responses[0], responses[-1]
        transaction_id = None
        if first.HasField("chunkInfo") and first.chunkInfo.HasField("initialTransactionID"):
            transaction_id = TransactionId.from_protobuf(first.chunkInfo.initialTransactionID)
        return cls(
            consensus_timestamp_ns=wire.timestamp_to_nanos(last.consensusTimestamp),
            contents=b"".join(r.message for r in responses),
            running_hash=last.runningHash,
            sequence_number=last.sequenceNumber,
            chunks=[TopicMessageChunk.from_protobuf(r) for r in responses],
            transaction_id=transaction_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "consensus_timestamp_ns": self.consensus_timestamp_ns,
            "contents": self.contents.hex(),
            "running_hash": self.running_hash.hex(),
            "sequence_number": self.sequence_number,
            "chunks": len(self.chunks),
            "transaction_id": str(self.transaction_id) if self.transaction_id else None,
        }
