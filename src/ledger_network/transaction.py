"""
Signed transactions.

A ``Transaction`` owns one body per (chunk, target node): the body carries the
node's account ID, so each target needs its own signed bytes. Bodies come
from a caller-supplied builder; this module only freezes them, signs each
exactly once, and hands the right variant to the dispatcher for whichever
node an attempt lands on.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from . import crypto, wire
from .errors import IllegalStateError
from .executable import Executable
from .ids import AccountId, TransactionId
from .receipt import TransactionResponse
from .status import Status

if TYPE_CHECKING:
    from .client import Client
    from .crypto import Signer
    from .node.node import Node

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkInfo:
    """Position of one chunk within a chunked transaction."""

    index: int
    total: int
    initial_transaction_id: TransactionId
    data: bytes

    @property
    def number(self) -> int:
        """1-based chunk number, as written on the wire."""
        return self.index + 1

    def to_protobuf(self):
        return wire.ConsensusMessageChunkInfo(
            initialTransactionID=self.initial_transaction_id.to_protobuf(),
            total=self.total,
            number=self.number,
        )


@dataclass(frozen=True)
class BodyContext:
    """Everything a body builder needs to produce one transaction body."""

    transaction_id: TransactionId
    node_account_id: AccountId
    chunk: ChunkInfo | None = None


#: Produces serialized transaction-body bytes for one (chunk, node) pair.
BodyBuilder = Callable[[BodyContext], bytes]


class Transaction(Executable[TransactionResponse]):
    """A transaction submitted to consensus nodes.

    Must be frozen before it is signed or executed; ``execute`` freezes with
    the client's operator automatically. Once frozen, identifiers, target
    nodes and body content can no longer change.
    """

    def __init__(self, body_builder: BodyBuilder | None = None, *, method: str = wire.SUBMIT_MESSAGE_METHOD) -> None:
        super().__init__()
        self._body_builder = body_builder
        self._grpc_method = method
        self._transaction_ids: list[TransactionId] = []
        self._signers: list[Signer] = []
        self._bodies: list[list[bytes]] = []
        self._signed: dict[tuple[int, int], bytes] = {}
        self._current_chunk = 0
        self._frozen = False

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def _require_not_frozen(self) -> None:
        if self._frozen:
            raise IllegalStateError("Transaction is immutable; it has been frozen")

    def set_body_builder(self, body_builder: BodyBuilder):
        self._require_not_frozen()
        self._body_builder = body_builder
        return self

    @property
    def transaction_id(self) -> TransactionId | None:
        return self._transaction_ids[0] if self._transaction_ids else None

    def set_transaction_id(self, transaction_id: TransactionId):
        self._require_not_frozen()
        self._transaction_ids = [transaction_id]
        return self

    def set_node_account_ids(self, account_ids: list[AccountId]):
        self._require_not_frozen()
        return super().set_node_account_ids(account_ids)

    def _chunk_count(self) -> int:
        return 1

    def _chunk_info(self, index: int) -> ChunkInfo | None:
        return None

    def freeze(self):
        """Build every body. Transaction ID and node IDs must already be set."""
        if self._frozen:
            return self
        if not self._transaction_ids:
            raise IllegalStateError("Transaction ID must be set before freezing without a client")
        if not self._node_account_ids:
            raise IllegalStateError("Node account IDs must be set before freezing without a client")
        if self._body_builder is None:
            raise IllegalStateError("No body builder set")

        base = self._transaction_ids[0]
        chunks = self._chunk_count()
        self._transaction_ids = [base.plus(i) for i in range(chunks)]

        self._bodies = []
        for index, transaction_id in enumerate(self._transaction_ids):
            chunk = self._chunk_info(index)
            self._bodies.append(
                [
                    self._body_builder(BodyContext(transaction_id, node_account_id, chunk))
                    for node_account_id in self._node_account_ids
                ]
            )
        self._signed.clear()
        self._frozen = True
        logger.debug(
            "Froze transaction %s for %d node(s) in %d chunk(s)",
            base,
            len(self._node_account_ids),
            chunks,
        )
        return self

    async def freeze_with(self, client: Client):
        """Freeze using the client's operator and network for anything unset."""
        if self._frozen:
            return self
        if not self._transaction_ids:
            if client.operator_account_id is None:
                raise IllegalStateError("No transaction ID set and the client has no operator")
            self._transaction_ids = [TransactionId.generate(client.operator_account_id)]
        if not self._node_account_ids:
            self._node_account_ids = await client.network.node_account_ids_for_execute()
        if client.operator_signer is not None and client.operator_signer not in self._signers:
            self._signers.insert(0, client.operator_signer)
        return self.freeze()

    def sign(self, signer: Signer):
        """Add a signature to every body. Requires a frozen transaction."""
        if not self._frozen:
            raise IllegalStateError("Transaction must be frozen before signing")
        if signer not in self._signers:
            self._signers.append(signer)
            self._signed.clear()
        return self

    def _signed_transaction(self, chunk: int, node_index: int) -> bytes:
        key = (chunk, node_index)
        signed = self._signed.get(key)
        if signed is None:
            signed = crypto.sign_body(self._bodies[chunk][node_index], self._signers)
            self._signed[key] = signed
        return signed

    def to_bytes(self) -> list[bytes]:
        """Signed ``Transaction`` bytes for every (chunk, node) pair, chunk-major."""
        if not self._frozen:
            raise IllegalStateError("Transaction must be frozen to serialize")
        return [
            self._signed_transaction(chunk, node_index)
            for chunk in range(len(self._bodies))
            for node_index in range(len(self._node_account_ids))
        ]

    # ------------------------------------------------------------------
    # Hashes
    # ------------------------------------------------------------------

    def _hashes_for_chunk(self, chunk: int) -> dict[AccountId, bytes]:
        return {
            node_account_id: crypto.transaction_hash(self._signed_transaction(chunk, node_index))
            for node_index, node_account_id in enumerate(self._node_account_ids)
        }

    def _require_single_chunk(self) -> None:
        if not self._frozen:
            raise IllegalStateError("Transaction must be frozen to compute its hash")
        if len(self._bodies) > 1:
            raise IllegalStateError(
                "A single transaction hash is not available for a transaction of "
                f"{len(self._bodies)} chunks; use get_all_transaction_hashes_per_node()"
            )

    def get_transaction_hash(self) -> bytes:
        """SHA-384 hash of the body sent to the first target node."""
        self._require_single_chunk()
        return crypto.transaction_hash(self._signed_transaction(0, 0))

    def get_transaction_hash_per_node(self) -> dict[AccountId, bytes]:
        self._require_single_chunk()
        return self._hashes_for_chunk(0)

    # ------------------------------------------------------------------
    # Dispatch hooks
    # ------------------------------------------------------------------

    async def _on_execute(self, client: Client) -> None:
        await self.freeze_with(client)

    def _method(self) -> str:
        return self._grpc_method

    def _make_request(self, node: Node) -> bytes:
        try:
            node_index = self._node_account_ids.index(node.account_id)
        except ValueError:
            raise IllegalStateError(f"Transaction was not frozen for node {node.account_id}") from None
        return self._signed_transaction(self._current_chunk, node_index)

    def _parse_response(self, raw: bytes) -> Any:
        return wire.TransactionResponse.FromString(raw)

    def _map_response_status(self, response: Any) -> Status | int:
        return Status.from_code(response.nodeTransactionPrecheckCode)

    def _map_response(self, response: Any, node_account_id: AccountId, request: bytes) -> TransactionResponse:
        return TransactionResponse(
            node_id=node_account_id,
            transaction_id=self._transaction_ids[self._current_chunk],
            transaction_hash=crypto.transaction_hash(request),
        )

    def _transaction_id_for_error(self) -> TransactionId | None:
        if not self._transaction_ids:
            return None
        return self._transaction_ids[self._current_chunk]
