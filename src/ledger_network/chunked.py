"""
Chunked transactions for payloads larger than one request may carry.

The payload is split into ``ceil(len / chunk_size)`` slices (at least one, so
an empty payload still produces one empty chunk). Chunk ``i`` carries the
transaction ID of chunk ``0`` plus ``i`` minimal time units and names chunk
``0``'s ID as its initial transaction ID, which is how the mirror side links
the pieces back together. Chunks are submitted strictly one after another.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from . import wire
from .config import DEFAULT_CHUNK_SIZE, DEFAULT_MAX_CHUNKS
from .errors import IllegalArgumentError, IllegalStateError
from .ids import AccountId
from .receipt import TransactionResponse
from .transaction import BodyBuilder, ChunkInfo, Transaction

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)


class ChunkedTransaction(Transaction):
    """A transaction whose data is split across sequentially submitted chunks."""

    def __init__(
        self,
        data: bytes = b"",
        body_builder: BodyBuilder | None = None,
        *,
        method: str = wire.SUBMIT_MESSAGE_METHOD,
        chunk_size: int | None = None,
        max_chunks: int | None = None,
        should_get_receipt: bool = False,
    ) -> None:
        super().__init__(body_builder, method=method)
        self._data = bytes(data)
        self._chunk_size = chunk_size
        self._max_chunks = max_chunks
        self._should_get_receipt = should_get_receipt
        if chunk_size is not None:
            self.set_chunk_size(chunk_size)
        if max_chunks is not None:
            self.set_max_chunks(max_chunks)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def data(self) -> bytes:
        return self._data

    def set_data(self, data: bytes | str):
        self._require_not_frozen()
        self._data = data.encode() if isinstance(data, str) else bytes(data)
        return self

    @property
    def chunk_size(self) -> int | None:
        return self._chunk_size

    def set_chunk_size(self, size: int):
        self._require_not_frozen()
        if size <= 0:
            raise IllegalArgumentError("chunk_size must be positive")
        self._chunk_size = size
        return self

    @property
    def max_chunks(self) -> int | None:
        return self._max_chunks

    def set_max_chunks(self, chunks: int):
        self._require_not_frozen()
        if chunks <= 0:
            raise IllegalArgumentError("max_chunks must be positive")
        self._max_chunks = chunks
        return self

    def set_should_get_receipt(self, should_get_receipt: bool):
        """Wait for each chunk's receipt before submitting the next one."""
        self._should_get_receipt = should_get_receipt
        return self

    def required_chunks(self) -> int:
        size = self._chunk_size or DEFAULT_CHUNK_SIZE
        return max(1, math.ceil(len(self._data) / size))

    def _check_chunk_limit(self) -> None:
        required = self.required_chunks()
        limit = self._max_chunks or DEFAULT_MAX_CHUNKS
        if required > limit:
            raise IllegalArgumentError(
                f"Cannot execute chunked transaction with more than {limit} chunks "
                f"(data requires {required} chunks of {self._chunk_size or DEFAULT_CHUNK_SIZE} bytes)"
            )

    # ------------------------------------------------------------------
    # Freezing
    # ------------------------------------------------------------------

    def _chunk_count(self) -> int:
        return self.required_chunks()

    def _chunk_info(self, index: int) -> ChunkInfo:
        size = self._chunk_size or DEFAULT_CHUNK_SIZE
        start = index * size
        return ChunkInfo(
            index=index,
            total=self.required_chunks(),
            initial_transaction_id=self._transaction_ids[0],
            data=self._data[start : min(start + size, len(self._data))],
        )

    def freeze(self):
        if not self._frozen:
            self._check_chunk_limit()
        return super().freeze()

    async def freeze_with(self, client: Client):
        if self._frozen:
            return self
        if self._chunk_size is None:
            self._chunk_size = client.config.chunk_size
        if self._max_chunks is None:
            self._max_chunks = client.config.max_chunks
        # Reject before node selection or any other I/O.
        self._check_chunk_limit()
        return await super().freeze_with(client)

    # ------------------------------------------------------------------
    # Hashes
    # ------------------------------------------------------------------

    def get_all_transaction_hashes_per_node(self) -> list[dict[AccountId, bytes]]:
        """Per-node hashes for every chunk, in chunk order."""
        if not self._frozen:
            raise IllegalStateError("Transaction must be frozen to compute its hash")
        return [self._hashes_for_chunk(chunk) for chunk in range(len(self._bodies))]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_all(self, client: Client, timeout: float | None = None) -> list[TransactionResponse]:
        """Submit every chunk in order and return one response per chunk.

        Each chunk gets its own dispatch deadline. A failure on any chunk
        aborts the remaining chunks and propagates; there is no resume.
        """
        await self.freeze_with(client)

        total = len(self._bodies)
        responses: list[TransactionResponse] = []
        try:
            for index in range(total):
                self._current_chunk = index
                logger.debug("Submitting chunk %d/%d of %s", index + 1, total, self._transaction_ids[0])
                response = await super().execute(client, timeout)
                if self._should_get_receipt:
                    await response.get_receipt(client, timeout)
                responses.append(response)
        finally:
            self._current_chunk = 0
        return responses

    async def execute(self, client: Client, timeout: float | None = None) -> TransactionResponse:
        """Submit every chunk and return the response for the first one."""
        return (await self.execute_all(client, timeout))[0]
