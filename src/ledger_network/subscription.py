"""
Topic subscriptions over mirror-node server streams.

A subscription is a reconnect loop around one server stream at a time:

    CONNECTING -> STREAMING -> (RECONNECTING -> CONNECTING -> STREAMING)* -> COMPLETED | FAILED

Every pushed message advances the cursor (start time and remaining limit),
so a reconnect resumes after the last delivered message instead of
replaying the topic from the beginning. Multi-part messages are buffered by
their initial transaction ID and emitted once all parts have arrived.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import grpc

from . import wire
from .config import DEFAULT_MIN_BACKOFF
from .errors import IllegalArgumentError, SubscriptionError
from .ids import MINIMUM_TIME_UNIT_NS, TopicId, TransactionId
from .topic_message import TopicMessage

if TYPE_CHECKING:
    from .client import Client

logger = logging.getLogger(__name__)

MessageHandler = Callable[[TopicMessage], Any]
ErrorHandler = Callable[[BaseException, TopicId], Any]
RetryHandler = Callable[[BaseException], bool]
CompletionHandler = Callable[[], Any]

RETRYABLE_STREAM_CODES = frozenset(
    {
        grpc.StatusCode.NOT_FOUND,
        grpc.StatusCode.RESOURCE_EXHAUSTED,
        grpc.StatusCode.UNAVAILABLE,
        grpc.StatusCode.INTERNAL,
    }
)


class SubscriptionState(StrEnum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"
    COMPLETED = "completed"
    FAILED = "failed"


def default_retry_handler(error: BaseException) -> bool:
    """Retry on transport codes that a fresh connection may fix."""
    code = getattr(error, "code", None)
    if not callable(code):
        return False
    return code() in RETRYABLE_STREAM_CODES


def _default_error_handler(error: BaseException, topic_id: TopicId) -> None:
    logger.error("Subscription to topic %s failed: %s", topic_id, error)


def _default_completion_handler() -> None:
    logger.info("Subscription completed")


@dataclass
class SubscriptionCursor:
    """Resume point of a subscription, advanced as messages are delivered.

    A bounded cursor counts ``limit`` down to zero and is then exhausted.
    Zero on the wire means unbounded, so an exhausted cursor must never be
    sent as a request.
    """

    start_ns: int | None = None
    end_ns: int | None = None
    limit: int = 0
    bounded: bool = False

    @property
    def exhausted(self) -> bool:
        return self.bounded and self.limit <= 0

    def advance(self, response) -> None:
        if response.HasField("consensusTimestamp"):
            self.start_ns = wire.timestamp_to_nanos(response.consensusTimestamp) + MINIMUM_TIME_UNIT_NS
        if self.bounded and self.limit > 0:
            self.limit -= 1


class SubscriptionHandle:
    """Controls a running subscription."""

    def __init__(self, topic_id: TopicId) -> None:
        self.topic_id = topic_id
        self._state = SubscriptionState.CONNECTING
        self._task: asyncio.Task | None = None
        self._call: Any = None
        self._unsubscribed = False

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def unsubscribed(self) -> bool:
        return self._unsubscribed

    def _set_state(self, state: SubscriptionState) -> None:
        if state is not self._state:
            logger.debug("Subscription to %s: %s -> %s", self.topic_id, self._state.value, state.value)
            self._state = state

    def unsubscribe(self) -> None:
        """Cancel the in-flight stream and stop any further reconnects."""
        if self._unsubscribed:
            return
        self._unsubscribed = True
        if self._call is not None:
            self._call.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> SubscriptionState:
        """Wait for the subscription to finish and return its final state."""
        if self._task is not None:
            await asyncio.wait([self._task])
        return self._state

    def done(self) -> bool:
        return self._task is not None and self._task.done()


class TopicMessageQuery:
    """Subscribe to the messages of a consensus topic."""

    def __init__(self, topic_id: TopicId | None = None) -> None:
        self._topic_id = topic_id
        self._start_ns: int | None = None
        self._end_ns: int | None = None
        self._limit = 0
        self._max_attempts: int | None = None
        self._max_backoff: float | None = None
        self._error_handler: ErrorHandler = _default_error_handler
        self._retry_handler: RetryHandler = default_retry_handler
        self._completion_handler: CompletionHandler = _default_completion_handler

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def topic_id(self) -> TopicId | None:
        return self._topic_id

    def set_topic_id(self, topic_id: TopicId):
        self._topic_id = topic_id
        return self

    def set_start_time(self, start_ns: int):
        """Only deliver messages reaching consensus at or after ``start_ns``."""
        self._start_ns = start_ns
        return self

    def set_end_time(self, end_ns: int):
        self._end_ns = end_ns
        return self

    def set_limit(self, limit: int):
        if limit < 0:
            raise IllegalArgumentError("limit must not be negative")
        self._limit = limit
        return self

    def set_max_attempts(self, attempts: int):
        if attempts < 0:
            raise IllegalArgumentError("max_attempts must not be negative")
        self._max_attempts = attempts
        return self

    def set_max_backoff(self, backoff: float):
        if backoff < 0:
            raise IllegalArgumentError("max_backoff must not be negative")
        self._max_backoff = backoff
        return self

    def set_error_handler(self, handler: ErrorHandler):
        self._error_handler = handler
        return self

    def set_retry_handler(self, handler: RetryHandler):
        self._retry_handler = handler
        return self

    def set_completion_handler(self, handler: CompletionHandler):
        self._completion_handler = handler
        return self

    def _build_request(self, cursor: SubscriptionCursor) -> bytes:
        query = wire.ConsensusTopicQuery(topicID=self._topic_id.to_protobuf(), limit=cursor.limit)
        if cursor.start_ns is not None:
            query.consensusStartTime.CopyFrom(wire.timestamp_from_nanos(cursor.start_ns))
        if cursor.end_ns is not None:
            query.consensusEndTime.CopyFrom(wire.timestamp_from_nanos(cursor.end_ns))
        return query.SerializeToString()

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, client: Client, on_next: MessageHandler) -> SubscriptionHandle:
        """Start streaming in a background task and return its handle.

        Must be called from a running event loop.

        Raises:
            SubscriptionError: If no topic is set or no event loop is running
        """
        if self._topic_id is None:
            raise SubscriptionError("Topic ID must be set before subscribing")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            raise SubscriptionError("subscribe() must be called from a running event loop") from e

        handle = SubscriptionHandle(self._topic_id)
        cursor = SubscriptionCursor(
            start_ns=self._start_ns,
            end_ns=self._end_ns,
            limit=self._limit,
            bounded=self._limit > 0,
        )
        handle._task = loop.create_task(self._run(client, on_next, handle, cursor))
        return handle

    @staticmethod
    def _on_response(response, pending: dict[TransactionId, list], on_next: MessageHandler) -> None:
        if not response.HasField("chunkInfo") or response.chunkInfo.total <= 1:
            on_next(TopicMessage.of_single(response))
            return

        initial_id = TransactionId.from_protobuf(response.chunkInfo.initialTransactionID)
        parts = pending.setdefault(initial_id, [])
        parts.append(response)
        logger.debug("Received chunk %d/%d of %s", len(parts), response.chunkInfo.total, initial_id)
        if len(parts) == response.chunkInfo.total:
            del pending[initial_id]
            on_next(TopicMessage.of_many(parts))

    async def _run(
        self,
        client: Client,
        on_next: MessageHandler,
        handle: SubscriptionHandle,
        cursor: SubscriptionCursor,
    ) -> None:
        max_attempts = self._max_attempts if self._max_attempts is not None else client.config.subscription_max_attempts
        max_backoff = self._max_backoff if self._max_backoff is not None else client.config.subscription_max_backoff
        pending: dict[TransactionId, list] = {}
        attempt = 0

        try:
            while not handle.unsubscribed:
                handle._set_state(SubscriptionState.CONNECTING)
                node = await client.mirror_network.connected_mirror_node()
                call = node.stream_call(wire.SUBSCRIBE_TOPIC_METHOD, self._build_request(cursor))
                handle._call = call
                attempt += 1
                handle._set_state(SubscriptionState.STREAMING)

                try:
                    async for raw in call:
                        response = wire.ConsensusTopicResponse.FromString(raw)
                        self._on_response(response, pending, on_next)
                        cursor.advance(response)
                except grpc.RpcError as e:
                    if handle.unsubscribed:
                        break
                    # An exhausted cursor has nothing left to resume.
                    if not cursor.exhausted:
                        if attempt >= max_attempts or not self._retry_handler(e):
                            handle._set_state(SubscriptionState.FAILED)
                            self._error_handler(e, self._topic_id)
                            return
                        delay = min(DEFAULT_MIN_BACKOFF * 2 ** (attempt - 1), max_backoff)
                        logger.warning(
                            "Subscription to %s interrupted (%s), reconnecting in %.3fs (attempt %d of %d)",
                            self._topic_id,
                            e,
                            delay,
                            attempt + 1,
                            max_attempts,
                        )
                        handle._set_state(SubscriptionState.RECONNECTING)
                        await asyncio.sleep(delay)
                        continue
                    logger.debug("Stream for %s closed after its last requested message: %s", self._topic_id, e)
                finally:
                    handle._call = None

                handle._set_state(SubscriptionState.COMPLETED)
                self._completion_handler()
                return
        except asyncio.CancelledError:
            logger.debug("Subscription to %s cancelled", self._topic_id)
            handle._set_state(SubscriptionState.COMPLETED)
            raise
        except Exception as e:
            logger.exception("Subscription to %s stopped by an unexpected error", self._topic_id)
            handle._set_state(SubscriptionState.FAILED)
            self._error_handler(e, self._topic_id)
            return

        handle._set_state(SubscriptionState.COMPLETED)
