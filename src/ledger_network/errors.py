"""
Exceptions raised by the request-delivery and stream-consumption engine.

Only configuration errors, fatal precheck statuses and exhaustion ever reach
callers. Transient transport failures are absorbed by node and call backoff.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .ids import TransactionId
    from .status import Status


class LedgerError(Exception):
    """Base exception for ledger network errors."""

    pass


class IllegalStateError(LedgerError):
    """Raised when the client, network or request is in an unusable state."""

    pass


class IllegalArgumentError(LedgerError, ValueError):
    """Raised when a configuration value is out of range or inconsistent."""

    pass


class MaxAttemptsExceededError(LedgerError):
    """Raised when a request runs out of attempts or time before succeeding."""

    def __init__(self, message: str, *, attempts: int = 0, timed_out: bool = False) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.timed_out = timed_out


class PrecheckStatusError(LedgerError):
    """Raised when a node rejects a request with a non-retryable precheck status."""

    def __init__(self, status: Status | int, transaction_id: TransactionId | None = None) -> None:
        self.status = status
        self.transaction_id = transaction_id
        name = getattr(status, "name", str(status))
        if transaction_id is not None:
            super().__init__(f"Transaction {transaction_id} failed precheck with status {name}")
        else:
            super().__init__(f"Request failed precheck with status {name}")


class ReceiptStatusError(LedgerError):
    """Raised when a receipt reaches a final status other than SUCCESS."""

    def __init__(self, status: Status | int, transaction_id: TransactionId | None = None) -> None:
        self.status = status
        self.transaction_id = transaction_id
        name = getattr(status, "name", str(status))
        super().__init__(f"Receipt for transaction {transaction_id} contained status {name}")


class SubscriptionError(LedgerError):
    """Raised when a topic subscription cannot be started."""

    pass


class TransportError(LedgerError):
    """Raised when the transport fails in a way retrying cannot fix."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class DiscoveryError(LedgerError):
    """Raised when the address book cannot be fetched from a mirror node."""

    pass
