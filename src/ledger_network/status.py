"""
Precheck status codes and the retry-policy table.

Every retry decision made by the dispatcher flows through
``classify_status``; receipt polling additionally uses
``classify_receipt_status``. Both are pure functions of the status code.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class Status(IntEnum):
    """Application-level response codes returned by consensus nodes.

    Values match the ledger's ``ResponseCodeEnum`` wire numbers. Only the
    codes the engine needs to reason about are named here; any other code
    arrives as a plain ``int`` and is treated as fatal.
    """

    OK = 0
    INVALID_TRANSACTION = 1
    PAYER_ACCOUNT_NOT_FOUND = 2
    INVALID_NODE_ACCOUNT = 3
    TRANSACTION_EXPIRED = 4
    INVALID_TRANSACTION_START = 5
    INVALID_TRANSACTION_DURATION = 6
    INVALID_SIGNATURE = 7
    MEMO_TOO_LONG = 8
    INSUFFICIENT_TX_FEE = 9
    INSUFFICIENT_PAYER_BALANCE = 10
    DUPLICATE_TRANSACTION = 11
    BUSY = 12
    NOT_SUPPORTED = 13
    INVALID_FILE_ID = 14
    INVALID_ACCOUNT_ID = 15
    INVALID_CONTRACT_ID = 16
    INVALID_TRANSACTION_ID = 17
    RECEIPT_NOT_FOUND = 18
    RECORD_NOT_FOUND = 19
    INVALID_SOLIDITY_ID = 20
    UNKNOWN = 21
    SUCCESS = 22
    FAIL_INVALID = 23
    FAIL_FEE = 24
    FAIL_BALANCE = 25
    PLATFORM_TRANSACTION_NOT_CREATED = 42
    INVALID_TOPIC_ID = 150
    PLATFORM_NOT_ACTIVE = 184
    THROTTLED_AT_CONSENSUS = 366

    @classmethod
    def from_code(cls, code: int) -> Status | int:
        """Return the named status for ``code``, or the raw code if unnamed."""
        try:
            return cls(code)
        except ValueError:
            return code


def status_name(status: Status | int) -> str:
    """Printable name for a status that may be an unnamed raw code."""
    if isinstance(status, Status):
        return status.name
    return f"STATUS_{status}"


class ExecutionStatus(StrEnum):
    """What the dispatcher should do after receiving a response."""

    SUCCESS = "success"
    SERVER_ERROR = "server_error"  # Node not ready, move on to another node now
    RETRY = "retry"  # Slow down: sleep the call backoff, then retry
    REQUEST_ERROR = "request_error"  # Fatal precheck failure


#: Codes meaning "this node cannot take the request yet".
SERVER_ERROR_STATUSES: frozenset[Status] = frozenset(
    {
        Status.PLATFORM_TRANSACTION_NOT_CREATED,
        Status.PLATFORM_NOT_ACTIVE,
    }
)

#: Codes meaning "please slow down".
BUSY_STATUSES: frozenset[Status] = frozenset(
    {
        Status.BUSY,
        Status.THROTTLED_AT_CONSENSUS,
    }
)

SUCCESS_STATUSES: frozenset[Status] = frozenset({Status.OK, Status.SUCCESS})

#: Receipt statuses meaning the transaction has not reached consensus yet.
RECEIPT_PENDING_STATUSES: frozenset[Status] = frozenset(
    {
        Status.RECEIPT_NOT_FOUND,
        Status.UNKNOWN,
        Status.BUSY,
    }
)


def classify_status(status: Status | int) -> ExecutionStatus:
    """Map a precheck status to the dispatcher's next action."""
    if status in SUCCESS_STATUSES:
        return ExecutionStatus.SUCCESS
    if status in SERVER_ERROR_STATUSES:
        return ExecutionStatus.SERVER_ERROR
    if status in BUSY_STATUSES:
        return ExecutionStatus.RETRY
    return ExecutionStatus.REQUEST_ERROR


def classify_receipt_status(precheck: Status | int, receipt_status: Status | int) -> ExecutionStatus:
    """Classify a receipt query response.

    The precheck code is classified first; a receipt whose own status is
    still pending is retried with call backoff rather than returned.
    """
    execution = classify_status(precheck)
    if execution is not ExecutionStatus.SUCCESS:
        if precheck in RECEIPT_PENDING_STATUSES:
            return ExecutionStatus.RETRY
        return execution
    if receipt_status in RECEIPT_PENDING_STATUSES:
        return ExecutionStatus.RETRY
    return ExecutionStatus.SUCCESS
