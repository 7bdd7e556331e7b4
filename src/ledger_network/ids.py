"""
Entity and transaction identifiers.

Identifiers are immutable value objects passed through the engine unmodified.
Only ``TransactionId`` carries behaviour the engine depends on: chunked
requests derive each follow-up identifier by adding one nanosecond to the
valid-start timestamp of the chunk before it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any

from . import wire

#: The smallest step of a valid-start timestamp.
MINIMUM_TIME_UNIT_NS = 1


def _parse_entity(text: str) -> tuple[int, int, int]:
    parts = text.strip().split(".")
    if len(parts) != 3:
        raise ValueError(f"Malformed entity ID: {text!r}")
    try:
        shard, realm, num = (int(p) for p in parts)
    except ValueError as e:
        raise ValueError(f"Malformed entity ID: {text!r}") from e
    if shard < 0 or realm < 0 or num < 0:
        raise ValueError(f"Malformed entity ID: {text!r}")
    return shard, realm, num


@dataclass(frozen=True, order=True)
class AccountId:
    """Account reference, used for payers and node identities."""

    shard: int = 0
    realm: int = 0
    num: int = 0

    @classmethod
    def from_string(cls, text: str) -> AccountId:
        return cls(*_parse_entity(text))

    def to_protobuf(self):
        return wire.AccountID(shardNum=self.shard, realmNum=self.realm, accountNum=self.num)

    @classmethod
    def from_protobuf(cls, proto) -> AccountId:
        return cls(shard=proto.shardNum, realm=proto.realmNum, num=proto.accountNum)

    def __str__(self) -> str:
        return f"{self.shard}.{self.realm}.{self.num}"


@dataclass(frozen=True, order=True)
class TopicId:
    """Consensus topic reference."""

    shard: int = 0
    realm: int = 0
    num: int = 0

    @classmethod
    def from_string(cls, text: str) -> TopicId:
        return cls(*_parse_entity(text))

    def to_protobuf(self):
        return wire.TopicID(shardNum=self.shard, realmNum=self.realm, topicNum=self.num)

    @classmethod
    def from_protobuf(cls, proto) -> TopicId:
        return cls(shard=proto.shardNum, realm=proto.realmNum, num=proto.topicNum)

    def __str__(self) -> str:
        return f"{self.shard}.{self.realm}.{self.num}"


@dataclass(frozen=True)
class TransactionId:
    """Payer account plus valid-start timestamp, in integer nanoseconds.

    Unique per signed request instance.
    """

    account_id: AccountId
    valid_start_ns: int
    scheduled: bool = False
    nonce: int = 0

    @classmethod
    def generate(cls, account_id: AccountId) -> TransactionId:
        """New identifier for ``account_id`` starting now."""
        return cls(account_id=account_id, valid_start_ns=time.time_ns())

    def plus(self, units: int = 1) -> TransactionId:
        """Identifier ``units`` minimal time units after this one."""
        return replace(self, valid_start_ns=self.valid_start_ns + units * MINIMUM_TIME_UNIT_NS)

    def to_protobuf(self):
        return wire.TransactionID(
            transactionValidStart=wire.timestamp_from_nanos(self.valid_start_ns),
            accountID=self.account_id.to_protobuf(),
            scheduled=self.scheduled,
            nonce=self.nonce,
        )

    @classmethod
    def from_protobuf(cls, proto) -> TransactionId:
        return cls(
            account_id=AccountId.from_protobuf(proto.accountID),
            valid_start_ns=wire.timestamp_to_nanos(proto.transactionValidStart),
            scheduled=proto.scheduled,
            nonce=proto.nonce,
        )

    @classmethod
    def from_string(cls, text: str) -> TransactionId:
        """Parse ``shard.realm.num@seconds.nanos[?scheduled][/nonce]``."""
        nonce = 0
        scheduled = False
        if "/" in text:
            text, nonce_text = text.rsplit("/", 1)
            nonce = int(nonce_text)
        if "?" in text:
            text, flag = text.rsplit("?", 1)
            scheduled = flag == "scheduled"
        try:
            account_text, timestamp_text = text.split("@", 1)
            seconds_text, nanos_text = timestamp_text.split(".", 1)
            valid_start_ns = int(seconds_text) * 1_000_000_000 + int(nanos_text)
        except ValueError as e:
            raise ValueError(f"Malformed transaction ID: {text!r}") from e
        return cls(
            account_id=AccountId.from_string(account_text),
            valid_start_ns=valid_start_ns,
            scheduled=scheduled,
            nonce=nonce,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "account_id": str(self.account_id),
            "valid_start_ns": self.valid_start_ns,
            "scheduled": self.scheduled,
            "nonce": self.nonce,
        }

    def __str__(self) -> str:
        seconds, nanos = divmod(self.valid_start_ns, 1_000_000_000)
        text = f"{self.account_id}@{seconds}.{nanos:09d}"
        if self.scheduled:
            text += "?scheduled"
        if self.nonce:
            text += f"/{self.nonce}"
        return text
