"""Tests for entity and transaction identifiers."""

from __future__ import annotations

import pytest

from ledger_network.ids import MINIMUM_TIME_UNIT_NS, AccountId, TopicId, TransactionId

VALID_START = 1_700_000_000_000_000_042


class TestEntityIds:
    def test_account_from_string(self) -> None:
        assert AccountId.from_string("0.0.3") == AccountId(0, 0, 3)
        assert str(AccountId(1, 2, 3)) == "1.2.3"

    @pytest.mark.parametrize("text", ["", "0.0", "0.0.x", "0.0.-1", "1.2.3.4"])
    def test_malformed_account(self, text) -> None:
        with pytest.raises(ValueError):
            AccountId.from_string(text)

    def test_protobuf_round_trip(self) -> None:
        assert AccountId.from_protobuf(AccountId(0, 1, 2).to_protobuf()) == AccountId(0, 1, 2)
        assert TopicId.from_protobuf(TopicId(0, 0, 99).to_protobuf()) == TopicId(0, 0, 99)

    def test_ordering(self) -> None:
        assert sorted([AccountId(0, 0, 5), AccountId(0, 0, 3)]) == [AccountId(0, 0, 3), AccountId(0, 0, 5)]


class TestTransactionId:
    def test_plus_adds_minimum_units(self) -> None:
        tx_id = TransactionId(AccountId(0, 0, 2), VALID_START)
        assert tx_id.plus().valid_start_ns == VALID_START + MINIMUM_TIME_UNIT_NS
        assert tx_id.plus(3).valid_start_ns == VALID_START + 3 * MINIMUM_TIME_UNIT_NS
        assert tx_id.plus(3).account_id == tx_id.account_id

    def test_generate_uses_account(self) -> None:
        tx_id = TransactionId.generate(AccountId(0, 0, 2))
        assert tx_id.account_id == AccountId(0, 0, 2)
        assert tx_id.valid_start_ns > 0

    def test_string_format(self) -> None:
        tx_id = TransactionId(AccountId(0, 0, 2), VALID_START)
        assert str(tx_id) == "0.0.2@1700000000.000000042"
        assert TransactionId.from_string(str(tx_id)) == tx_id

    def test_scheduled_and_nonce_in_string(self) -> None:
        tx_id = TransactionId(AccountId(0, 0, 2), VALID_START, scheduled=True, nonce=4)
        assert TransactionId.from_string(str(tx_id)) == tx_id

    def test_malformed_string(self) -> None:
        with pytest.raises(ValueError):
            TransactionId.from_string("0.0.2")

    def test_protobuf_round_trip(self) -> None:
        tx_id = TransactionId(AccountId(0, 0, 2), VALID_START, nonce=1)
        assert TransactionId.from_protobuf(tx_id.to_protobuf()) == tx_id

    def test_hashable(self) -> None:
        tx_id = TransactionId(AccountId(0, 0, 2), VALID_START)
        assert {tx_id: 1}[TransactionId(AccountId(0, 0, 2), VALID_START)] == 1
