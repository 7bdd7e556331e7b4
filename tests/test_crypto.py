"""
Tests for signing and transaction hashes.

Tests cover:
- Key generation and serialization
- Signature maps over transaction bodies
- SHA-384 transaction hashes
"""

from __future__ import annotations

import hashlib

import pytest
from cryptography.exceptions import InvalidSignature

from ledger_network import wire
from ledger_network.crypto import PrivateKey, PublicKey, sign_body, transaction_hash

# =============================================================================
# KEYS
# =============================================================================


class TestKeys:
    """Tests for Ed25519 key handling."""

    def test_private_key_round_trip(self) -> None:
        key = PrivateKey.generate()
        restored = PrivateKey.from_bytes(key.to_bytes())
        assert restored.public_key_bytes() == key.public_key_bytes()

    def test_from_hex_string(self) -> None:
        key = PrivateKey.generate()
        text = key.to_bytes().hex()
        assert PrivateKey.from_string(text).public_key_bytes() == key.public_key_bytes()
        assert PrivateKey.from_string("0x" + text).public_key_bytes() == key.public_key_bytes()

    def test_from_bad_hex_string(self) -> None:
        with pytest.raises(ValueError):
            PrivateKey.from_string("not hex")

    def test_public_key_sizes(self) -> None:
        key = PrivateKey.generate()
        assert len(key.to_bytes()) == 32
        assert len(key.public_key_bytes()) == 32
        assert str(key.public_key()) == key.public_key_bytes().hex()

    def test_verify(self) -> None:
        key = PrivateKey.generate()
        signature = key.sign(b"payload")
        public = PublicKey.from_bytes(key.public_key_bytes())

        public.verify(signature, b"payload")
        with pytest.raises(InvalidSignature):
            public.verify(signature, b"tampered")


# =============================================================================
# SIGNING
# =============================================================================


class TestSignBody:
    """Tests for signed transaction envelopes."""

    def test_one_pair_per_signer(self) -> None:
        keys = [PrivateKey.generate(), PrivateKey.generate()]
        raw = sign_body(b"body", keys)

        signed = wire.SignedTransaction.FromString(wire.Transaction.FromString(raw).signedTransactionBytes)
        assert signed.bodyBytes == b"body"
        assert [p.pubKeyPrefix for p in signed.sigMap.sigPair] == [k.public_key_bytes() for k in keys]
        for key, pair in zip(keys, signed.sigMap.sigPair):
            key.public_key().verify(pair.ed25519, b"body")

    def test_unsigned_envelope(self) -> None:
        raw = sign_body(b"body", [])
        signed = wire.SignedTransaction.FromString(wire.Transaction.FromString(raw).signedTransactionBytes)
        assert len(signed.sigMap.sigPair) == 0


class TestTransactionHash:
    def test_hash_covers_signed_bytes(self) -> None:
        raw = sign_body(b"body", [PrivateKey.generate()])
        signed_bytes = wire.Transaction.FromString(raw).signedTransactionBytes
        assert transaction_hash(raw) == hashlib.sha384(signed_bytes).digest()
        assert len(transaction_hash(raw)) == 48

    def test_hash_differs_per_body(self) -> None:
        assert transaction_hash(sign_body(b"a", [])) != transaction_hash(sign_body(b"b", []))
