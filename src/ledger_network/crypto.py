"""
Signing capability consumed by the request engine.

Provides:
- Ed25519 operator keys for signing transaction bodies
- Signature-map construction for signed transactions
- SHA-384 transaction hashes

Each per-node body is signed exactly once when a transaction is frozen; the
engine never inspects key material beyond the public-key prefix written into
the signature map.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Protocol

from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from . import wire


class Signer(Protocol):
    """Anything that can sign bytes and name its public key."""

    def sign(self, message: bytes) -> bytes: ...

    def public_key_bytes(self) -> bytes: ...


@dataclass(frozen=True)
class PublicKey:
    """Ed25519 public key."""

    key: Ed25519PublicKey

    @classmethod
    def from_bytes(cls, raw: bytes) -> PublicKey:
        return cls(Ed25519PublicKey.from_public_bytes(raw))

    def to_bytes(self) -> bytes:
        return self.key.public_bytes_raw()

    def verify(self, signature: bytes, message: bytes) -> None:
        """Verify ``signature`` over ``message``.

        Raises:
            cryptography.exceptions.InvalidSignature: If verification fails
        """
        self.key.verify(signature, message)

    def __str__(self) -> str:
        return self.to_bytes().hex()


@dataclass(frozen=True)
class PrivateKey:
    """Ed25519 operator key implementing the ``Signer`` protocol."""

    key: Ed25519PrivateKey

    @classmethod
    def generate(cls) -> PrivateKey:
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_bytes(cls, raw: bytes) -> PrivateKey:
        return cls(Ed25519PrivateKey.from_private_bytes(raw))

    @classmethod
    def from_string(cls, text: str) -> PrivateKey:
        return cls.from_bytes(bytes.fromhex(text.removeprefix("0x")))

    def sign(self, message: bytes) -> bytes:
        return self.key.sign(message)

    def public_key(self) -> PublicKey:
        return PublicKey(self.key.public_key())

    def public_key_bytes(self) -> bytes:
        return self.key.public_key().public_bytes_raw()

    def to_bytes(self) -> bytes:
        return self.key.private_bytes_raw()


def sign_body(body_bytes: bytes, signers: list[Signer]) -> bytes:
    """Sign ``body_bytes`` with every signer and serialize the signed envelope.

    Returns the serialized ``Transaction`` wrapping a ``SignedTransaction``.
    """
    signature_map = wire.SignatureMap()
    for signer in signers:
        signature_map.sigPair.add(
            pubKeyPrefix=signer.public_key_bytes(),
            ed25519=signer.sign(body_bytes),
        )
    signed = wire.SignedTransaction(bodyBytes=body_bytes, sigMap=signature_map)
    return wire.Transaction(signedTransactionBytes=signed.SerializeToString()).SerializeToString()


def transaction_hash(transaction_bytes: bytes) -> bytes:
    """SHA-384 hash of the signed-transaction bytes inside a ``Transaction``."""
    transaction = wire.Transaction.FromString(transaction_bytes)
    return hashlib.sha384(transaction.signedTransactionBytes).digest()
