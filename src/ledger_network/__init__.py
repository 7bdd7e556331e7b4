"""
Ledger Network - client-side request delivery and stream consumption.

This package gets signed requests to a partially available set of consensus
nodes (failover, node health, retry and backoff), splits oversized payloads
into linked chunks, and keeps topic subscriptions alive across mirror-node
reconnects.
"""

__version__ = "0.1.0"

from ledger_network.chunked import ChunkedTransaction
from ledger_network.client import Client
from ledger_network.config import ClientConfig
from ledger_network.crypto import PrivateKey, PublicKey, Signer
from ledger_network.discovery import MirrorRestClient
from ledger_network.errors import (
    DiscoveryError,
    IllegalArgumentError,
    IllegalStateError,
    LedgerError,
    MaxAttemptsExceededError,
    PrecheckStatusError,
    ReceiptStatusError,
    SubscriptionError,
    TransportError,
)
from ledger_network.executable import Executable
from ledger_network.ids import AccountId, TopicId, TransactionId
from ledger_network.network import BaseNetwork, MirrorNetwork, Network
from ledger_network.node import MirrorNode, Node, NodeAddress, NodeHealth
from ledger_network.receipt import TransactionReceipt, TransactionReceiptQuery, TransactionResponse
from ledger_network.status import ExecutionStatus, Status, classify_receipt_status, classify_status
from ledger_network.subscription import SubscriptionHandle, SubscriptionState, TopicMessageQuery
from ledger_network.topic_message import TopicMessage, TopicMessageChunk
from ledger_network.transaction import BodyBuilder, BodyContext, ChunkInfo, Transaction

__all__ = [
    # Client
    "Client",
    "ClientConfig",
    # Requests
    "Executable",
    "Transaction",
    "ChunkedTransaction",
    "BodyBuilder",
    "BodyContext",
    "ChunkInfo",
    "TransactionResponse",
    "TransactionReceipt",
    "TransactionReceiptQuery",
    # Status
    "Status",
    "ExecutionStatus",
    "classify_status",
    "classify_receipt_status",
    # Networks
    "BaseNetwork",
    "Network",
    "MirrorNetwork",
    "Node",
    "MirrorNode",
    "NodeAddress",
    "NodeHealth",
    "MirrorRestClient",
    # Subscriptions
    "TopicMessageQuery",
    "SubscriptionHandle",
    "SubscriptionState",
    "TopicMessage",
    "TopicMessageChunk",
    # Identifiers and keys
    "AccountId",
    "TopicId",
    "TransactionId",
    "PrivateKey",
    "PublicKey",
    "Signer",
    # Errors
    "LedgerError",
    "IllegalStateError",
    "IllegalArgumentError",
    "MaxAttemptsExceededError",
    "PrecheckStatusError",
    "ReceiptStatusError",
    "SubscriptionError",
    "TransportError",
    "DiscoveryError",
]
