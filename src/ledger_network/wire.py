"""
Protobuf wire schemas used by the engine.

The engine only reads and writes a handful of fields (precheck codes, chunk
info, consensus timestamps, transaction identifiers, signature maps), so the
schemas are declared here as descriptors and turned into message classes at
import time with the protobuf runtime. Field numbers follow the public HAPI
and mirror-node definitions, so the bytes are interchangeable with the
generated classes used by other SDKs.

Business payloads (transfer bodies, topic message bodies, ...) stay opaque
bytes produced by request builders.
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

_F = descriptor_pb2.FieldDescriptorProto

PACKAGE = "proto"

#: gRPC method paths, in the form ``/<package>.<Service>/<method>``.
SUBMIT_MESSAGE_METHOD = "/proto.ConsensusService/submitMessage"
GET_RECEIPT_METHOD = "/proto.CryptoService/getTransactionReceipts"
SUBSCRIBE_TOPIC_METHOD = "/com.hedera.mirror.api.proto.ConsensusService/subscribeTopic"

# (name, number, type, repeated). A str type names another message.
_SCHEMAS: dict[str, list[tuple[str, int, int | str, bool]]] = {
    "Timestamp": [
        ("seconds", 1, _F.TYPE_INT64, False),
        ("nanos", 2, _F.TYPE_INT32, False),
    ],
    "AccountID": [
        ("shardNum", 1, _F.TYPE_INT64, False),
        ("realmNum", 2, _F.TYPE_INT64, False),
        ("accountNum", 3, _F.TYPE_INT64, False),
    ],
    "TopicID": [
        ("shardNum", 1, _F.TYPE_INT64, False),
        ("realmNum", 2, _F.TYPE_INT64, False),
        ("topicNum", 3, _F.TYPE_INT64, False),
    ],
    "TransactionID": [
        ("transactionValidStart", 1, "Timestamp", False),
        ("accountID", 2, "AccountID", False),
        ("scheduled", 3, _F.TYPE_BOOL, False),
        ("nonce", 4, _F.TYPE_INT32, False),
    ],
    "ConsensusMessageChunkInfo": [
        ("initialTransactionID", 1, "TransactionID", False),
        ("total", 2, _F.TYPE_INT32, False),
        ("number", 3, _F.TYPE_INT32, False),
    ],
    "SignaturePair": [
        ("pubKeyPrefix", 1, _F.TYPE_BYTES, False),
        ("ed25519", 3, _F.TYPE_BYTES, False),
    ],
    "SignatureMap": [
        ("sigPair", 1, "SignaturePair", True),
    ],
    "SignedTransaction": [
        ("bodyBytes", 1, _F.TYPE_BYTES, False),
        ("sigMap", 2, "SignatureMap", False),
    ],
    "Transaction": [
        ("signedTransactionBytes", 5, _F.TYPE_BYTES, False),
    ],
    "TransactionResponse": [
        ("nodeTransactionPrecheckCode", 1, _F.TYPE_INT32, False),
        ("cost", 2, _F.TYPE_UINT64, False),
    ],
    "QueryHeader": [
        ("payment", 1, "Transaction", False),
        ("responseType", 2, _F.TYPE_INT32, False),
    ],
    "ResponseHeader": [
        ("nodeTransactionPrecheckCode", 1, _F.TYPE_INT32, False),
        ("responseType", 2, _F.TYPE_INT32, False),
        ("cost", 3, _F.TYPE_UINT64, False),
    ],
    "TransactionReceipt": [
        ("status", 1, _F.TYPE_INT32, False),
        ("accountID", 2, "AccountID", False),
        ("topicID", 6, "TopicID", False),
        ("topicSequenceNumber", 7, _F.TYPE_UINT64, False),
        ("topicRunningHash", 8, _F.TYPE_BYTES, False),
    ],
    "TransactionGetReceiptQuery": [
        ("header", 1, "QueryHeader", False),
        ("transactionID", 2, "TransactionID", False),
        ("includeDuplicates", 3, _F.TYPE_BOOL, False),
    ],
    "TransactionGetReceiptResponse": [
        ("header", 1, "ResponseHeader", False),
        ("receipt", 2, "TransactionReceipt", False),
    ],
    "Query": [
        ("transactionGetReceipt", 14, "TransactionGetReceiptQuery", False),
    ],
    "Response": [
        ("transactionGetReceipt", 14, "TransactionGetReceiptResponse", False),
    ],
    "ConsensusTopicQuery": [
        ("topicID", 1, "TopicID", False),
        ("consensusStartTime", 2, "Timestamp", False),
        ("consensusEndTime", 3, "Timestamp", False),
        ("limit", 4, _F.TYPE_UINT64, False),
    ],
    "ConsensusTopicResponse": [
        ("consensusTimestamp", 1, "Timestamp", False),
        ("message", 2, _F.TYPE_BYTES, False),
        ("runningHash", 3, _F.TYPE_BYTES, False),
        ("sequenceNumber", 4, _F.TYPE_UINT64, False),
        ("runningHashVersion", 5, _F.TYPE_UINT64, False),
        ("chunkInfo", 6, "ConsensusMessageChunkInfo", False),
    ],
}


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="ledger_network/wire.proto",
        package=PACKAGE,
        syntax="proto3",
    )
    for message_name, fields in _SCHEMAS.items():
        message = file_proto.message_type.add(name=message_name)
        for field_name, number, field_type, repeated in fields:
            field = message.field.add(
                name=field_name,
                number=number,
                label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
            )
            if isinstance(field_type, str):
                field.type = _F.TYPE_MESSAGE
                field.type_name = f".{PACKAGE}.{field_type}"
            else:
                field.type = field_type
    return file_proto


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_build_file().SerializeToString())


def _message_class(name: str) -> type:
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))


Timestamp = _message_class("Timestamp")
AccountID = _message_class("AccountID")
TopicID = _message_class("TopicID")
TransactionID = _message_class("TransactionID")
ConsensusMessageChunkInfo = _message_class("ConsensusMessageChunkInfo")
SignaturePair = _message_class("SignaturePair")
SignatureMap = _message_class("SignatureMap")
SignedTransaction = _message_class("SignedTransaction")
Transaction = _message_class("Transaction")
TransactionResponse = _message_class("TransactionResponse")
QueryHeader = _message_class("QueryHeader")
ResponseHeader = _message_class("ResponseHeader")
TransactionReceipt = _message_class("TransactionReceipt")
TransactionGetReceiptQuery = _message_class("TransactionGetReceiptQuery")
TransactionGetReceiptResponse = _message_class("TransactionGetReceiptResponse")
Query = _message_class("Query")
Response = _message_class("Response")
ConsensusTopicQuery = _message_class("ConsensusTopicQuery")
ConsensusTopicResponse = _message_class("ConsensusTopicResponse")


def timestamp_from_nanos(nanos: int):
    """Build a ``Timestamp`` from integer nanoseconds since the epoch."""
    seconds, remainder = divmod(nanos, 1_000_000_000)
    return Timestamp(seconds=seconds, nanos=remainder)


def timestamp_to_nanos(timestamp) -> int:
    """Integer nanoseconds since the epoch for a ``Timestamp``."""
    return timestamp.seconds * 1_000_000_000 + timestamp.nanos
