"""
AMQP backend for call detail records.

On every completed call the backend renders the CDR as JSON and publishes it
to an AMQP broker:
- ConfigSnapshot: immutable options plus the broker handle they were built with
- ConfigStore: process-wide slot for the current snapshot, leased per publish
- ConfigLoader: builds a snapshot from cdr_amqp.yaml and installs it (load and reload)
- RecordSerializer: CallRecord -> JSON document under the snapshot's flags
- Publisher: persistent, non-mandatory basic_publish through the snapshot's handle
- CdrAmqpBackend: initialize / log_record / reload / shutdown for the host
"""

from cdr_amqp.backend import CdrAmqpBackend
from cdr_amqp.config import ConfigLoader, ConfigSnapshot
from cdr_amqp.config_store import ConfigStore, SnapshotLease
from cdr_amqp.connections import AmqpConnection, ConnectionManager
from cdr_amqp.errors import (
    CdrAmqpError,
    ConfigError,
    ConfigUnavailable,
    ConnectionUnavailable,
    EncodingError,
    NoConnection,
    PublishFailed,
)
from cdr_amqp.publisher import Publisher
from cdr_amqp.records import AmaFlags, CallRecord, Disposition
from cdr_amqp.serializer import PublishedDocument, RecordSerializer

__all__ = [
    "AmaFlags",
    "AmqpConnection",
    "CallRecord",
    "CdrAmqpBackend",
    "CdrAmqpError",
    "ConfigError",
    "ConfigLoader",
    "ConfigSnapshot",
    "ConfigStore",
    "ConfigUnavailable",
    "ConnectionManager",
    "ConnectionUnavailable",
    "Disposition",
    "EncodingError",
    "NoConnection",
    "PublishFailed",
    "PublishedDocument",
    "Publisher",
    "RecordSerializer",
    "SnapshotLease",
]
