"""
CdrAmqpBackend: the four entry points the telephony host calls.

    initialize()     once at activation; False means "decline, do not route CDRs here"
    log_record(cdr)  once per completed call, from any thread
    reload()         operator-triggered hot swap; failure keeps the old config
    shutdown()       release configuration and connection; idempotent

Each log_record() leases the snapshot installed at that moment and uses it for
the whole call, so a reload landing mid-publish never mixes old and new
settings. Failures are per call: they are logged, counted, and returned as
False, and touch no shared state.
"""

import logging
from typing import Optional

from cdr_amqp.config import ConfigLoader
from cdr_amqp.config_store import ConfigStore
from cdr_amqp.connections import ConnectionManager
from cdr_amqp.errors import CdrAmqpError
from cdr_amqp.metrics import PublishMetrics
from cdr_amqp.publisher import Publisher
from cdr_amqp.records import CallRecord
from cdr_amqp.serializer import RecordSerializer

logger = logging.getLogger(__name__)

CDR_NAME = "AMQP"


class CdrAmqpBackend:
    """
    AMQP CDR backend.

    Usage:
        backend = CdrAmqpBackend(ConnectionManager("config/amqp.yaml"), "config/cdr_amqp.yaml")
        if not backend.initialize():
            ...  # declined
        backend.log_record(record)
    """

    def __init__(
        self,
        connections: ConnectionManager,
        config_path: str = ConfigLoader.DEFAULT_CONFIG_PATH,
        store: Optional[ConfigStore] = None,
        metrics: Optional[PublishMetrics] = None,
    ) -> None:
        self._connections = connections
        self.store = store if store is not None else ConfigStore()
        self.loader = ConfigLoader(self.store, connections, config_path)
        self._serializer = RecordSerializer()
        self._publisher = Publisher()
        self._metrics = metrics

    def initialize(self) -> bool:
        """Load configuration and connect; returns False to decline activation."""
        try:
            self.loader.initial_load()
        except CdrAmqpError as exc:
            logger.error("Error obtaining config from cdr_amqp configuration: %s", exc)
            logger.warning("Configuration failed to load — declining %s CDR backend", CDR_NAME)
            return False

        logger.info("CDR AMQP logging enabled")
        return True

    def reload(self) -> bool:
        """Re-read both configuration files and hot-swap; False leaves prior state active."""
        self._connections.reload()
        return self.loader.reload()

    def shutdown(self) -> None:
        """Drop the installed configuration. In-flight publishes finish on their lease."""
        self.store.release()
        if self._metrics is not None:
            self._metrics.flush()
        logger.info("CDR AMQP logging disabled")

    def publish_record(self, record: CallRecord) -> None:
        """
        Serialize and publish one record under the current snapshot.

        Raises:
            ConfigUnavailable, EncodingError, NoConnection, PublishFailed
        """
        with self.store.current() as snapshot:
            document = self._serializer.serialize(record, snapshot)
            self._publisher.publish(snapshot, document)

    def log_record(self, record: CallRecord) -> bool:
        """Host entry point: True if the CDR was handed to the broker."""
        try:
            self.publish_record(record)
        except CdrAmqpError as exc:
            logger.error(
                "Error publishing CDR to AMQP | linkedid=%s | error=%s: %s",
                getattr(record, "linkedid", ""),
                type(exc).__name__,
                exc,
            )
            self._record_outcome(False)
            return False

        self._record_outcome(True)
        return True

    def _record_outcome(self, success: bool) -> None:
        if self._metrics is not None:
            self._metrics.record(success)
