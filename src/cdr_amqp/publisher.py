"""
Publisher: sends one encoded CDR through a snapshot's broker handle.

One basic_publish per call, no retry, no buffering. Messages are persistent
JSON and not mandatory, so an unroutable CDR is dropped by the broker rather
than returned. AMQP's `immediate` flag is never set (RabbitMQ rejects it and
pika does not expose it), which lets the broker queue the message.
"""

import logging

import pika

from cdr_amqp.config import ConfigSnapshot
from cdr_amqp.errors import NoConnection, PublishFailed
from cdr_amqp.serializer import PublishedDocument

logger = logging.getLogger(__name__)


class Publisher:
    """Delivers PublishedDocuments; stateless, so one instance serves all threads."""

    CONTENT_TYPE = "application/json"
    PERSISTENT_DELIVERY_MODE = 2

    def properties(self) -> pika.BasicProperties:
        return pika.BasicProperties(
            content_type=self.CONTENT_TYPE,
            delivery_mode=self.PERSISTENT_DELIVERY_MODE,
        )

    def publish(self, snapshot: ConfigSnapshot, document: PublishedDocument) -> None:
        """
        Publish document to snapshot.exchange with snapshot.routing_key.

        Raises:
            NoConnection: The snapshot has no broker handle; nothing is sent.
            PublishFailed: The handle raised anything at all; no other error
                escapes this call.
        """
        handle = snapshot.broker_handle
        if handle is None:
            raise NoConnection(
                f"No AMQP connection for '{snapshot.connection_name}' in the active configuration"
            )

        try:
            handle.basic_publish(
                exchange=snapshot.exchange,
                routing_key=snapshot.routing_key,
                body=document.body,
                properties=self.properties(),
                mandatory=False,
            )
        except Exception as exc:
            raise PublishFailed(f"Error publishing CDR to AMQP: {exc!r}", cause=exc) from exc
