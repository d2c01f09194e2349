"""
CallRecord -> JSON document.

The 18 required keys are always present. `uniqueid` and `userfield` are only
added when the snapshot enables them; when disabled the key is left out
entirely. Bytes are compact UTF-8 JSON.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from cdr_amqp.config import ConfigSnapshot
from cdr_amqp.errors import EncodingError
from cdr_amqp.records import AmaFlags, CallRecord, Disposition

logger = logging.getLogger(__name__)

REQUIRED_KEYS = (
    "clid",
    "src",
    "dst",
    "dcontext",
    "channel",
    "dstchannel",
    "lastapp",
    "lastdata",
    "start",
    "answer",
    "end",
    "durationsec",
    "billsec",
    "disposition",
    "accountcode",
    "amaflags",
    "peeraccount",
    "linkedid",
)

_STRING_FIELDS = (
    "clid",
    "src",
    "dst",
    "dcontext",
    "channel",
    "dstchannel",
    "lastapp",
    "lastdata",
    "accountcode",
    "peeraccount",
    "linkedid",
)


@dataclass(frozen=True)
class PublishedDocument:
    """The document for one publish: key/value form plus its encoded body."""

    fields: dict[str, Any]
    body: bytes


def format_timestamp(value: datetime) -> str:
    """
    Render a timestamp as ISO 8601 UTC with millisecond precision and Z suffix.

    Naive datetimes are taken to be UTC: 2023-01-01 00:00:00.123 → "2023-01-01T00:00:00.123Z"
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


class RecordSerializer:
    """Maps call records to documents under a snapshot's optional-field flags."""

    def to_fields(self, record: CallRecord, snapshot: ConfigSnapshot) -> dict[str, Any]:
        """
        Build the key/value document for record.

        Raises:
            EncodingError: If a field has the wrong type.
        """
        for name in _STRING_FIELDS:
            _require_str(name, getattr(record, name))
        for name in ("duration", "billsec"):
            value = getattr(record, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise EncodingError(f"CDR field '{name}' must be an integer, got {value!r}")
        if not isinstance(record.disposition, Disposition):
            raise EncodingError(f"CDR disposition is not a Disposition: {record.disposition!r}")
        if not isinstance(record.amaflags, AmaFlags):
            raise EncodingError(f"CDR amaflags is not an AmaFlags: {record.amaflags!r}")

        try:
            start = format_timestamp(record.start)
            answer = format_timestamp(record.answer)
            end = format_timestamp(record.end)
        except (AttributeError, TypeError, ValueError, OverflowError) as exc:
            raise EncodingError(f"CDR timestamp cannot be rendered: {exc}") from exc

        document: dict[str, Any] = {
            "clid": record.clid,
            "src": record.src,
            "dst": record.dst,
            "dcontext": record.dcontext,
            "channel": record.channel,
            "dstchannel": record.dstchannel,
            "lastapp": record.lastapp,
            "lastdata": record.lastdata,
            "start": start,
            "answer": answer,
            "end": end,
            "durationsec": record.duration,
            "billsec": record.billsec,
            "disposition": record.disposition.label,
            "accountcode": record.accountcode,
            "amaflags": record.amaflags.label,
            "peeraccount": record.peeraccount,
            "linkedid": record.linkedid,
        }

        if snapshot.include_unique_id:
            document["uniqueid"] = _require_str("uniqueid", record.uniqueid)
        if snapshot.include_user_field:
            document["userfield"] = _require_str("userfield", record.userfield)

        return document

    def encode(self, document: dict[str, Any]) -> bytes:
        """
        Dump a document to compact UTF-8 JSON bytes.

        Raises:
            EncodingError: If the document is not serialisable or not valid UTF-8.
        """
        try:
            return json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            logger.error("Failed to build string from JSON: %s", exc)
            raise EncodingError(f"Failed to encode CDR document: {exc}") from exc

    def serialize(self, record: CallRecord, snapshot: ConfigSnapshot) -> PublishedDocument:
        document = self.to_fields(record, snapshot)
        return PublishedDocument(fields=document, body=self.encode(document))


def _require_str(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise EncodingError(f"CDR field '{name}' must be a string, got {type(value).__name__}")
    return value
