"""
Call detail record model.

CallRecord is owned by the host and read-only here. The enums carry the
canonical string names that end up in the published document; the numeric
values match the host's disposition bit flags and AMA flag codes so records
can be built from either form.
"""

import enum
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Any

from cdr_amqp.errors import EncodingError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Disposition(enum.Enum):
    NO_ANSWER = 0
    NULL = 1
    FAILED = 2
    BUSY = 4
    ANSWERED = 8
    CONGESTION = 16

    @property
    def label(self) -> str:
        # NULL has always been reported as NO ANSWER
        if self in (Disposition.NO_ANSWER, Disposition.NULL):
            return "NO ANSWER"
        return self.name

    @classmethod
    def parse(cls, value: Any) -> "Disposition":
        if isinstance(value, Disposition):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            key = value.strip().upper().replace(" ", "_")
            if key in cls.__members__:
                return cls.__members__[key]
        raise ValueError(f"unknown disposition: {value!r}")


class AmaFlags(enum.Enum):
    NONE = 0
    OMIT = 1
    BILLING = 2
    DOCUMENTATION = 3

    @property
    def label(self) -> str:
        return "None" if self is AmaFlags.NONE else self.name

    @classmethod
    def parse(cls, value: Any) -> "AmaFlags":
        if isinstance(value, AmaFlags):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            key = value.strip().upper()
            if key in cls.__members__:
                return cls.__members__[key]
        raise ValueError(f"unknown AMA flags: {value!r}")


@dataclass(frozen=True)
class CallRecord:
    """A completed call, as handed over by the host once per call."""

    clid: str = ""
    src: str = ""
    dst: str = ""
    dcontext: str = ""
    channel: str = ""
    dstchannel: str = ""
    lastapp: str = ""
    lastdata: str = ""
    start: datetime = EPOCH
    answer: datetime = EPOCH
    end: datetime = EPOCH
    duration: int = 0
    billsec: int = 0
    disposition: Disposition = Disposition.NO_ANSWER
    accountcode: str = ""
    amaflags: AmaFlags = AmaFlags.NONE
    peeraccount: str = ""
    linkedid: str = ""
    uniqueid: str = ""
    userfield: str = ""

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "CallRecord":
        """
        Build a record from the host's JSON form.

        Timestamps may be ISO-8601 strings or epoch seconds; empty or missing
        timestamps mean "unset" and become the epoch. Disposition and AMA flags
        may be given by name or numeric code. Unknown keys are ignored.

        Raises:
            EncodingError: If a field cannot be converted.
        """
        if not isinstance(raw, dict):
            raise EncodingError(f"CDR must be a JSON object, got {type(raw).__name__}")

        values: dict[str, Any] = {}
        try:
            for f in fields(cls):
                if f.name not in raw:
                    continue
                value = raw[f.name]
                if f.name in ("start", "answer", "end"):
                    values[f.name] = _parse_timestamp(value)
                elif f.name in ("duration", "billsec"):
                    values[f.name] = int(value) if value not in (None, "") else 0
                elif f.name == "disposition":
                    values[f.name] = Disposition.parse(value)
                elif f.name == "amaflags":
                    values[f.name] = AmaFlags.parse(value)
                else:
                    values[f.name] = "" if value is None else str(value)
        except (TypeError, ValueError, OverflowError) as exc:
            raise EncodingError(f"Malformed CDR field: {exc}") from exc

        return cls(**values)


def _parse_timestamp(value: Any) -> datetime:
    if value in (None, "", 0):
        return EPOCH
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    raise TypeError(f"unsupported timestamp: {value!r}")
