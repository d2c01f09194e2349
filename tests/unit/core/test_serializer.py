"""
Unit tests for RecordSerializer.

Tests cover:
- All 18 required keys always present
- durationsec / billsec stay integers; disposition / amaflags are names
- uniqueid / userfield omitted (not null) when disabled, present when enabled
- Timestamp rendering (ms precision, UTC, Z suffix, naive = UTC, unset = epoch)
- Compact UTF-8 JSON body
- EncodingError on wrongly typed fields and unencodable text
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../../src"))

from cdr_amqp.config import ConfigSnapshot
from cdr_amqp.errors import EncodingError
from cdr_amqp.records import AmaFlags, CallRecord, Disposition
from cdr_amqp.serializer import REQUIRED_KEYS, RecordSerializer, format_timestamp

SAMPLE_RECORD = CallRecord(
    clid='"Alice" <100>',
    src="100",
    dst="200",
    dcontext="default",
    channel="PJSIP/100-00000001",
    dstchannel="PJSIP/200-00000002",
    lastapp="Dial",
    lastdata="PJSIP/200,30",
    start=datetime(2025, 2, 5, 10, 30, 0, 123456, tzinfo=timezone.utc),
    answer=datetime(2025, 2, 5, 10, 30, 5, tzinfo=timezone.utc),
    end=datetime(2025, 2, 5, 10, 30, 30, tzinfo=timezone.utc),
    duration=30,
    billsec=25,
    disposition=Disposition.ANSWERED,
    accountcode="acct-1",
    amaflags=AmaFlags.DOCUMENTATION,
    peeraccount="acct-2",
    linkedid="1738751400.1",
    uniqueid="1738751400.1",
    userfield="vip",
)

PLAIN = ConfigSnapshot()
WITH_OPTIONAL = ConfigSnapshot(include_unique_id=True, include_user_field=True)


class TestToFields:
    """Test field selection and value conversion."""

    def setup_method(self) -> None:
        self.serializer = RecordSerializer()

    def test_required_keys_only_by_default(self) -> None:
        document = self.serializer.to_fields(SAMPLE_RECORD, PLAIN)
        assert set(document) == set(REQUIRED_KEYS)
        assert len(document) == 18

    def test_unique_id_omitted_when_disabled(self) -> None:
        document = self.serializer.to_fields(SAMPLE_RECORD, PLAIN)
        assert "uniqueid" not in document
        assert "userfield" not in document

    def test_unique_id_present_when_enabled(self) -> None:
        snapshot = ConfigSnapshot(include_unique_id=True)
        document = self.serializer.to_fields(SAMPLE_RECORD, snapshot)
        assert document["uniqueid"] == "1738751400.1"
        assert "userfield" not in document

    def test_user_field_present_when_enabled(self) -> None:
        snapshot = ConfigSnapshot(include_user_field=True)
        document = self.serializer.to_fields(SAMPLE_RECORD, snapshot)
        assert document["userfield"] == "vip"
        assert "uniqueid" not in document

    def test_empty_optional_value_still_emitted_when_enabled(self) -> None:
        record = CallRecord(userfield="")
        document = self.serializer.to_fields(record, WITH_OPTIONAL)
        assert document["userfield"] == ""

    def test_integers_stay_integers(self) -> None:
        document = self.serializer.to_fields(SAMPLE_RECORD, PLAIN)
        assert document["durationsec"] == 30
        assert isinstance(document["durationsec"], int)
        assert document["billsec"] == 25

    def test_enums_rendered_as_names(self) -> None:
        document = self.serializer.to_fields(SAMPLE_RECORD, PLAIN)
        assert document["disposition"] == "ANSWERED"
        assert document["amaflags"] == "DOCUMENTATION"

    def test_no_answer_disposition(self) -> None:
        record = CallRecord(disposition=Disposition.NULL)
        assert self.serializer.to_fields(record, PLAIN)["disposition"] == "NO ANSWER"

    def test_timestamps(self) -> None:
        document = self.serializer.to_fields(SAMPLE_RECORD, PLAIN)
        assert document["start"] == "2025-02-05T10:30:00.123Z"
        assert document["answer"] == "2025-02-05T10:30:05.000Z"
        assert document["end"] == "2025-02-05T10:30:30.000Z"

    def test_unanswered_call_answer_is_epoch(self) -> None:
        record = CallRecord(disposition=Disposition.BUSY)
        assert self.serializer.to_fields(record, PLAIN)["answer"] == "1970-01-01T00:00:00.000Z"

    def test_non_string_field_raises(self) -> None:
        record = CallRecord(src=100)  # type: ignore[arg-type]
        with pytest.raises(EncodingError):
            self.serializer.to_fields(record, PLAIN)

    def test_non_integer_duration_raises(self) -> None:
        record = CallRecord(duration="30")  # type: ignore[arg-type]
        with pytest.raises(EncodingError):
            self.serializer.to_fields(record, PLAIN)

    def test_raw_disposition_code_raises(self) -> None:
        record = CallRecord(disposition=8)  # type: ignore[arg-type]
        with pytest.raises(EncodingError):
            self.serializer.to_fields(record, PLAIN)


class TestFormatTimestamp:
    """Test timestamp rendering."""

    def test_millisecond_precision(self) -> None:
        value = datetime(2023, 1, 1, 0, 0, 0, 123999, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2023-01-01T00:00:00.123Z"

    def test_naive_is_utc(self) -> None:
        assert format_timestamp(datetime(2023, 1, 1, 12, 0, 0)) == "2023-01-01T12:00:00.000Z"

    def test_offset_converted_to_utc(self) -> None:
        value = datetime(2023, 1, 1, 1, 0, 0, tzinfo=timezone(timedelta(hours=1)))
        assert format_timestamp(value) == "2023-01-01T00:00:00.000Z"


class TestSerialize:
    """Test the encoded body."""

    def setup_method(self) -> None:
        self.serializer = RecordSerializer()

    def test_body_is_compact_json(self) -> None:
        document = self.serializer.serialize(SAMPLE_RECORD, PLAIN)
        assert b", " not in document.body
        assert b'"src":"100"' in document.body
        assert json.loads(document.body.decode("utf-8")) == document.fields

    def test_non_ascii_kept_literal(self) -> None:
        record = CallRecord(clid='"Zoë" <100>')
        document = self.serializer.serialize(record, PLAIN)
        assert "Zoë".encode("utf-8") in document.body
        assert b"\\u00eb" not in document.body

    def test_unencodable_text_raises(self) -> None:
        record = CallRecord(lastdata="\ud800")
        with pytest.raises(EncodingError):
            self.serializer.serialize(record, PLAIN)

    def test_end_to_end_document(self) -> None:
        record = CallRecord(
            clid='"Alice" <100>',
            src="100",
            dst="200",
            duration=30,
            billsec=25,
            disposition=Disposition.ANSWERED,
            uniqueid="u-1",
            userfield="note",
        )
        document = self.serializer.serialize(record, WITH_OPTIONAL)
        decoded = json.loads(document.body)
        assert set(decoded) == set(REQUIRED_KEYS) | {"uniqueid", "userfield"}
        assert decoded["durationsec"] == 30
        assert decoded["disposition"] == "ANSWERED"
        assert decoded["clid"] == '"Alice" <100>'
