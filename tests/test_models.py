"""Tests for the record model."""

import datetime
import logging

import pytest

from loggly_shipper.models import (
    Level,
    Record,
    RecordKind,
    create_access_record,
    create_log_record,
)


def test_create_log_record_defaults():
    record = create_log_record("INFO", "test message")
    assert record.kind is RecordKind.LOG
    assert record.level is Level.INFO
    assert record.message == "test message"
    assert record.fields == {}
    assert record.timestamp.tzinfo is datetime.timezone.utc


def test_auto_timestamp_is_now():
    record = Record(kind=RecordKind.LOG)
    now = datetime.datetime.now(datetime.timezone.utc)
    delta = (now - record.timestamp).total_seconds()
    assert 0 <= delta < 2


def test_timestamp_normalized_to_utc():
    plus_two = datetime.timezone(datetime.timedelta(hours=2))
    ts = datetime.datetime(2024, 1, 1, 2, 30, tzinfo=plus_two)
    record = create_log_record("ERROR", "boom", timestamp=ts)
    assert record.timestamp == datetime.datetime(2024, 1, 1, 0, 30, tzinfo=datetime.timezone.utc)
    assert record.timestamp.utcoffset() == datetime.timedelta(0)


def test_log_record_without_level_defaults_to_info():
    record = Record(kind=RecordKind.LOG, message="x")
    assert record.level is Level.INFO


def test_invalid_kind_rejected():
    with pytest.raises(ValueError):
        Record(kind="log")


def test_fields_are_copied():
    fields = {"request_id": "abc-123"}
    record = create_log_record("INFO", "x", fields=fields)
    fields["request_id"] = "changed"
    assert record.fields == {"request_id": "abc-123"}


def test_create_access_record_builds_message():
    record = create_access_record("GET", "/health", 200, protocol="HTTP/1.1")
    assert record.kind is RecordKind.ACCESS
    assert record.level is None
    assert record.message == "GET /health HTTP/1.1 200"
    assert record.status_code == 200


def test_create_access_record_explicit_message():
    record = create_access_record("POST", "/orders", 201, message="custom")
    assert record.message == "custom"


class TestLevel:
    @pytest.mark.parametrize(
        "name, expected",
        [
            ("info", Level.INFO),
            ("WARN", Level.WARN),
            ("warning", Level.WARN),
            ("critical", Level.ERROR),
            ("fatal", Level.ERROR),
            ("all", Level.ALL),
            ("OFF", Level.OFF),
        ],
    )
    def test_parse(self, name, expected):
        assert Level.parse(name) is expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError):
            Level.parse("LOUD")

    def test_ordering(self):
        assert Level.ALL < Level.TRACE < Level.DEBUG < Level.INFO < Level.WARN < Level.ERROR < Level.OFF

    @pytest.mark.parametrize(
        "levelno, expected",
        [
            (5, Level.TRACE),
            (logging.DEBUG, Level.DEBUG),
            (logging.INFO, Level.INFO),
            (logging.WARNING, Level.WARN),
            (logging.ERROR, Level.ERROR),
            (logging.CRITICAL, Level.ERROR),
        ],
    )
    def test_from_levelno(self, levelno, expected):
        assert Level.from_levelno(levelno) is expected

    def test_parse_accepts_stdlib_levelno(self):
        assert Level.parse(logging.INFO) is Level.INFO
        assert Level.parse(logging.WARNING) is Level.WARN

    def test_create_log_record_with_stdlib_level(self):
        record = create_log_record(logging.ERROR, "boom")
        assert record.level is Level.ERROR
