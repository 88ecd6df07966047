"""JSON encoder — renders records as single-line Loggly JSON documents.

Loggly's automated JSON parsing wants an ISO-8601 UTC ``timestamp`` with
millisecond precision and a literal ``Z`` suffix. Documents are flat objects:
configured custom fields first, then the record's own fields, then the
reserved keys, so reserved keys always win a name collision.
"""

import datetime
import json
import math
from types import MappingProxyType
from typing import Mapping, Optional

from loggly_shipper.errors import EncodingError
from loggly_shipper.models import Record, RecordKind

TIMESTAMP_FIELD = "timestamp"

# Dropped from caller fields; only the reserved ``timestamp`` is emitted.
SHADOWED_FIELDS = frozenset({"@timestamp"})

_JSON_SCALARS = (bool, int, float, type(None))


def format_timestamp(ts: datetime.datetime) -> str:
    """Format *ts* as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` in UTC."""
    utc = ts.astimezone(datetime.timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def _field_value(key: str, value):
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncodingError(f"Field {key!r} is not valid UTF-8: {exc}") from exc
    if isinstance(value, float) and not math.isfinite(value):
        # JSON has no NaN or Infinity.
        return str(value)
    if isinstance(value, _JSON_SCALARS):
        return value
    return str(value)


class RecordEncoder:
    """Reusable, stateless encoder for one record kind."""

    kind: RecordKind

    def __init__(self, custom_fields: Optional[Mapping[str, str]] = None):
        self._custom_fields = MappingProxyType(dict(custom_fields or {}))

    @property
    def custom_fields(self) -> Mapping[str, str]:
        return self._custom_fields

    def encode(self, record: Record) -> str:
        """Encode *record* as compact JSON text (no trailing newline).

        Raises:
            EncodingError: a field cannot be represented as UTF-8, or the
                record is of a different kind than this encoder.
        """
        if record.kind is not self.kind:
            raise EncodingError(
                f"{type(self).__name__} cannot encode {record.kind.value} records"
            )

        doc: dict = {}
        for source in (self._custom_fields, record.fields):
            for key, value in source.items():
                key = str(key)
                if key in SHADOWED_FIELDS:
                    continue
                doc[key] = _field_value(key, value)

        doc.update(self._reserved(record))

        try:
            text = json.dumps(doc, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
        except ValueError as exc:
            raise EncodingError(f"Record is not representable as JSON: {exc}") from exc
        try:
            text.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise EncodingError(f"Record is not representable as UTF-8: {exc}") from exc
        return text

    def _reserved(self, record: Record) -> dict:
        return {
            TIMESTAMP_FIELD: format_timestamp(record.timestamp),
            "message": record.message,
        }


class LogEncoder(RecordEncoder):
    kind = RecordKind.LOG

    def _reserved(self, record: Record) -> dict:
        doc = super()._reserved(record)
        doc["level"] = record.level.name
        doc["logger"] = record.logger_name
        if record.thread_name:
            doc["thread"] = record.thread_name
        if record.stack_trace:
            doc["stack_trace"] = record.stack_trace
        return doc


class AccessEncoder(RecordEncoder):
    kind = RecordKind.ACCESS

    def _reserved(self, record: Record) -> dict:
        doc = super()._reserved(record)
        doc["method"] = record.method
        doc["path"] = record.path
        doc["status_code"] = record.status_code
        doc["remote_host"] = record.remote_host
        doc["elapsed_ms"] = record.elapsed_ms
        if record.protocol:
            doc["protocol"] = record.protocol
        if record.content_length is not None:
            doc["content_length"] = record.content_length
        return doc


_ENCODERS = {
    RecordKind.LOG: LogEncoder,
    RecordKind.ACCESS: AccessEncoder,
}


def encoder_for(kind: RecordKind, custom_fields: Optional[Mapping[str, str]] = None) -> RecordEncoder:
    """Build the encoder for *kind*, chosen once at shipper construction."""
    return _ENCODERS[kind](custom_fields)


def encode_record(record: Record, custom_fields: Optional[Mapping[str, str]] = None) -> str:
    """One-shot helper; long-lived callers should keep an encoder instead."""
    return encoder_for(record.kind, custom_fields).encode(record)
