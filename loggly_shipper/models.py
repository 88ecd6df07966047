"""Record model — log and access events plus their custom fields."""

import datetime
import enum
import logging
from dataclasses import dataclass, field
from typing import Optional


class Level(enum.IntEnum):
    """Severity levels. ALL and OFF only make sense as thresholds."""

    ALL = 0
    TRACE = 5000
    DEBUG = 10000
    INFO = 20000
    WARN = 30000
    ERROR = 40000
    OFF = 2 ** 31 - 1

    @classmethod
    def parse(cls, name: "str | int | Level") -> "Level":
        """Parse a level name, accepting Python's WARNING/CRITICAL/FATAL aliases.

        Plain ints are read as stdlib ``logging`` levels (``logging.INFO``).
        """
        if isinstance(name, Level):
            return name
        if isinstance(name, int) and not isinstance(name, bool):
            return cls.from_levelno(name)
        key = str(name).strip().upper()
        key = _LEVEL_ALIASES.get(key, key)
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Unknown level: {name!r}") from None

    @classmethod
    def from_levelno(cls, levelno: int) -> "Level":
        """Map a stdlib ``logging`` numeric level onto a Level."""
        if levelno >= logging.ERROR:
            return cls.ERROR
        if levelno >= logging.WARNING:
            return cls.WARN
        if levelno >= logging.INFO:
            return cls.INFO
        if levelno >= logging.DEBUG:
            return cls.DEBUG
        return cls.TRACE


_LEVEL_ALIASES = {
    "WARNING": "WARN",
    "CRITICAL": "ERROR",
    "FATAL": "ERROR",
}


class RecordKind(enum.Enum):
    LOG = "log"
    ACCESS = "access"


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class Record:
    kind: RecordKind
    timestamp: Optional[datetime.datetime] = None
    message: str = ""
    fields: dict = field(default_factory=dict)

    # LOG kind
    level: Optional[Level] = None
    logger_name: str = ""
    thread_name: Optional[str] = None
    stack_trace: Optional[str] = None

    # ACCESS kind
    method: str = ""
    path: str = ""
    status_code: int = 0
    remote_host: str = ""
    elapsed_ms: int = 0
    protocol: Optional[str] = None
    content_length: Optional[int] = None

    def __post_init__(self):
        if not isinstance(self.kind, RecordKind):
            raise ValueError(f"Record kind must be a RecordKind, got {self.kind!r}")
        if self.timestamp is None:
            self.timestamp = utc_now()
        else:
            # Naive datetimes are interpreted as local time.
            self.timestamp = self.timestamp.astimezone(datetime.timezone.utc)
        if self.kind is RecordKind.LOG:
            self.level = Level.INFO if self.level is None else Level.parse(self.level)
        self.fields = dict(self.fields) if self.fields else {}


def create_log_record(
    level,
    message: str,
    logger_name: str = "",
    fields: Optional[dict] = None,
    timestamp: Optional[datetime.datetime] = None,
    thread_name: Optional[str] = None,
    stack_trace: Optional[str] = None,
) -> Record:
    """Factory for an application log record."""
    return Record(
        kind=RecordKind.LOG,
        timestamp=timestamp,
        message=message,
        fields=fields if fields is not None else {},
        level=Level.parse(level),
        logger_name=logger_name,
        thread_name=thread_name,
        stack_trace=stack_trace,
    )


def create_access_record(
    method: str,
    path: str,
    status_code: int,
    remote_host: str = "",
    elapsed_ms: int = 0,
    fields: Optional[dict] = None,
    timestamp: Optional[datetime.datetime] = None,
    protocol: Optional[str] = None,
    content_length: Optional[int] = None,
    message: Optional[str] = None,
) -> Record:
    """Factory for an HTTP access record.

    When *message* is omitted it is built in the familiar request-line form,
    e.g. ``GET /health HTTP/1.1 200``.
    """
    if message is None:
        request_line = f"{method} {path}"
        if protocol:
            request_line = f"{request_line} {protocol}"
        message = f"{request_line} {status_code}"
    return Record(
        kind=RecordKind.ACCESS,
        timestamp=timestamp,
        message=message,
        fields=fields if fields is not None else {},
        method=method,
        path=path,
        status_code=int(status_code),
        remote_host=remote_host,
        elapsed_ms=int(elapsed_ms),
        protocol=protocol,
        content_length=content_length,
    )
