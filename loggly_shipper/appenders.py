"""Entry points — a logging.Handler for application logs and an access logger
(plus WSGI middleware) for HTTP requests, each backed by its own shipper."""

import datetime
import logging
import time
from typing import Mapping, Optional

from loggly_shipper.config import LogglyConfig, block_kind, config_from_mapping
from loggly_shipper.errors import ShipperError
from loggly_shipper.models import Level, Record, RecordKind, create_access_record
from loggly_shipper.shipper import ErrorSink, LogglyShipper, ShipperState

logger = logging.getLogger(__name__)

# Attributes every LogRecord has; anything else arrived through ``extra``.
_DEFAULT_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}

_PACKAGE_LOGGER = __name__.split(".")[0]


class _OwnRecordsFilter(logging.Filter):
    """Keeps the shipper's own diagnostics out of the shipper.

    Drops records from this package's loggers, and any record logged by a
    thread while it is sending to Loggly (the HTTP stack's debug output).
    Shipping either would feed every send into the next one.
    """

    def __init__(self, shipper: LogglyShipper):
        super().__init__()
        self._shipper = shipper

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name == _PACKAGE_LOGGER or name.startswith(_PACKAGE_LOGGER + "."):
            return False
        return not self._shipper.delivering_in_current_thread


class LogglyHandler(logging.Handler):
    """Ships stdlib ``logging`` records to Loggly.

    Extra attributes passed via ``extra={...}`` become document fields.
    Level filtering is done by the shipper's configured threshold.
    """

    def __init__(self, shipper: LogglyShipper):
        if shipper.kind is not RecordKind.LOG:
            raise ValueError("LogglyHandler needs a shipper for log records")
        super().__init__()
        self._shipper = shipper
        self._fallback_formatter = logging.Formatter()
        self.addFilter(_OwnRecordsFilter(shipper))

    @property
    def shipper(self) -> LogglyShipper:
        return self._shipper

    def to_record(self, record: logging.LogRecord) -> Record:
        """Convert a stdlib LogRecord into a shipper Record."""
        formatter = self.formatter or self._fallback_formatter

        stack_trace = None
        if record.exc_info and record.exc_info[0] is not None:
            stack_trace = formatter.formatException(record.exc_info)
        elif record.exc_text:
            stack_trace = record.exc_text
        if record.stack_info:
            stack = formatter.formatStack(record.stack_info)
            stack_trace = f"{stack_trace}\n{stack}" if stack_trace else stack

        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _DEFAULT_RECORD_ATTRS
        }

        return Record(
            kind=RecordKind.LOG,
            timestamp=datetime.datetime.fromtimestamp(record.created, tz=datetime.timezone.utc),
            message=record.getMessage(),
            fields=fields,
            level=Level.from_levelno(record.levelno),
            logger_name=record.name,
            thread_name=record.threadName,
            stack_trace=stack_trace,
        )

    def emit(self, record: logging.LogRecord) -> None:
        # Records arriving during interpreter shutdown, after close().
        if self._shipper.state is not ShipperState.OPEN:
            return
        try:
            self._shipper.submit(self.to_record(record))
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        # No handler lock here: emit must not wait on a network send.
        if self._shipper.state is ShipperState.OPEN:
            self._shipper.flush()

    def close(self) -> None:
        try:
            self._shipper.close()
        finally:
            super().close()


class AccessLogger:
    """Ships HTTP access events to Loggly."""

    def __init__(self, shipper: LogglyShipper):
        if shipper.kind is not RecordKind.ACCESS:
            raise ValueError("AccessLogger needs a shipper for access records")
        self._shipper = shipper

    @property
    def shipper(self) -> LogglyShipper:
        return self._shipper

    def log_request(
        self,
        method: str,
        path: str,
        status_code: int,
        remote_host: str = "",
        elapsed_ms: int = 0,
        fields: Optional[dict] = None,
        protocol: Optional[str] = None,
        content_length: Optional[int] = None,
        message: Optional[str] = None,
    ) -> bool:
        """Submit one request. Raises ClosedError after ``close()``."""
        return self._shipper.submit(create_access_record(
            method=method,
            path=path,
            status_code=status_code,
            remote_host=remote_host,
            elapsed_ms=elapsed_ms,
            fields=fields,
            protocol=protocol,
            content_length=content_length,
            message=message,
        ))

    def flush(self):
        return self._shipper.flush()

    def close(self):
        self._shipper.close()


class _LoggedResponse:
    """Wraps a WSGI response iterable and reports once it is closed."""

    def __init__(self, iterable, on_close):
        self._iterable = iterable
        self._on_close = on_close
        self._length = 0

    def __iter__(self):
        for chunk in self._iterable:
            self._length += len(chunk)
            yield chunk

    def close(self):
        try:
            close = getattr(self._iterable, "close", None)
            if close is not None:
                close()
        finally:
            self._on_close(self._length)


class AccessLogMiddleware:
    """WSGI middleware logging every request through an AccessLogger.

    The request is logged when the server closes the response, so the
    elapsed time covers streaming the body. Shipping problems are logged
    locally and never break the wrapped application.
    """

    def __init__(self, app, access_logger: AccessLogger):
        self._app = app
        self._access_logger = access_logger

    def __call__(self, environ, start_response):
        start = time.monotonic()
        response = {}

        def _start_response(status, headers, exc_info=None):
            response["status"] = status
            return start_response(status, headers, exc_info)

        try:
            iterable = self._app(environ, _start_response)
        except Exception:
            self._log(environ, "500 Internal Server Error", None, start)
            raise

        return _LoggedResponse(
            iterable,
            lambda length: self._log(environ, response.get("status", "500"), length, start),
        )

    def _log(self, environ: Mapping, status: str, length: Optional[int], start: float):
        method = environ.get("REQUEST_METHOD", "GET")
        path = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
        query = environ.get("QUERY_STRING", "")
        protocol = environ.get("SERVER_PROTOCOL")
        status_code = int(status.split(" ", 1)[0])

        target = f"{path}?{query}" if query else path
        message = f"{method} {target}"
        if protocol:
            message = f"{message} {protocol}"

        try:
            self._access_logger.log_request(
                method=method,
                path=path,
                status_code=status_code,
                remote_host=environ.get("REMOTE_ADDR", ""),
                elapsed_ms=int((time.monotonic() - start) * 1000),
                protocol=protocol,
                content_length=length,
                message=f"{message} {status_code}",
            )
        except ShipperError as exc:
            logger.warning("Could not ship access log for %s %s: %s", method, path, exc)


# ----------------------------------------------------------------------
# Constructor functions
# ----------------------------------------------------------------------

def build_log_handler(
    config: LogglyConfig,
    application_name: Optional[str] = None,
    error_sink: Optional[ErrorSink] = None,
) -> LogglyHandler:
    """Handler shipping application logs, tagged with *application_name*
    unless the config sets a tag."""
    return LogglyHandler(LogglyShipper(
        config, RecordKind.LOG, application_name=application_name, error_sink=error_sink,
    ))


def build_access_logger(
    config: LogglyConfig,
    application_name: Optional[str] = None,
    error_sink: Optional[ErrorSink] = None,
) -> AccessLogger:
    """Access logger shipping HTTP request events."""
    return AccessLogger(LogglyShipper(
        config, RecordKind.ACCESS, application_name=application_name, error_sink=error_sink,
    ))


def build_from_block(
    block: Mapping,
    application_name: Optional[str] = None,
    error_sink: Optional[ErrorSink] = None,
):
    """Build the entry point a config block asks for: ``type: loggly`` gives a
    LogglyHandler, ``type: loggly-request`` an AccessLogger."""
    kind = block_kind(block)
    config = config_from_mapping(block)
    if kind is RecordKind.ACCESS:
        return build_access_logger(config, application_name, error_sink)
    return build_log_handler(config, application_name, error_sink)
