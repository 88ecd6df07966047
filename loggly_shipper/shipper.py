"""Loggly shipper — orchestrates encoder, batch buffer, splitter, delivery and metrics."""

import enum
import logging
import threading
import time
from typing import Callable, Optional

from loggly_shipper.batch_buffer import BatchBuffer
from loggly_shipper.config import LogglyConfig, resolve_tag
from loggly_shipper.delivery import MAX_BACKOFF, DeliveryResult, LogglyDeliveryClient
from loggly_shipper.encoder import encoder_for
from loggly_shipper.errors import (
    BufferOverflowError,
    ClosedError,
    EncodingError,
    NetworkError,
    ShipperError,
)
from loggly_shipper.metrics import MetricsCollector
from loggly_shipper.models import Record, RecordKind
from loggly_shipper.splitter import split_batch

logger = logging.getLogger(__name__)

ErrorSink = Callable[[ShipperError], None]


class ShipperState(enum.Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


def log_error_sink(error: ShipperError) -> None:
    """Default error sink: report through this module's logger."""
    logger.error("Loggly shipping error: %s: %s", type(error).__name__, error)


class LogglyShipper:
    """Accepts records of one kind, batches them and ships them to Loggly.

    ``submit`` only encodes and buffers; a single background worker drains
    the buffer when it fills up or its oldest document gets too old, and
    sends outside the buffer lock. ``flush`` and ``close`` send in the
    calling thread and block until done. Delivery is best-effort: a batch
    that still fails after retries is reported to the error sink and dropped.
    """

    def __init__(
        self,
        config: LogglyConfig,
        kind: RecordKind = RecordKind.LOG,
        application_name: Optional[str] = None,
        error_sink: Optional[ErrorSink] = None,
        delivery_client=None,
        clock=time.monotonic,
    ):
        self._config = config
        self._kind = kind
        self._encoder = encoder_for(kind, config.custom_fields)
        self._buffer = BatchBuffer(
            batch_max_records=config.batch_max_records,
            batch_max_age=config.batch_max_age,
            max_pending=config.max_pending,
            clock=clock,
        )
        if delivery_client is None:
            delivery_client = LogglyDeliveryClient(
                server=config.server,
                token=config.token,
                tag=resolve_tag(config, application_name),
                max_attempts=config.max_attempts,
                retry_base_delay=config.retry_base_delay,
                request_timeout=config.request_timeout,
            )
        self._client = delivery_client
        self._error_sink = error_sink or log_error_sink
        self._metrics = MetricsCollector()

        self._state = ShipperState.OPEN
        self._state_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._wakeup = threading.Event()
        self._stop = threading.Event()
        self._closed = threading.Event()
        self._delivering = threading.local()
        self._poll_interval = min(max(config.batch_max_age / 2, 0.05), 1.0)

        self._worker = threading.Thread(
            target=self._delivery_loop, name=f"loggly-{kind.value}-shipper", daemon=True
        )
        self._worker.start()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def submit(self, record: Record) -> bool:
        """Encode and buffer *record*. Never blocks on network I/O.

        Returns True if the record was buffered, False if it was filtered
        out by the threshold or dropped (the drop goes to the error sink).

        Raises:
            ClosedError: the shipper is closing or closed.
        """
        if self._state is not ShipperState.OPEN:
            raise ClosedError("Cannot submit to a closed Loggly shipper")

        self._metrics.record_submitted()
        if record.kind is RecordKind.LOG and record.level < self._config.threshold:
            self._metrics.record_filtered()
            return False

        try:
            doc = self._encoder.encode(record)
        except EncodingError as exc:
            self._metrics.record_dropped()
            self._report(exc)
            return False

        # Appending under the state lock means close() can never drain
        # before a record that passed the state check lands in the buffer.
        with self._state_lock:
            if self._state is not ShipperState.OPEN:
                raise ClosedError("Cannot submit to a closed Loggly shipper")
            accepted = self._buffer.append(doc)

        if not accepted:
            self._metrics.record_dropped()
            self._report(BufferOverflowError(
                f"{self._config.max_pending} documents pending, dropping record"
            ))
            return False

        if self._buffer.should_flush():
            self._wakeup.set()
        return True

    def flush(self) -> list[DeliveryResult]:
        """Drain and send everything buffered now, waiting for any in-flight send."""
        return self._flush("manual")

    def close(self):
        """Flush remaining records, stop the worker and release the client.

        Safe to call more than once; later callers wait for the first close.
        """
        with self._state_lock:
            if self._state is not ShipperState.OPEN:
                first = False
            else:
                self._state = ShipperState.CLOSING
                first = True

        if not first:
            self._closed.wait()
            return

        try:
            self._stop.set()
            self._wakeup.set()
            self._worker.join(timeout=self._max_send_time())
            if self._worker.is_alive():
                logger.warning("Delivery worker still busy after %.1fs", self._max_send_time())
            self._flush("close")
        finally:
            self._client.close()
            with self._state_lock:
                self._state = ShipperState.CLOSED
            self._closed.set()
            logger.info("Loggly %s shipper closed: %s", self._kind.value, self._metrics.snapshot())

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> ShipperState:
        return self._state

    @property
    def kind(self) -> RecordKind:
        return self._kind

    @property
    def pending_count(self) -> int:
        return self._buffer.pending_count

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def delivering_in_current_thread(self) -> bool:
        """True while the calling thread is inside a send to Loggly.

        Anything logged in that window comes from the HTTP stack (urllib3
        logs the request line, token included) and must not be shipped.
        """
        return getattr(self._delivering, "active", False)

    @property
    def endpoint_url(self) -> str:
        """Target URL with the token masked."""
        return getattr(self._client, "endpoint_url", "")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _delivery_loop(self):
        """Worker thread: wake on size trigger, poll for the age trigger."""
        while not self._stop.is_set():
            self._wakeup.wait(timeout=self._poll_interval)
            self._wakeup.clear()
            if self._stop.is_set():
                break
            if self._buffer.should_flush():
                if self._buffer.pending_count >= self._buffer.batch_max_records:
                    trigger = "size"
                else:
                    trigger = "age"
                self._flush(trigger)

    def _flush(self, trigger: str) -> list[DeliveryResult]:
        with self._send_lock:
            docs = self._buffer.drain()
            if not docs:
                return []
            self._metrics.record_flush(trigger)
            results = [
                self._deliver(chunk)
                for chunk in split_batch(docs, self._config.batch_max_records)
            ]

        logger.debug(
            "Flushed %d documents in %d request(s) (trigger=%s)",
            len(docs), len(results), trigger,
        )
        return results

    def _deliver(self, chunk: list[str]) -> DeliveryResult:
        start = time.monotonic()
        self._delivering.active = True
        try:
            result = self._client.send(chunk)
        except Exception as exc:
            logger.exception("Delivery client raised for batch of %d documents", len(chunk))
            result = DeliveryResult(
                success=False,
                attempts=1,
                record_count=len(chunk),
                error=NetworkError(f"Delivery client raised {type(exc).__name__}"),
            )
        finally:
            self._delivering.active = False
        elapsed_ms = (time.monotonic() - start) * 1000

        self._metrics.record_batch(
            record_count=len(chunk),
            bytes_sent=result.bytes_sent,
            send_time_ms=elapsed_ms,
            success=result.success,
        )
        if not result.success:
            self._report(result.error or NetworkError("Delivery failed"))
        return result

    def _report(self, error: ShipperError):
        """Hand *error* to the sink; a failing sink never reaches the caller."""
        try:
            self._error_sink(error)
        except Exception:
            logger.exception("Error sink failed while reporting %r", error)

    def _max_send_time(self) -> float:
        per_attempt = self._config.request_timeout + MAX_BACKOFF * 1.2
        return self._config.max_attempts * per_attempt + 1.0
