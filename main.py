"""Entry point — ships sample application or access logs to Loggly."""

import logging
import random
import signal
import sys
import threading
import time

from loggly_shipper.appenders import AccessLogger, build_from_block
from loggly_shipper.config import build_arg_parser, load_settings
from loggly_shipper.errors import ConfigurationError

SAMPLE_LEVELS = [logging.DEBUG, logging.INFO, logging.INFO, logging.INFO, logging.WARNING, logging.ERROR]
SAMPLE_MESSAGES = [
    "User logged in",
    "Request processed successfully",
    "Database query completed",
    "Cache miss for key",
    "Configuration reloaded",
    "Health check passed",
    "Connection timeout to upstream",
    "Disk usage above threshold",
    "Authentication failed for user",
    "Service restarted",
]
SAMPLE_REQUESTS = [
    ("GET", "/", 200),
    ("GET", "/health", 200),
    ("POST", "/api/orders", 201),
    ("GET", "/api/orders/42", 404),
    ("PUT", "/api/orders/42", 500),
]


def _emit_sample(entry_point, sample_logger: logging.Logger):
    if isinstance(entry_point, AccessLogger):
        method, path, status = random.choice(SAMPLE_REQUESTS)
        entry_point.log_request(
            method, path, status,
            remote_host="127.0.0.1",
            elapsed_ms=random.randint(1, 250),
            protocol="HTTP/1.1",
        )
    else:
        sample_logger.log(
            random.choice(SAMPLE_LEVELS),
            random.choice(SAMPLE_MESSAGES),
            extra={"request_id": f"req-{random.randint(1000, 9999)}"},
        )


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger(__name__)

    args = build_arg_parser().parse_args()
    try:
        entry_point = build_from_block(load_settings(args), args.application_name)
    except ConfigurationError as exc:
        logger.error("Invalid Loggly configuration: %s", exc)
        sys.exit(2)

    sample_logger = logging.getLogger(args.application_name)
    if not isinstance(entry_point, AccessLogger):
        sample_logger.addHandler(entry_point)

    shutdown_event = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    shipper = entry_point.shipper
    logger.info(
        "Shipping %s records to %s: %d/s for %ds",
        shipper.kind.value,
        shipper.endpoint_url,
        args.logs_per_second,
        args.run_time,
    )

    try:
        for _ in range(args.run_time):
            if shutdown_event.is_set():
                break
            second_start = time.monotonic()
            for _ in range(args.logs_per_second):
                _emit_sample(entry_point, sample_logger)

            # Sleep until the next second boundary
            remaining = 1.0 - (time.monotonic() - second_start)
            if remaining > 0:
                shutdown_event.wait(timeout=remaining)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        if not isinstance(entry_point, AccessLogger):
            sample_logger.removeHandler(entry_point)
        entry_point.close()
        logger.info("Shipper metrics: %s", shipper.metrics.snapshot())


if __name__ == "__main__":
    main()
