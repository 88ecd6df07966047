import json
import threading
import time

import pytest

from loggly_shipper.config import LogglyConfig
from loggly_shipper.delivery import DeliveryResult
from loggly_shipper.errors import NetworkError
from loggly_shipper.models import RecordKind
from loggly_shipper.shipper import LogglyShipper
from loggly_shipper.splitter import join_documents


class FakeDeliveryClient:
    """Records every batch instead of talking to Loggly."""

    endpoint_url = "https://logs-01.loggly.com:443/bulk/***/tag/test"

    def __init__(self, delay: float = 0.0, succeed: bool = True):
        self.batches: list[list[str]] = []
        self.closed = False
        self._delay = delay
        self._succeed = succeed
        self._lock = threading.Lock()

    def send(self, batch):
        if self._delay:
            time.sleep(self._delay)
        with self._lock:
            self.batches.append(list(batch))
        if self._succeed:
            return DeliveryResult(
                success=True,
                attempts=1,
                record_count=len(batch),
                bytes_sent=len(join_documents(batch)),
                status_code=200,
            )
        return DeliveryResult(
            success=False,
            attempts=3,
            record_count=len(batch),
            status_code=503,
            error=NetworkError("Loggly returned HTTP 503"),
        )

    def close(self):
        self.closed = True

    @property
    def documents(self) -> list[dict]:
        with self._lock:
            return [json.loads(doc) for batch in self.batches for doc in batch]


class FakeResponse:
    def __init__(self, status_code: int):
        self.status_code = status_code
        self.closed = False

    def close(self):
        self.closed = True


class FakeSession:
    """Stands in for requests.Session; each outcome is a status code or an exception."""

    def __init__(self, outcomes):
        self._outcomes = list(outcomes)
        self.calls: list[dict] = []
        self.closed = False

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)

    def close(self):
        self.closed = True


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.02) -> bool:
    """Poll *predicate* until it is truthy or *timeout* elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


class ErrorCollector(list):
    """List-backed error sink."""

    def sink(self, error):
        self.append(error)


@pytest.fixture
def errors():
    return ErrorCollector()


@pytest.fixture
def make_shipper(errors):
    """Factory for shippers wired to a FakeDeliveryClient; closes them afterwards."""
    created = []

    def _make(kind=RecordKind.LOG, client=None, **overrides):
        settings = {"token": "test-token", "tag": "test", "batch_max_age": 60.0}
        settings.update(overrides)
        client = client or FakeDeliveryClient()
        shipper = LogglyShipper(
            LogglyConfig(**settings),
            kind=kind,
            error_sink=errors.sink,
            delivery_client=client,
        )
        created.append(shipper)
        return shipper, client

    yield _make

    for shipper in created:
        shipper.close()
