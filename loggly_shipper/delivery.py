"""Delivery client — POSTs batches to the Loggly bulk endpoint with retry."""

import logging
import random
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter

from loggly_shipper.errors import ConfigurationError, NetworkError, ShipperError
from loggly_shipper.splitter import join_documents

logger = logging.getLogger(__name__)

ENDPOINT_URL_TEMPLATE = "{scheme}://{server}/bulk/{token}/tag/{tag}"
CONTENT_TYPE = "application/json"
MAX_BACKOFF = 5.0


def build_endpoint_url(server: str, token: str, tag: str, scheme: str = "https") -> str:
    """Loggly bulk URL. Commas survive escaping so ``a,b`` means two tags."""
    return ENDPOINT_URL_TEMPLATE.format(
        scheme=scheme,
        server=server,
        token=token,
        tag=quote(tag, safe=","),
    )


def mask_token(token: str) -> str:
    if len(token) <= 8:
        return "***"
    return f"{token[:8]}..."


@dataclass
class DeliveryResult:
    success: bool
    attempts: int
    record_count: int
    bytes_sent: int = 0
    status_code: Optional[int] = None
    error: Optional[ShipperError] = None


class LogglyDeliveryClient:
    """Sends newline-delimited JSON batches over a pooled HTTPS session.

    Connection errors, timeouts and 5xx responses are retried with
    exponential backoff up to *max_attempts* in total. A 4xx response means
    the token, tag or payload is wrong, so it is not retried and the result
    carries a ConfigurationError.
    """

    def __init__(
        self,
        server: str,
        token: str,
        tag: str,
        max_attempts: int = 3,
        retry_base_delay: float = 0.5,
        request_timeout: float = 5.0,
        scheme: str = "https",
        session: Optional[requests.Session] = None,
        sleep=time.sleep,
    ):
        self._url = build_endpoint_url(server, token, tag, scheme)
        self._masked_url = build_endpoint_url(server, mask_token(token), tag, scheme)
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self._request_timeout = request_timeout
        self._sleep = sleep

        if session is None:
            session = requests.Session()
            session.mount(f"{scheme}://", HTTPAdapter(pool_connections=1, pool_maxsize=2))
        self._session = session

    @property
    def endpoint_url(self) -> str:
        """Endpoint URL with the token masked, safe to log."""
        return self._masked_url

    def send(self, batch: list[str]) -> DeliveryResult:
        """POST *batch* as one request. Never raises; failures are in the result."""
        body = join_documents(batch)
        last_error: Optional[ShipperError] = None
        status_code = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                response = self._session.post(
                    self._url,
                    data=body,
                    headers={"Content-Type": CONTENT_TYPE},
                    timeout=self._request_timeout,
                )
            except requests.RequestException as exc:
                # requests' messages embed the full URL, token included.
                last_error = NetworkError(f"POST {self._masked_url} failed: {type(exc).__name__}")
                status_code = None
            else:
                status_code = response.status_code
                response.close()
                if status_code < 400:
                    logger.debug(
                        "Delivered %d documents (%d bytes) in %d attempt(s)",
                        len(batch), len(body), attempt,
                    )
                    return DeliveryResult(
                        success=True,
                        attempts=attempt,
                        record_count=len(batch),
                        bytes_sent=len(body),
                        status_code=status_code,
                    )
                if status_code < 500:
                    return DeliveryResult(
                        success=False,
                        attempts=attempt,
                        record_count=len(batch),
                        status_code=status_code,
                        error=ConfigurationError(
                            f"Loggly returned HTTP {status_code} for {self._masked_url}"
                        ),
                    )
                last_error = NetworkError(f"Loggly returned HTTP {status_code}")

            if attempt < self._max_attempts:
                logger.warning(
                    "Send failed (attempt %d/%d): %s",
                    attempt, self._max_attempts, last_error,
                )
                self._sleep(self._backoff_delay(attempt - 1, self._retry_base_delay))

        return DeliveryResult(
            success=False,
            attempts=self._max_attempts,
            record_count=len(batch),
            status_code=status_code,
            error=last_error,
        )

    @staticmethod
    def _backoff_delay(attempt: int, base: float = 0.5) -> float:
        """Exponential backoff with jitter.

        The base delay doubles each attempt (0.5s, 1s, 2s, ...), is capped
        at MAX_BACKOFF, then multiplied by a random factor in [0.8, 1.2].
        """
        capped = min(base * (2 ** attempt), MAX_BACKOFF)
        return capped * random.uniform(0.8, 1.2)

    def close(self):
        """Release pooled connections."""
        self._session.close()
