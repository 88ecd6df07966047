"""Tests for the Loggly delivery client with retry logic."""

import requests

from conftest import FakeSession

from loggly_shipper.delivery import (
    LogglyDeliveryClient,
    build_endpoint_url,
    mask_token,
)
from loggly_shipper.errors import ConfigurationError, NetworkError

TOKEN = "0123456789abcdef"


def _make_client(outcomes, **overrides):
    session = FakeSession(outcomes)
    delays: list[float] = []
    settings = {
        "server": "logs-01.loggly.com:443",
        "token": TOKEN,
        "tag": "myapp",
        "session": session,
        "sleep": delays.append,
    }
    settings.update(overrides)
    return LogglyDeliveryClient(**settings), session, delays


class TestEndpointUrl:
    def test_template(self):
        url = build_endpoint_url("logs-01.loggly.com:443", "tok", "myapp")
        assert url == "https://logs-01.loggly.com:443/bulk/tok/tag/myapp"

    def test_tag_escaped(self):
        url = build_endpoint_url("logs-01.loggly.com", "tok", "my app/x")
        assert url.endswith("/tag/my%20app%2Fx")

    def test_comma_separated_tags_kept(self):
        url = build_endpoint_url("logs-01.loggly.com", "tok", "web,prod")
        assert url.endswith("/tag/web,prod")

    def test_masked_url_hides_token(self):
        client, _, _ = _make_client([])
        assert TOKEN not in client.endpoint_url
        assert mask_token(TOKEN) in client.endpoint_url

    def test_mask_short_token(self):
        assert mask_token("abc") == "***"


class TestSend:
    def test_success_posts_ndjson(self):
        client, session, delays = _make_client([200])
        result = client.send(['{"a":1}', '{"b":2}'])

        assert result.success is True
        assert result.attempts == 1
        assert result.record_count == 2
        assert result.status_code == 200
        assert result.bytes_sent == len(b'{"a":1}\n{"b":2}')
        assert delays == []

        call = session.calls[0]
        assert call["url"] == f"https://logs-01.loggly.com:443/bulk/{TOKEN}/tag/myapp"
        assert call["data"] == b'{"a":1}\n{"b":2}'
        assert call["headers"]["Content-Type"] == "application/json"
        assert call["timeout"] == 5.0

    def test_retries_5xx_then_succeeds(self):
        client, session, delays = _make_client([503, 503, 200])
        result = client.send(['{"a":1}'])

        assert result.success is True
        assert result.attempts == 3
        assert len(session.calls) == 3
        assert len(delays) == 2

    def test_exhausted_retries_report_network_error(self):
        client, session, delays = _make_client([500, 502, 503])
        result = client.send(['{"a":1}'])

        assert result.success is False
        assert result.attempts == 3
        assert result.status_code == 503
        assert isinstance(result.error, NetworkError)
        assert len(session.calls) == 3
        assert len(delays) == 2

    def test_4xx_not_retried(self):
        client, session, delays = _make_client([403, 200])
        result = client.send(['{"a":1}'])

        assert result.success is False
        assert result.attempts == 1
        assert result.status_code == 403
        assert isinstance(result.error, ConfigurationError)
        assert len(session.calls) == 1
        assert delays == []

    def test_connection_error_retried(self):
        client, session, _ = _make_client([requests.ConnectionError("refused"), 200])
        result = client.send(['{"a":1}'])
        assert result.success is True
        assert result.attempts == 2

    def test_timeout_retried_then_fails(self):
        client, session, _ = _make_client(
            [requests.Timeout(), requests.Timeout()], max_attempts=2,
        )
        result = client.send(['{"a":1}'])
        assert result.success is False
        assert result.status_code is None
        assert isinstance(result.error, NetworkError)
        assert TOKEN not in str(result.error)

    def test_custom_timeout_passed(self):
        client, session, _ = _make_client([200], request_timeout=1.5)
        client.send(["{}"])
        assert session.calls[0]["timeout"] == 1.5

    def test_close_closes_session(self):
        client, session, _ = _make_client([])
        client.close()
        assert session.closed is True


class TestBackoffDelay:
    """Unit tests for the exponential backoff calculation."""

    def test_backoff_delay_calculation(self):
        """Delay grows exponentially: 0.5, 1.0, 2.0, 4.0 (before jitter)."""
        expected_bases = [0.5, 1.0, 2.0, 4.0]
        for attempt, expected_base in enumerate(expected_bases):
            delay = LogglyDeliveryClient._backoff_delay(attempt, 0.5)
            assert expected_base * 0.8 <= delay <= expected_base * 1.2, (
                f"attempt={attempt}, delay={delay}, expected_base={expected_base}"
            )

    def test_max_delay_cap(self):
        for _ in range(50):
            assert LogglyDeliveryClient._backoff_delay(10, 0.5) <= 5.0 * 1.2

    def test_jitter_range(self):
        delays = {LogglyDeliveryClient._backoff_delay(2, 0.5) for _ in range(100)}
        assert len(delays) > 1, "Expected jitter to produce varying delays"

    def test_backoff_uses_configured_base(self):
        client, _, delays = _make_client([503, 200], retry_base_delay=0.1)
        client.send(["{}"])
        assert 0.08 <= delays[0] <= 0.12
