"""Tests for HttpClient retry behavior (session and sleep are patched)."""

import os
import sys
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from packages.nestfi.http_client import DEFAULT_RETRY_AFTER, HttpClient, RetryPolicy


def _response(status: int, payload=None, headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.json.return_value = payload
    resp.raise_for_status = MagicMock()
    return resp


@pytest.fixture
def client():
    return HttpClient(base_url="http://api.test/", max_retries=2, backoff_factor=0.01)


class TestHttpClient:
    def test_get_json_joins_url(self, client):
        with patch.object(client.session, "request", return_value=_response(200, {"ok": True})) as request:
            assert client.get_json("/memberships", params={"user": "0xabc"}) == {"ok": True}
        args, kwargs = request.call_args
        assert args == ("GET", "http://api.test/memberships")
        assert kwargs["params"] == {"user": "0xabc"}

    def test_retries_rate_limit_using_retry_after(self, client):
        responses = [_response(429, headers={"Retry-After": "0.2"}), _response(200, {"ok": True})]
        with patch.object(client.session, "request", side_effect=responses), patch(
            "packages.nestfi.http_client.time.sleep"
        ) as sleep:
            assert client.get_json("/x") == {"ok": True}
        delay = sleep.call_args.args[0]
        assert 0.2 <= delay <= 0.3

    def test_retries_server_errors_then_gives_up(self, client):
        with patch.object(client.session, "request", return_value=_response(503)) as request, patch(
            "packages.nestfi.http_client.time.sleep"
        ) as sleep:
            with pytest.raises(requests.exceptions.RetryError):
                client.get("/x")
        assert request.call_count == 3
        assert sleep.call_count == 2

    def test_retries_connection_errors(self, client):
        responses = [requests.exceptions.ConnectionError("refused"), _response(200, [1])]
        with patch.object(client.session, "request", side_effect=responses), patch(
            "packages.nestfi.http_client.time.sleep"
        ):
            assert client.get_json("/x") == [1]

    def test_post_json_sends_body(self, client):
        with patch.object(client.session, "request", return_value=_response(200, {"success": True})) as request:
            assert client.post_json("/pageviews", json_body={"page": "landing"}) == {"success": True}
        assert request.call_args.kwargs["json"] == {"page": "landing"}

    def test_client_errors_are_not_retried(self, client):
        with patch.object(client.session, "request", return_value=_response(404)) as request:
            assert client.get("/missing").status_code == 404
        assert request.call_count == 1


class TestRetryPolicy:
    def test_unparseable_retry_after_uses_default(self):
        policy = RetryPolicy()
        delay = policy.retry_after(_response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}))
        assert DEFAULT_RETRY_AFTER <= delay <= DEFAULT_RETRY_AFTER * 1.5

    def test_backoff_doubles(self):
        policy = RetryPolicy(backoff_factor=1.0)
        assert 4.0 <= policy.backoff(2) <= 6.0

    def test_retry_after_capped_at_max_delay(self):
        policy = RetryPolicy(max_delay=1.0)
        assert policy.retry_after(_response(429, headers={"Retry-After": "3600"})) <= 1.0
        assert policy.backoff(10) <= 1.0


def test_long_retry_after_sleeps_at_most_the_timeout():
    client = HttpClient(base_url="http://api.test", timeout=1.5, max_retries=1)
    responses = [_response(429, headers={"Retry-After": "3600"}), _response(200, {"ok": True})]
    with patch.object(client.session, "request", side_effect=responses), patch(
        "packages.nestfi.http_client.time.sleep"
    ) as sleep:
        assert client.get_json("/x") == {"ok": True}
    assert sleep.call_args.args[0] <= 1.5
