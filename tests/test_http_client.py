"""Tests for HttpClient (async client against httpx.MockTransport)."""

import asyncio
import json
import logging

import httpx
import pytest

from commit_helper.errors import HttpError, MalformedResponseError, ResponseTooLargeError
from commit_helper.http_client import (
    MAX_ERROR_BODY,
    USER_AGENT,
    HttpClient,
    redact,
    redact_headers,
)


def make_client(handler, **kwargs) -> HttpClient:
    return HttpClient(transport=httpx.MockTransport(handler), **kwargs)


def run_request(client: HttpClient, url: str = "https://forge.test/api", **options):
    async def go():
        async with client:
            return await client.request(url, **options)

    return asyncio.run(go())


class TestRequest:
    def test_returns_parsed_json(self):
        client = make_client(lambda request: httpx.Response(200, json=[{"id": 1}]))
        assert run_request(client) == [{"id": 1}]

    def test_sends_default_and_extra_headers(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json={})

        run_request(make_client(handler), headers={"Authorization": "Bearer tok"})
        assert seen["user-agent"] == USER_AGENT
        assert seen["accept"] == "application/json"
        assert seen["authorization"] == "Bearer tok"

    def test_sends_json_body(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"ok": True})

        result = run_request(make_client(handler), method="POST", body={"title": "x"})
        assert result == {"ok": True}
        assert seen == {"method": "POST", "body": {"title": "x"}}

    def test_non_utf8_bytes_are_replaced(self):
        client = make_client(
            lambda request: httpx.Response(200, content=b'{"title": "caf\xe9"}')
        )
        assert run_request(client) == {"title": "caf\ufffd"}

    def test_closes_pool_on_exit(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        run_request(client)
        assert client._client.is_closed


class TestRequestErrors:
    def test_http_error_carries_status_and_snippet(self):
        client = make_client(lambda request: httpx.Response(404, text="x" * 2000))
        with pytest.raises(HttpError) as exc_info:
            run_request(client)
        err = exc_info.value
        assert err.status == 404
        assert err.reason == "Not Found"
        assert err.code == "http_error"
        assert len(err.body) == MAX_ERROR_BODY
        assert str(err).startswith("HTTP 404 Not Found: xxx")

    def test_http_error_without_body(self):
        client = make_client(lambda request: httpx.Response(503))
        with pytest.raises(HttpError, match=r"^HTTP 503 Service Unavailable$"):
            run_request(client)

    def test_malformed_json(self):
        client = make_client(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(MalformedResponseError) as exc_info:
            run_request(client)
        assert exc_info.value.retryable is False

    def test_response_too_large(self):
        client = make_client(
            lambda request: httpx.Response(200, content=b"[" + b"1," * 100 + b"1]"),
            max_response_size=50,
        )
        with pytest.raises(ResponseTooLargeError) as exc_info:
            run_request(client)
        assert exc_info.value.code == "response_too_large"

    def test_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(HttpError) as exc_info:
            run_request(make_client(handler))
        assert exc_info.value.code == "timeout"
        assert exc_info.value.status == 0

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(HttpError, match="connection refused") as exc_info:
            run_request(make_client(handler))
        assert exc_info.value.code == "connection_error"

    def test_token_not_logged(self, caplog):
        caplog.set_level(logging.DEBUG, logger="commit_helper.http_client")
        client = make_client(lambda request: httpx.Response(200, json=[]))
        run_request(
            client,
            url="https://gitee.com/api/v5/repos/a/b/issues?access_token=s3cret",
            headers={"Authorization": "Bearer s3cret"},
        )
        records = [r for r in caplog.records if r.name == "commit_helper.http_client"]
        assert records
        assert all("s3cret" not in r.getMessage() for r in records)


class TestRequestWithRetry:
    @pytest.fixture()
    def delays(self, monkeypatch):
        recorded = []

        async def fake_sleep(delay):
            recorded.append(delay)

        monkeypatch.setattr("commit_helper.http_client.asyncio.sleep", fake_sleep)
        return recorded

    def _flaky(self, monkeypatch, client, errors, result=None):
        calls = []

        async def fake_request(url, **options):
            calls.append(url)
            if len(calls) <= len(errors):
                raise errors[len(calls) - 1]
            return result

        monkeypatch.setattr(client, "request", fake_request)
        return calls

    def test_succeeds_on_third_attempt(self, monkeypatch, delays):
        client = make_client(lambda request: httpx.Response(200))
        calls = self._flaky(
            monkeypatch,
            client,
            [HttpError("boom", code="connection_error")] * 2,
            result=["ok"],
        )
        result = asyncio.run(client.request_with_retry("https://forge.test"))
        assert result == ["ok"]
        assert len(calls) == 3
        assert delays == [1.0, 2.0]

    def test_reraises_last_error(self, monkeypatch, delays):
        client = make_client(lambda request: httpx.Response(200))
        errors = [HttpError(f"fail {i}", status=500) for i in range(3)]
        calls = self._flaky(monkeypatch, client, errors)
        with pytest.raises(HttpError) as exc_info:
            asyncio.run(client.request_with_retry("https://forge.test"))
        assert exc_info.value is errors[2]
        assert len(calls) == 3

    def test_retries_zero_means_single_attempt(self, monkeypatch, delays):
        client = make_client(lambda request: httpx.Response(200))
        calls = self._flaky(monkeypatch, client, [HttpError("fail")])
        with pytest.raises(HttpError):
            asyncio.run(client.request_with_retry("https://forge.test", retries=0))
        assert len(calls) == 1
        assert delays == []

    def test_malformed_response_not_retried(self, monkeypatch, delays):
        client = make_client(lambda request: httpx.Response(200))
        calls = self._flaky(
            monkeypatch, client, [MalformedResponseError("bad json")], result=[]
        )
        with pytest.raises(MalformedResponseError):
            asyncio.run(client.request_with_retry("https://forge.test"))
        assert len(calls) == 1

    def test_backoff_scales_linearly(self, monkeypatch, delays):
        client = make_client(lambda request: httpx.Response(200))
        client.backoff = 0.5
        self._flaky(monkeypatch, client, [HttpError("x")] * 3, result=[])
        asyncio.run(client.request_with_retry("https://forge.test", retries=3))
        assert delays == [0.5, 1.0, 1.5]

    def test_end_to_end_retry_against_transport(self):
        attempts = []

        def handler(request):
            attempts.append(request.url)
            if len(attempts) == 1:
                return httpx.Response(502)
            return httpx.Response(200, json={"ok": True})

        client = make_client(handler)
        client.backoff = 0

        async def go():
            async with client:
                return await client.request_with_retry("https://forge.test/api")

        assert asyncio.run(go()) == {"ok": True}
        assert len(attempts) == 2


class TestRedaction:
    def test_query_tokens(self):
        assert (
            redact("https://x/issues?access_token=abc&page=1&private_token=def")
            == "https://x/issues?access_token=***&page=1&private_token=***"
        )

    def test_auth_schemes(self):
        assert redact("Authorization: Bearer abc123") == "Authorization: Bearer ***"
        assert redact("token ghp_xyz failed") == "token *** failed"

    def test_plain_text_untouched(self):
        assert redact("GET https://api.github.com/repos/a/b") == (
            "GET https://api.github.com/repos/a/b"
        )

    def test_headers(self):
        assert redact_headers(
            {"Authorization": "Bearer x", "PRIVATE-TOKEN": "y", "Accept": "a"}
        ) == {"Authorization": "***", "PRIVATE-TOKEN": "***", "Accept": "a"}

    def test_headers_none(self):
        assert redact_headers(None) == {}
