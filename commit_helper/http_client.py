"""Pooled async HTTP client for forge REST APIs.

One keep-alive connection pool per scheme is shared by every platform, so
repeated issue polling against the same forge reuses TCP/TLS connections.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import ssl
from collections.abc import Mapping
from typing import Any

import httpx

from .errors import HttpError, MalformedResponseError, ResponseTooLargeError

logger = logging.getLogger(__name__)

USER_AGENT = "commit-helper"
DEFAULT_TIMEOUT = 8.0
MAX_RESPONSE_SIZE = 10 * 1024 * 1024
MAX_ERROR_BODY = 500

# Per-scheme pool: a handful of sockets, two kept warm between polls
POOL_LIMITS = httpx.Limits(max_connections=5, max_keepalive_connections=2)

_SECRET_QUERY_RE = re.compile(r"\b((?:access_|private_)?token=)[^&#\s]+", re.IGNORECASE)
_SECRET_AUTH_RE = re.compile(r"\b(Bearer|token)\s+[^\s,;'\"}]+", re.IGNORECASE)
_SECRET_HEADERS = frozenset({"authorization", "private-token"})


def redact(text: str) -> str:
    """Mask token query parameters and Bearer/token credentials in text."""
    text = _SECRET_QUERY_RE.sub(r"\1***", text)
    return _SECRET_AUTH_RE.sub(r"\1 ***", text)


def redact_headers(headers: Mapping[str, str] | None) -> dict[str, str]:
    """Copy of headers with credential values masked."""
    if not headers:
        return {}
    return {
        name: "***" if name.lower() in _SECRET_HEADERS else value
        for name, value in headers.items()
    }


class HttpClient:
    """Async JSON-over-HTTP client with pooling, size limits and retries.

    Every failure surfaces as HttpError (or a subclass) so callers only need
    to catch one exception type.
    """

    backoff = 1.0

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_response_size: int = MAX_RESPONSE_SIZE,
        verify: bool | ssl.SSLContext = True,
        **kwargs: Any,
    ):
        """Initialize the client.

        Args:
            timeout: Default per-request timeout in seconds.
            max_response_size: Largest accepted body in bytes.
            verify: TLS verification flag or custom SSL context.
            **kwargs: Passed to httpx.AsyncClient. An explicit ``transport``
                replaces the per-scheme pools (used by tests).
        """
        self.timeout = timeout
        self.max_response_size = max_response_size
        if "transport" not in kwargs:
            kwargs.setdefault(
                "mounts",
                {
                    "http://": httpx.AsyncHTTPTransport(limits=POOL_LIMITS),
                    "https://": httpx.AsyncHTTPTransport(
                        limits=POOL_LIMITS, verify=verify
                    ),
                },
            )
        self._client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            **kwargs,
        )

    async def aclose(self) -> None:
        """Close both connection pools."""
        await self._client.aclose()

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        body: Any = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            HttpError: Transport failure, timeout, or non-2xx status.
            ResponseTooLargeError: Body exceeded max_response_size.
            MalformedResponseError: 2xx body was not valid JSON.
        """
        safe_url = redact(url)
        logger.debug(
            "HTTP %s %s headers=%s", method, safe_url, redact_headers(headers)
        )
        try:
            async with self._client.stream(
                method,
                url,
                headers=headers,
                json=body,
                timeout=timeout if timeout is not None else self.timeout,
            ) as resp:
                content = await self._read_limited(resp)
        except httpx.TimeoutException as exc:
            raise HttpError(
                f"Request timed out: {method} {safe_url}", code="timeout"
            ) from exc
        except httpx.RequestError as exc:
            raise HttpError(
                f"Connection error: {redact(str(exc)) or type(exc).__name__}",
                code="connection_error",
            ) from exc

        text = content.decode("utf-8", errors="replace")
        logger.debug(
            "HTTP %d from %s (%d bytes, rate limit remaining: %s)",
            resp.status_code,
            safe_url,
            len(content),
            resp.headers.get("x-ratelimit-remaining", "-"),
        )

        if not resp.is_success:
            snippet = text[:MAX_ERROR_BODY]
            message = f"HTTP {resp.status_code} {resp.reason_phrase}"
            if snippet:
                message = f"{message}: {snippet}"
            raise HttpError(
                message,
                code="http_error",
                status=resp.status_code,
                reason=resp.reason_phrase,
                body=snippet,
            )

        try:
            return json.loads(text)
        except ValueError as exc:
            logger.error("Malformed JSON from %s (%d bytes)", safe_url, len(content))
            raise MalformedResponseError(
                f"Malformed response body from {safe_url}: {exc}",
                code="malformed_response",
                status=resp.status_code,
            ) from exc

    async def _read_limited(self, resp: httpx.Response) -> bytes:
        """Read the streamed body, aborting once it exceeds the size ceiling."""
        chunks: list[bytes] = []
        total = 0
        async for chunk in resp.aiter_bytes():
            total += len(chunk)
            if total > self.max_response_size:
                raise ResponseTooLargeError(
                    f"Response too large (over {self.max_response_size} bytes)",
                    code="response_too_large",
                    status=resp.status_code,
                )
            chunks.append(chunk)
        return b"".join(chunks)

    async def request_with_retry(
        self, url: str, *, retries: int = 2, **options: Any
    ) -> Any:
        """Call request(), retrying failed attempts with linear backoff.

        Attempt ``n`` (1-based) that fails waits ``n * backoff`` seconds before
        the next one. Errors marked non-retryable are raised immediately, and
        the last error is re-raised once ``retries`` extra attempts are spent.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.request(url, **options)
            except HttpError as exc:
                if not exc.retryable or attempt > retries:
                    raise
                delay = attempt * self.backoff
                logger.warning(
                    "Request failed (attempt %d of %d), retrying in %.1fs: %s",
                    attempt,
                    retries + 1,
                    delay,
                    exc,
                )
                await asyncio.sleep(delay)
