"""
HttpClient - Async REST/GraphQL transport for GitHub and GitHub Enterprise.

Handles:
- One lazily created httpx.AsyncClient per host, with bearer auth
- Error classification from status codes, bodies and rate-limit headers
- Rate-limit snapshot extraction from every response
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import httpx
from loguru import logger

from ghboard.services.errors import (
    AuthError,
    NotFoundError,
    RateLimitedError,
    RemoteApiError,
    RemoteError,
    TransportError,
)
from ghboard.types import DEFAULT_HOST, RateLimitSnapshot

TokenProvider = Callable[[str], str]

USER_AGENT = "ghboard-engine"


@dataclass
class HttpResult:
    """Decoded response body plus the quota it reported."""

    data: Any
    rate_limit: RateLimitSnapshot | None = None


def api_base_url(host: str) -> str:
    if host == DEFAULT_HOST:
        return "https://api.github.com"
    return f"https://{host}/api/v3"


def graphql_url(host: str) -> str:
    if host == DEFAULT_HOST:
        return "https://api.github.com/graphql"
    return f"https://{host}/api/graphql"


def parse_rate_limit_headers(headers: httpx.Headers) -> RateLimitSnapshot | None:
    """Read X-RateLimit-* headers; None when absent or malformed."""
    try:
        limit = int(headers["x-ratelimit-limit"])
        remaining = int(headers["x-ratelimit-remaining"])
    except (KeyError, ValueError):
        return None
    reset_at = _parse_epoch(headers.get("x-ratelimit-reset"))
    return RateLimitSnapshot(limit=limit, remaining=remaining, reset_at=reset_at)


def _parse_epoch(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value))
    except (ValueError, OverflowError, OSError):
        return None


def _retry_after(headers: httpx.Headers) -> datetime | None:
    reset_at = _parse_epoch(headers.get("x-ratelimit-reset"))
    if reset_at is not None:
        return reset_at
    try:
        seconds = int(headers.get("retry-after", ""))
    except ValueError:
        return None
    return datetime.fromtimestamp(datetime.now().timestamp() + seconds)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.text[:200]


def is_rate_limit_message(message: str) -> bool:
    lower = message.lower()
    return "rate limit" in lower


def classify_response(response: httpx.Response, host: str) -> RemoteError | None:
    """Map an HTTP error response onto the engine's error taxonomy."""
    status = response.status_code
    if status < 400:
        return None

    message = _error_message(response)

    if status == 401:
        return AuthError(message, host=host)

    if status in (403, 429):
        exhausted = response.headers.get("x-ratelimit-remaining") == "0"
        if status == 429 or exhausted or is_rate_limit_message(message):
            return RateLimitedError(
                message,
                host=host,
                reset_at=_retry_after(response.headers),
                secondary="secondary rate limit" in message.lower(),
            )

    if status == 404:
        return NotFoundError(message, host=host)

    return RemoteApiError(message, host=host, status=status)


class HttpClient:
    """
    Thin async transport used by GitHubRemoteClient.

    Usage:
        client = HttpClient(token_provider=resolve_token)

        result = await client.request("github.com", "GET", "/notifications")
        result = await client.graphql("github.com", QUERY, {"query": "is:pr"})
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        debug: bool = False,
    ):
        self._token_provider = token_provider
        self._timeout = timeout
        self._transport = transport
        self._debug = debug
        self._clients: dict[str, httpx.AsyncClient] = {}

    async def _get_http_client(self, host: str) -> httpx.AsyncClient:
        """Get or create the HTTP client for host."""
        client = self._clients.get(host)
        if client is not None:
            return client

        try:
            token = await asyncio.to_thread(self._token_provider, host)
        except AuthError:
            raise
        except Exception as e:
            raise AuthError(f"could not resolve a token: {e}", host=host) from e
        if not token:
            raise AuthError("no token configured", host=host)

        client = httpx.AsyncClient(
            base_url=api_base_url(host),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": USER_AGENT,
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=httpx.Timeout(self._timeout),
            follow_redirects=True,
            transport=self._transport,
        )
        # Another task may have created one while we resolved the token.
        existing = self._clients.setdefault(host, client)
        if existing is not client:
            await client.aclose()
        else:
            logger.debug(f"Created HTTP client for {host}")
        return existing

    async def request(
        self,
        host: str,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
    ) -> HttpResult:
        """
        Execute one REST call.

        Raises:
            TransportError: timeouts and connection failures
            RemoteError: classified HTTP error responses
        """
        client = await self._get_http_client(host)
        self._log(f"{method} {host}{path} params={params}")

        try:
            response = await client.request(method, path, params=params, json=json_data)
        except httpx.TimeoutException as e:
            raise TransportError(f"request to {host} timed out after {self._timeout}s", host=host) from e
        except httpx.RequestError as e:
            raise TransportError(f"request to {host} failed: {e}", host=host) from e

        error = classify_response(response, host)
        if error is not None:
            raise error

        data = None
        if response.content:
            try:
                data = response.json()
            except ValueError as e:
                raise RemoteApiError(
                    "response was not valid JSON", host=host, status=response.status_code
                ) from e

        return HttpResult(data=data, rate_limit=parse_rate_limit_headers(response.headers))

    async def graphql(
        self,
        host: str,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> HttpResult:
        """
        Execute one GraphQL query; returns the "data" member.

        A "rateLimit { limit remaining resetAt }" selection in the query takes
        precedence over the response headers.
        """
        result = await self.request(
            host,
            "POST",
            graphql_url(host),
            json_data={"query": query, "variables": variables or {}},
        )
        payload = result.data or {}

        errors = payload.get("errors")
        if errors:
            message = "; ".join(str(e.get("message", e)) for e in errors)
            if is_rate_limit_message(message):
                raise RateLimitedError(message, host=host)
            if any(e.get("type") == "NOT_FOUND" for e in errors if isinstance(e, dict)):
                raise NotFoundError(message, host=host)
            raise RemoteApiError(f"GraphQL errors: {message}", host=host)

        data = payload.get("data")
        if data is None:
            raise RemoteApiError("GraphQL response missing data field", host=host)

        rate_limit = result.rate_limit
        raw = data.get("rateLimit") if isinstance(data, dict) else None
        if raw:
            rate_limit = RateLimitSnapshot(
                limit=raw["limit"],
                remaining=raw["remaining"],
                reset_at=raw.get("resetAt"),
            )

        return HttpResult(data=data, rate_limit=rate_limit)

    async def close(self) -> None:
        """Close every HTTP client."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()
        logger.debug("HttpClient closed")

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[HttpClient] {message}")
