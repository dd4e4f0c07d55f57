"""HTTP transport for JMAP and CardDAV requests.

Wraps a single ``httpx.AsyncClient``.  Requests return ``(status, body)``
pairs; ``check_status`` turns the status into the client's error types.
No retries are attempted.
"""

import json
import logging
from collections.abc import Generator
from typing import Any

import httpx

from fastmail_cli.errors import (
    InvalidToken,
    RateLimited,
    ResponseParse,
    ServerError,
    TransportFailure,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class BearerAuth(httpx.Auth):
    """Adds ``Authorization: Bearer <token>`` to every request."""

    def __init__(self, token: str) -> None:
        self._token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request


class HttpTransport:
    def __init__(
        self,
        auth: httpx.Auth | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._auth = auth

    async def send(
        self,
        url: str,
        method: str = "GET",
        *,
        content: bytes | str | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, bytes]:
        logger.debug("HTTP → %s %s", method, url)
        try:
            response = await self._client.request(
                method, url, content=content, headers=headers, auth=self._auth,
            )
        except httpx.TransportError as exc:
            raise TransportFailure(f"{method} {url} failed: {exc}") from exc
        logger.debug("HTTP ← %s %s (%d bytes)", response.status_code, url, len(response.content))
        return response.status_code, response.content

    async def send_json(
        self, url: str, method: str = "POST", body: Any = None
    ) -> tuple[int, bytes]:
        headers = {"Accept": "application/json"}
        content = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            content = json.dumps(body)
        return await self.send(url, method, content=content, headers=headers)

    async def aclose(self) -> None:
        await self._client.aclose()


def check_status(status: int, body: bytes = b"") -> None:
    """Raise the error matching a non-success HTTP status.

    Any 2xx (including WebDAV's 207 Multi-Status) is success.
    """
    if 200 <= status < 300:
        return
    if status == 401:
        raise InvalidToken()
    if status == 429:
        raise RateLimited()
    detail = body[:200].decode("utf-8", errors="replace").strip()
    if status >= 500:
        raise ServerError(f"Server error: HTTP {status} {detail}".rstrip(), status=status)
    raise ServerError(f"Unexpected HTTP status {status} {detail}".rstrip(), status=status)


def decode_json(body: bytes) -> Any:
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ResponseParse(f"Invalid JSON response: {exc}") from exc
