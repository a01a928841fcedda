"""HTTPS transport for the RobustSession protocol."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

import httpx

from robustsession.config import SessionConfig
from robustsession.protocol.errors import (
    PermanentRequestFailure,
    RequestFailure,
    TemporaryRequestFailure,
)
from robustsession.protocol.messages import (
    GetMessagesRequest,
    Request,
    SessionCredentials,
)
from robustsession.transport.base import Transport
from robustsession.transport.types import RequestOutcome, classify_status

logger = logging.getLogger(__name__)


def target_url(target: str, path: str) -> str:
    """Full URL of ``path`` on ``target``."""
    return f"https://{target}{path}"


class RobustHTTPTransport(Transport):
    """
    RobustSession over HTTPS, backed by a shared httpx.AsyncClient.

    Short requests (CreateSession, PostMessage, DeleteSession) are limited
    to ``max_requests_per_target`` concurrent exchanges per target. The
    GetMessages stream has no overall time limit; the session engine
    watches it for inactivity instead.
    """

    def __init__(self, config: SessionConfig, client: httpx.AsyncClient | None = None):
        super().__init__(config)
        self._client = client
        self._owns_client = client is None
        self._target_semaphores: dict[str, asyncio.Semaphore] = {}
        self._closed = False

    @property
    def client(self) -> httpx.AsyncClient:
        """The HTTP client, created on first use."""
        if self._client is None:
            timeout = httpx.Timeout(
                self.config.request_timeout,
                connect=self.config.connect_timeout,
            )
            self._client = httpx.AsyncClient(
                timeout=timeout,
                verify=self.config.verify_tls,
                headers={"User-Agent": self.config.user_agent},
                http2=False,
            )
        return self._client

    def _headers(self, credentials: SessionCredentials | None) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if credentials is not None:
            headers.update(credentials.headers())
        return headers

    def _semaphore(self, target: str) -> asyncio.Semaphore:
        semaphore = self._target_semaphores.get(target)
        if semaphore is None:
            semaphore = asyncio.Semaphore(self.config.max_requests_per_target)
            self._target_semaphores[target] = semaphore
        return semaphore

    async def execute(
        self,
        target: str,
        request: Request,
        credentials: SessionCredentials | None = None,
    ) -> bytes:
        """Send a short request; return the body of a 200 response."""
        if self._closed:
            raise TemporaryRequestFailure("Transport is closed", target=target)

        session_id = credentials.session_id if credentials else None
        url = target_url(target, request.path(session_id))

        async with self._semaphore(target):
            logger.debug(f"{request.name}: {request.method} {url}")
            try:
                response = await self.client.request(
                    request.method,
                    url,
                    content=request.body(),
                    headers=self._headers(credentials),
                )
            except httpx.TimeoutException as e:
                raise TemporaryRequestFailure(
                    f"{request.name} timed out: {e}", target=target, cause=e
                )
            except httpx.HTTPError as e:
                raise TemporaryRequestFailure(
                    f"{request.name} failed: {e}", target=target, cause=e
                )

        self._check_status(request.name, target, response.status_code, response.text)
        return response.content

    async def stream(
        self,
        target: str,
        request: GetMessagesRequest,
        credentials: SessionCredentials,
    ) -> AsyncIterator[bytes]:
        """Yield GetMessages body chunks until the server closes the stream."""
        if self._closed:
            raise TemporaryRequestFailure("Transport is closed", target=target)

        url = target_url(target, request.path(credentials.session_id))
        # No read or overall limit; inactivity is detected by the caller.
        timeout = httpx.Timeout(None, connect=self.config.connect_timeout)

        logger.debug(f"{request.name}: {request.method} {url}?lastseen={request.lastseen}")
        try:
            async with self.client.stream(
                request.method,
                url,
                params=request.params(),
                headers=self._headers(credentials),
                timeout=timeout,
            ) as response:
                if response.status_code != 200:
                    body = await response.aread()
                    self._check_status(
                        request.name,
                        target,
                        response.status_code,
                        body.decode("utf-8", errors="replace"),
                    )
                async for chunk in response.aiter_bytes():
                    if chunk:
                        yield chunk
        except httpx.HTTPError as e:
            raise TemporaryRequestFailure(
                f"{request.name} failed: {e}", target=target, cause=e
            )

    def _check_status(self, name: str, target: str, status_code: int, body: str) -> None:
        outcome = classify_status(status_code)
        if outcome is RequestOutcome.SUCCESS:
            return
        message = f"{name}: HTTP {status_code}: {body.strip()}"
        error_class: type[RequestFailure] = (
            TemporaryRequestFailure
            if outcome is RequestOutcome.TEMPORARY
            else PermanentRequestFailure
        )
        raise error_class(message, target=target, status_code=status_code)

    async def aclose(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._closed:
            return
        self._closed = True
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
