"""Abstract transport used by the session engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from robustsession.config import SessionConfig
from robustsession.protocol.messages import GetMessagesRequest, Request, SessionCredentials


class Transport(ABC):
    """
    Performs single HTTP exchanges against one target.

    Transports know nothing about target selection or retries; they raise
    TemporaryRequestFailure / PermanentRequestFailure and leave the
    decision to the session engine.
    """

    def __init__(self, config: SessionConfig):
        self.config = config

    @abstractmethod
    async def execute(
        self,
        target: str,
        request: Request,
        credentials: SessionCredentials | None = None,
    ) -> bytes:
        """
        Send a short request and return the response body.

        Raises:
            TemporaryRequestFailure: On transport errors and 5xx statuses.
            PermanentRequestFailure: On any other non-success status.
        """
        pass

    @abstractmethod
    def stream(
        self,
        target: str,
        request: GetMessagesRequest,
        credentials: SessionCredentials,
    ) -> AsyncIterator[bytes]:
        """
        Open the GetMessages stream and yield body chunks as they arrive.

        Raises:
            TemporaryRequestFailure: On transport errors and 5xx statuses.
            PermanentRequestFailure: On any other non-success status.
        """
        pass

    @abstractmethod
    async def aclose(self) -> None:
        """
        Release all connections.

        This method should be safe to call multiple times.
        """
        pass

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
