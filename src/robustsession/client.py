"""Entry point for chat clients: owns shared state and creates sessions."""

from __future__ import annotations

import logging
import random
from pathlib import Path

from robustsession.config import SessionConfig, load_config
from robustsession.network.directory import NetworkRegistry
from robustsession.network.discovery import LookupFunction, Resolver, srv_lookup
from robustsession.network.selector import Scheduler, TargetSelector
from robustsession.protocol.state import SessionState
from robustsession.session.engine import RobustSession
from robustsession.session.handler import SessionHandler
from robustsession.transport.base import Transport
from robustsession.transport.http import RobustHTTPTransport

logger = logging.getLogger(__name__)


class RobustClient:
    """
    Creates RobustSessions and owns what they share.

    All sessions of one client share the network registry (targets and
    backoff state per network), the resolver and the HTTP connection pool.
    Resolved networks stay cached for the lifetime of the client.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        registry: NetworkRegistry | None = None,
        transport: Transport | None = None,
        lookup: LookupFunction = srv_lookup,
        scheduler: Scheduler | None = None,
        rng: random.Random | None = None,
    ):
        self.config = config or SessionConfig()
        self.registry = registry or NetworkRegistry()
        self.resolver = Resolver(self.registry, lookup=lookup)
        self.selector = TargetSelector(self.registry, scheduler=scheduler, rng=rng)
        self.transport = transport or RobustHTTPTransport(self.config)
        self._scheduler = scheduler
        self._sessions: list[RobustSession] = []
        self._closed = False

    @classmethod
    def from_config(cls, working_dir: Path | None = None) -> "RobustClient":
        """Create a client from the global and local config files."""
        return cls(config=load_config(working_dir))

    @property
    def sessions(self) -> list[RobustSession]:
        """Sessions that have not been destroyed yet."""
        return list(self._sessions)

    def connect(self, address: str, handler: SessionHandler) -> RobustSession:
        """
        Start a session to the network at ``address``.

        Args:
            address: Network address (resolved via DNS SRV) or a
                comma-separated ``host:port`` list.
            handler: Receives lines and connection state changes.

        Returns:
            The session handle; it connects in the background.
        """
        if self._closed:
            raise RuntimeError("Client is closed")

        session = RobustSession(
            address,
            handler,
            resolver=self.resolver,
            selector=self.selector,
            transport=self.transport,
            config=self.config,
            scheduler=self._scheduler,
        )

        def forget(old_state: SessionState, new_state: SessionState) -> None:
            if new_state == SessionState.DESTROYED and session in self._sessions:
                self._sessions.remove(session)

        session.on_state_change(forget)
        self._sessions.append(session)
        session.start()
        return session

    def forget_network(self, address: str) -> None:
        """Drop cached targets so the next connect resolves ``address`` again."""
        self.registry.forget(address)

    async def aclose(self) -> None:
        """Close every session and release the HTTP connections."""
        if self._closed:
            return
        self._closed = True
        for session in list(self._sessions):
            await session.aclose()
        await self.transport.aclose()
        logger.debug("Client closed")

    async def __aenter__(self) -> "RobustClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
