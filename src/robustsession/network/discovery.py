"""
Network discovery: turns a network address into candidate targets.

Two forms of address are understood:

- ``robustirc.net``: looked up as the DNS SRV record
  ``_robustirc._tcp.robustirc.net``; each record becomes a ``host:port``
  target, in the order the resolver returned them.
- ``localhost:13001,localhost:13002``: a comma-separated list of targets,
  used as-is without any lookup. Handy for tests and fixed setups.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import dns.asyncresolver
import dns.exception

from robustsession.lib.cancellation import CancellationToken
from robustsession.network.directory import NetworkEntry, NetworkRegistry, normalize_address
from robustsession.protocol.errors import DiscoveryFailure

logger = logging.getLogger(__name__)

SRV_SERVICE = "robustirc"
SRV_PROTOCOL = "tcp"

# Coroutine returning the targets for an address.
LookupFunction = Callable[[str], Awaitable[list[str]]]


def parse_static_targets(address: str) -> list[str] | None:
    """
    Parse a comma-separated target list.

    Returns:
        The stripped, non-empty targets, or None when ``address`` is not a
        list (contains no comma).
    """
    if "," not in address:
        return None
    return [part.strip() for part in address.split(",") if part.strip()]


async def srv_lookup(address: str) -> list[str]:
    """Resolve the RobustIRC SRV record of ``address`` into targets."""
    qname = f"_{SRV_SERVICE}._{SRV_PROTOCOL}.{address}"
    answer = await dns.asyncresolver.resolve(qname, "SRV")
    return [
        f"{record.target.to_text(omit_final_dot=True)}:{record.port}"
        for record in answer
    ]


class Resolver:
    """
    Resolves network addresses into registry entries.

    At most one lookup per address is in flight; concurrent callers share
    it. Resolved entries are cached in the registry, so later calls return
    without any network traffic.
    """

    def __init__(self, registry: NetworkRegistry, lookup: LookupFunction = srv_lookup):
        self._registry = registry
        self._lookup = lookup
        self._pending: dict[str, asyncio.Task[NetworkEntry]] = {}

    @property
    def registry(self) -> NetworkRegistry:
        return self._registry

    def is_pending(self, address: str) -> bool:
        """Whether a lookup for ``address`` is in flight."""
        return normalize_address(address) in self._pending

    async def resolve(self, address: str, token: CancellationToken) -> NetworkEntry:
        """
        Resolve ``address`` into a directory entry.

        Cancelling ``token`` abandons this caller's wait; a shared lookup
        still completes and fills the cache.

        Raises:
            DiscoveryFailure: If the lookup fails or yields no targets.
            asyncio.CancelledError: If ``token`` is cancelled.
        """
        if token.cancelled:
            raise asyncio.CancelledError()

        entry = self._registry.get(address)
        if entry is not None:
            logger.debug(f"Using cached targets for {entry.address}")
            return entry

        static = parse_static_targets(address)
        if static is not None:
            if not static:
                raise DiscoveryFailure(address, f"No targets in {address!r}")
            return self._registry.register(address, static)

        key = normalize_address(address)
        task = self._pending.get(key)
        if task is None:
            task = asyncio.create_task(self._resolve_srv(key), name=f"srv-lookup-{key}")
            self._pending[key] = task
            task.add_done_callback(self._lookup_done)

        waiter = asyncio.shield(task)
        token.register(waiter)
        try:
            return await waiter
        finally:
            token.unregister(waiter)

    async def _resolve_srv(self, address: str) -> NetworkEntry:
        logger.info(f"Resolving SRV record for {address}")
        try:
            targets = await self._lookup(address)
        except dns.exception.DNSException as e:
            raise DiscoveryFailure(address, f"SRV lookup for {address} failed: {e}", cause=e)
        except OSError as e:
            raise DiscoveryFailure(address, f"SRV lookup for {address} failed: {e}", cause=e)

        if not targets:
            raise DiscoveryFailure(address, f"SRV lookup for {address} returned no targets")

        return self._registry.register(address, targets)

    def _lookup_done(self, task: asyncio.Task[NetworkEntry]) -> None:
        for key, pending in list(self._pending.items()):
            if pending is task:
                del self._pending[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Lookup finished with error: {task.exception()}")
