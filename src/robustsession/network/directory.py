"""Registry of resolved networks and their candidate targets."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from robustsession.network.backoff import BackoffLedger

logger = logging.getLogger(__name__)

# Listener signature: (event, address, entry)
RegistryListener = Callable[[str, str, "NetworkEntry"], None]


def normalize_address(address: str) -> str:
    """Registry key for a network address."""
    return address.strip().lower()


@dataclass
class NetworkEntry:
    """Candidate targets of one network plus their backoff ledger."""

    address: str
    """Normalized network address (e.g. ``robustirc.net``)."""

    targets: list[str] = field(default_factory=list)
    """Ordered ``host:port`` targets; the head is the next ordered pick."""

    backoff: BackoffLedger = field(default_factory=BackoffLedger)
    """Backoff state shared by all sessions to this network."""

    def same_targets(self, targets: Iterable[str]) -> bool:
        """Order-independent comparison against the current targets."""
        return set(self.targets) == set(targets)

    def __str__(self) -> str:
        return f"NetworkEntry({self.address}: {', '.join(self.targets)})"


class NetworkRegistry:
    """
    Tracks resolved networks, keyed by lowercase address.

    Entries live as long as the registry unless dropped with forget().
    Every mutation completes within a single call, so interleaved
    sessions on one event loop never observe a partial update.
    """

    def __init__(self, ledger_factory: Callable[[], BackoffLedger] = BackoffLedger):
        self._networks: dict[str, NetworkEntry] = {}
        self._ledger_factory = ledger_factory
        self._listeners: list[RegistryListener] = []

    def get(self, address: str) -> NetworkEntry | None:
        """Directory entry for ``address``, or None if unresolved."""
        return self._networks.get(normalize_address(address))

    def register(self, address: str, targets: Iterable[str]) -> NetworkEntry:
        """
        Store the resolved targets for ``address``.

        An existing entry keeps its backoff ledger and gets the new targets.
        """
        key = normalize_address(address)
        targets = list(targets)
        entry = self._networks.get(key)
        if entry is None:
            entry = NetworkEntry(
                address=key,
                targets=targets,
                backoff=self._ledger_factory(),
            )
            self._networks[key] = entry
            logger.info(f"Registered network: {entry}")
            self._notify("network_added", key, entry)
        else:
            entry.targets = targets
            entry.backoff.retain(targets)
            logger.debug(f"Updated network: {entry}")
            self._notify("network_updated", key, entry)
        return entry

    def update_targets(self, address: str, targets: Iterable[str]) -> bool:
        """
        Replace the targets of ``address`` with a server-pushed list.

        Identical sets (in any order) keep the current rotation order, and
        empty lists are ignored.

        Returns:
            True if the targets were replaced.
        """
        entry = self.get(address)
        targets = list(targets)
        if entry is None or not targets:
            return False
        if entry.same_targets(targets):
            return False
        entry.targets = targets
        entry.backoff.retain(targets)
        logger.info(f"Servers updated: {entry}")
        self._notify("targets_updated", entry.address, entry)
        return True

    def forget(self, address: str) -> NetworkEntry | None:
        """Drop ``address`` so the next connect resolves it again."""
        entry = self._networks.pop(normalize_address(address), None)
        if entry:
            logger.info(f"Forgot network: {entry}")
            self._notify("network_removed", entry.address, entry)
        return entry

    def on_change(self, callback: RegistryListener) -> None:
        """
        Register callback for registry changes.

        Args:
            callback: Function(event_type, address, entry) called on changes.
        """
        self._listeners.append(callback)

    def remove_listener(self, callback: RegistryListener) -> None:
        """Remove a previously registered callback."""
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    def _notify(self, event: str, address: str, entry: NetworkEntry) -> None:
        for listener in self._listeners:
            try:
                listener(event, address, entry)
            except Exception as e:
                logger.exception(f"Error in registry listener: {e}")

    def __len__(self) -> int:
        return len(self._networks)

    def __contains__(self, address: str) -> bool:
        return normalize_address(address) in self._networks

    def __iter__(self):
        return iter(self._networks.values())
