"""Health-aware target selection with backoff-driven retries."""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum, auto
from typing import Any, Callable, Protocol

from robustsession.lib.cancellation import CancellationToken
from robustsession.network.directory import NetworkEntry, NetworkRegistry
from robustsession.protocol.errors import NetworkNotResolved

logger = logging.getLogger(__name__)

SelectedCallback = Callable[[str], None]
FailedCallback = Callable[[Exception], None]


class TimerHandle(Protocol):
    def cancel(self) -> object: ...


class Scheduler(Protocol):
    """The subset of an event loop used to schedule retries."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class SelectionMode(Enum):
    """How a target is picked from the directory."""

    RANDOM = auto()
    """Any healthy node; spreads short requests across the cluster."""

    ORDERED = auto()
    """Round-robin; moves the long-lived stream to the next node on retries."""

    def __str__(self) -> str:
        return self.name.lower()


class TargetSelector:
    """
    Picks an eligible target for a network, or waits until one is.

    Each call to select() dispatches ``on_selected`` exactly once, unless
    the token is cancelled first (then never).
    """

    def __init__(
        self,
        registry: NetworkRegistry,
        scheduler: Scheduler | None = None,
        rng: random.Random | None = None,
    ):
        self._registry = registry
        self._scheduler = scheduler
        self._rng = rng or random.Random()

    @property
    def registry(self) -> NetworkRegistry:
        return self._registry

    def select(
        self,
        address: str,
        mode: SelectionMode,
        token: CancellationToken,
        on_selected: SelectedCallback,
        on_failed: FailedCallback | None = None,
    ) -> None:
        """
        Select a target for ``address``.

        Calls ``on_selected`` synchronously when a target is eligible now,
        otherwise schedules a single retry once the soonest target leaves
        backoff. The retry timer is registered with ``token``.

        Raises:
            NetworkNotResolved: If ``address`` has no directory entry.
        """
        if token.cancelled:
            return

        entry = self._registry.get(address)
        if entry is None or not entry.targets:
            raise NetworkNotResolved(address)

        target = self._pick(entry, mode)
        if target is not None:
            logger.debug(f"Selected {target} for {entry.address} ({mode})")
            on_selected(target)
            return

        self._schedule_retry(entry, address, mode, token, on_selected, on_failed)

    async def acquire(
        self,
        address: str,
        mode: SelectionMode,
        token: CancellationToken,
    ) -> str:
        """
        Wait for an eligible target.

        Raises:
            NetworkNotResolved: If ``address`` is (or becomes) unresolved.
            asyncio.CancelledError: If ``token`` is cancelled while waiting.
        """
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()

        def selected(target: str) -> None:
            if not future.done():
                future.set_result(target)

        def failed(error: Exception) -> None:
            if not future.done():
                future.set_exception(error)

        token.register(future)
        try:
            self.select(address, mode, token, selected, failed)
            return await future
        finally:
            token.unregister(future)

    def _pick(self, entry: NetworkEntry, mode: SelectionMode) -> str | None:
        targets = entry.targets
        ledger = entry.backoff
        now = ledger.now()

        if mode is SelectionMode.ORDERED:
            # Every candidate looked at moves to the tail, chosen or not.
            for _ in range(len(targets)):
                candidate = targets.pop(0)
                targets.append(candidate)
                if ledger.is_eligible(candidate, now):
                    return candidate
            return None

        candidate = targets[self._rng.randrange(len(targets))]
        if ledger.is_eligible(candidate, now):
            return candidate

        # Fall back to the first healthy target and move it to the head.
        for index, candidate in enumerate(targets):
            if ledger.is_eligible(candidate, now):
                targets.insert(0, targets.pop(index))
                return candidate
        return None

    def _schedule_retry(
        self,
        entry: NetworkEntry,
        address: str,
        mode: SelectionMode,
        token: CancellationToken,
        on_selected: SelectedCallback,
        on_failed: FailedCallback | None,
    ) -> None:
        ledger = entry.backoff
        now = ledger.now()
        delay = min(ledger.time_until_eligible(t, now) for t in entry.targets)
        scheduler = self._scheduler or asyncio.get_running_loop()

        handle: TimerHandle | None = None

        def retry() -> None:
            token.unregister(handle)
            try:
                self.select(address, mode, token, on_selected, on_failed)
            except NetworkNotResolved as e:
                logger.error(f"Retrying selection failed: {e}")
                if on_failed is not None:
                    on_failed(e)

        logger.info(
            f"All targets of {entry.address} are backing off, retrying in {delay:.1f}s"
        )
        handle = scheduler.call_later(delay, retry)
        token.register(handle)
