"""Per-target exponential backoff bookkeeping."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

# 2^6 = 64 seconds. Beyond that, clients run into IRC ping timeouts.
MAX_EXPONENT = 6


@dataclass
class BackoffState:
    """Backoff state of a single target."""

    exponent: int = 0
    """Number of consecutive failures, capped at MAX_EXPONENT."""

    next_eligible: float = 0.0
    """Earliest clock value at which the target may be tried again."""


class BackoffLedger:
    """
    Tracks consecutive failures per target of one network.

    A target without an entry is always eligible. Entries are created on
    the first failure and removed on the next success.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        self._clock = clock
        self._rng = rng or random.Random()
        self._states: dict[str, BackoffState] = {}

    def now(self) -> float:
        """Current value of the ledger's clock."""
        return self._clock()

    def record_failure(self, target: str) -> BackoffState:
        """
        Push ``target`` back after a failed exchange.

        The delay is 2^exponent seconds plus up to ``exponent`` seconds of
        jitter so that clients do not retry in lockstep.

        Returns:
            The updated backoff state.
        """
        state = self._states.get(target)
        if state is None:
            state = BackoffState()
            self._states[target] = state
        if state.exponent < MAX_EXPONENT:
            state.exponent += 1
        jitter = self._rng.uniform(0, state.exponent)
        state.next_eligible = self.now() + 2**state.exponent + jitter
        logger.debug(
            f"Backoff for {target}: exponent={state.exponent}, "
            f"eligible in {state.next_eligible - self.now():.1f}s"
        )
        return state

    def record_success(self, target: str) -> None:
        """Clear any backoff for ``target``."""
        if self._states.pop(target, None) is not None:
            logger.debug(f"Backoff cleared for {target}")

    def is_eligible(self, target: str, now: float | None = None) -> bool:
        """Check whether ``target`` may be tried at ``now``."""
        state = self._states.get(target)
        if state is None:
            return True
        if now is None:
            now = self.now()
        return now >= state.next_eligible

    def time_until_eligible(self, target: str, now: float | None = None) -> float:
        """Seconds until ``target`` becomes eligible (0 if it already is)."""
        state = self._states.get(target)
        if state is None:
            return 0.0
        if now is None:
            now = self.now()
        return max(0.0, state.next_eligible - now)

    def state(self, target: str) -> BackoffState | None:
        """Backoff state of ``target``, or None if it has none."""
        return self._states.get(target)

    def retain(self, targets: Iterable[str]) -> None:
        """Drop entries for targets not in ``targets``."""
        keep = set(targets)
        for target in list(self._states):
            if target not in keep:
                del self._states[target]

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, target: str) -> bool:
        return target in self._states
