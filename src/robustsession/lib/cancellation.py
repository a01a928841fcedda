"""Cancellation token shared by every asynchronous step of a session."""

from __future__ import annotations

import logging
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    """Anything that can be cancelled: timer handles, tasks, futures."""

    def cancel(self) -> object: ...


CancellationCallback = Callable[[], None]


class CancellationToken:
    """
    Invalidates all outstanding continuations of one session.

    Timer handles, tasks and futures are registered with the token and
    cancelled when the token is, so nothing scheduled on behalf of a
    torn-down session ever runs.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._handles: list[Cancellable] = []
        self._callbacks: list[CancellationCallback] = []

    @property
    def cancelled(self) -> bool:
        """Whether cancel() has been called."""
        return self._cancelled

    def register(self, handle: Cancellable) -> Cancellable:
        """
        Tie ``handle`` to this token.

        Registering on an already cancelled token cancels the handle
        immediately.

        Returns:
            The handle, for chaining.
        """
        if self._cancelled:
            handle.cancel()
        else:
            self._handles.append(handle)
        return handle

    def unregister(self, handle: Cancellable) -> None:
        """Forget ``handle`` once it has completed."""
        try:
            self._handles.remove(handle)
        except ValueError:
            pass

    def on_cancel(self, callback: CancellationCallback) -> None:
        """Run ``callback`` on cancellation (immediately if already cancelled)."""
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def remove_callback(self, callback: CancellationCallback) -> None:
        """Remove a callback registered with on_cancel()."""
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    def cancel(self) -> None:
        """Cancel every registered handle and run the callbacks. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True

        handles, self._handles = self._handles, []
        for handle in handles:
            handle.cancel()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.exception(f"Cancellation callback error: {e}")

    def __len__(self) -> int:
        return len(self._handles)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled}, pending={len(self._handles)})"
