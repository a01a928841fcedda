"""Session lifecycle state machine."""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Callable

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """
    Session lifecycle states.

    State transitions:
        IDLE -> RESOLVING -> SELECTING_CREATE_TARGET -> CREATING_SESSION
             -> SELECTING_STREAM_TARGET <-> STREAMING

    CREATING_SESSION falls back to SELECTING_CREATE_TARGET on temporary
    errors. WRITE_ONLY is entered from the established states when the read
    side is detached. DESTROYED is reachable from every state and final.
    """

    IDLE = auto()
    RESOLVING = auto()
    SELECTING_CREATE_TARGET = auto()
    CREATING_SESSION = auto()
    SELECTING_STREAM_TARGET = auto()
    STREAMING = auto()
    WRITE_ONLY = auto()
    DESTROYED = auto()

    def __str__(self) -> str:
        return self.name


class InvalidStateTransition(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: SessionState, to_state: SessionState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition: {from_state.name} -> {to_state.name}"
        )


StateTransitionCallback = Callable[[SessionState, SessionState], None]

ESTABLISHED_STATES = (
    SessionState.SELECTING_STREAM_TARGET,
    SessionState.STREAMING,
    SessionState.WRITE_ONLY,
)


class SessionStateMachine:
    """
    Tracks the state of one session.

    Enforces valid transitions and notifies listeners when they occur.
    """

    VALID_TRANSITIONS: dict[SessionState, list[SessionState]] = {
        SessionState.IDLE: [
            SessionState.RESOLVING,
            SessionState.DESTROYED,
        ],
        SessionState.RESOLVING: [
            SessionState.RESOLVING,  # Discovery failed, trying again
            SessionState.SELECTING_CREATE_TARGET,
            SessionState.DESTROYED,
        ],
        SessionState.SELECTING_CREATE_TARGET: [
            SessionState.CREATING_SESSION,
            SessionState.DESTROYED,
        ],
        SessionState.CREATING_SESSION: [
            SessionState.SELECTING_CREATE_TARGET,
            SessionState.SELECTING_STREAM_TARGET,
            SessionState.DESTROYED,
        ],
        SessionState.SELECTING_STREAM_TARGET: [
            SessionState.STREAMING,
            SessionState.WRITE_ONLY,
            SessionState.DESTROYED,
        ],
        SessionState.STREAMING: [
            SessionState.SELECTING_STREAM_TARGET,
            SessionState.WRITE_ONLY,
            SessionState.DESTROYED,
        ],
        SessionState.WRITE_ONLY: [SessionState.DESTROYED],
        SessionState.DESTROYED: [],  # Terminal state
    }

    def __init__(self, initial_state: SessionState = SessionState.IDLE):
        self._state = initial_state
        self._listeners: list[StateTransitionCallback] = []

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def is_established(self) -> bool:
        """Whether CreateSession has succeeded and the session is alive."""
        return self._state in ESTABLISHED_STATES

    @property
    def is_destroyed(self) -> bool:
        return self._state == SessionState.DESTROYED

    def can_transition_to(self, new_state: SessionState) -> bool:
        """Check if transition to new_state is valid."""
        return new_state in self.VALID_TRANSITIONS.get(self._state, [])

    def transition(self, new_state: SessionState) -> None:
        """
        Transition to a new state.

        Args:
            new_state: The target state.

        Raises:
            InvalidStateTransition: If the transition is not valid.
        """
        if not self.can_transition_to(new_state):
            raise InvalidStateTransition(self._state, new_state)

        old_state = self._state
        self._state = new_state
        logger.debug(f"Session state: {old_state} -> {new_state}")

        for listener in self._listeners:
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.exception(f"State listener error: {e}")

    def on_transition(self, callback: StateTransitionCallback) -> None:
        """
        Register a callback for state transitions.

        Args:
            callback: Function called with (old_state, new_state) on transitions.
        """
        self._listeners.append(callback)

    def remove_listener(self, callback: StateTransitionCallback) -> None:
        """Remove a previously registered callback."""
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    def __str__(self) -> str:
        return f"SessionStateMachine({self._state.name})"

    def __repr__(self) -> str:
        return f"SessionStateMachine(state={self._state!r})"
