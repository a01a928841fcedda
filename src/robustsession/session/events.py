"""Diagnostic events emitted by sessions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable


class SessionEventType(Enum):
    """Types of session events for observability."""

    RESOLVING = auto()
    RESOLVED = auto()
    DISCOVERY_FAILED = auto()
    SESSION_CREATED = auto()
    STREAM_OPENED = auto()
    STREAM_CLOSED = auto()
    SERVERS_UPDATED = auto()
    ERROR_TEMPORARY = auto()
    ERROR_RETRY = auto()
    ERROR_PARSE_JSON = auto()
    ERROR_PERMANENT = auto()
    DESTROYED = auto()


@dataclass
class SessionEvent:
    """Event emitted by a session: what was attempted, where, and why."""

    type: SessionEventType
    timestamp: float
    data: dict[str, Any] | None = None
    error: Exception | None = None

    def describe(self) -> str:
        """Human-readable line for the user."""
        data = self.data or {}
        if self.type == SessionEventType.ERROR_TEMPORARY:
            return f"Temporary error ({self.error or data.get('reason')})"
        if self.type == SessionEventType.ERROR_RETRY:
            return (
                f"Retrying request {data.get('request')} "
                f"(failed on {data.get('target')}) on {data.get('next_target')}"
            )
        if self.type == SessionEventType.ERROR_PARSE_JSON:
            return f'Error parsing chunk "{data.get("chunk", "")}" as JSON ({self.error})'
        if self.type == SessionEventType.ERROR_PERMANENT:
            return f"Permanent error (killed?) ({self.error or data.get('reason')})"
        return str(self)

    def __str__(self) -> str:
        base = f"[{self.type.name}]"
        if self.data:
            base += f" {self.data}"
        if self.error:
            base += f" error={self.error}"
        return base


SessionEventHandler = Callable[[SessionEvent], None]
