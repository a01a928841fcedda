"""Session engine and the interface to the owning chat client."""

from robustsession.session.events import SessionEvent, SessionEventHandler, SessionEventType
from robustsession.session.handler import SessionHandler
from robustsession.session.engine import RobustSession

__all__ = [
    "RobustSession",
    "SessionEvent",
    "SessionEventHandler",
    "SessionEventType",
    "SessionHandler",
]
