"""RobustSession protocol: wire types, stream parsing and session states."""

from robustsession.protocol.errors import (
    RobustError,
    DiscoveryFailure,
    NetworkNotResolved,
    RequestFailure,
    TemporaryRequestFailure,
    PermanentRequestFailure,
    MalformedResponse,
    SessionError,
)
from robustsession.protocol.messages import (
    Cursor,
    MessageType,
    StreamMessage,
    SessionCredentials,
    CreateSessionRequest,
    DeleteSessionRequest,
    PostMessageRequest,
    GetMessagesRequest,
)
from robustsession.protocol.parser import StreamMessageParser
from robustsession.protocol.state import (
    SessionState,
    SessionStateMachine,
    InvalidStateTransition,
)

__all__ = [
    "RobustError",
    "DiscoveryFailure",
    "NetworkNotResolved",
    "RequestFailure",
    "TemporaryRequestFailure",
    "PermanentRequestFailure",
    "MalformedResponse",
    "SessionError",
    "Cursor",
    "MessageType",
    "StreamMessage",
    "SessionCredentials",
    "CreateSessionRequest",
    "DeleteSessionRequest",
    "PostMessageRequest",
    "GetMessagesRequest",
    "StreamMessageParser",
    "SessionState",
    "SessionStateMachine",
    "InvalidStateTransition",
]
