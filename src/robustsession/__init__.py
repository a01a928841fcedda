"""
RobustSession client protocol engine.

Connects to a RobustIRC network, a cluster of servers without a single
stable endpoint, and keeps one logical IRC session alive across server
failures.

Submodules:
- network: backoff ledger, target directory, discovery, target selection
- protocol: wire types, stream parser, errors, session states
- transport: HTTPS exchanges with single targets
- session: the session engine, diagnostics and the host interface
"""

__version__ = "0.1.0"

from robustsession.config import SessionConfig, load_config
from robustsession.client import RobustClient
from robustsession.lib.cancellation import CancellationToken
from robustsession.network import (
    BackoffLedger,
    NetworkEntry,
    NetworkRegistry,
    Resolver,
    SelectionMode,
    TargetSelector,
)
from robustsession.protocol import (
    Cursor,
    DiscoveryFailure,
    MalformedResponse,
    NetworkNotResolved,
    PermanentRequestFailure,
    RobustError,
    SessionError,
    SessionState,
    StreamMessage,
    StreamMessageParser,
    TemporaryRequestFailure,
)
from robustsession.session import (
    RobustSession,
    SessionEvent,
    SessionEventType,
    SessionHandler,
)

__all__ = [
    "__version__",
    # Client
    "RobustClient",
    "SessionConfig",
    "load_config",
    "CancellationToken",
    # Network
    "BackoffLedger",
    "NetworkEntry",
    "NetworkRegistry",
    "Resolver",
    "SelectionMode",
    "TargetSelector",
    # Protocol
    "Cursor",
    "StreamMessage",
    "StreamMessageParser",
    "SessionState",
    "RobustError",
    "DiscoveryFailure",
    "NetworkNotResolved",
    "TemporaryRequestFailure",
    "PermanentRequestFailure",
    "MalformedResponse",
    "SessionError",
    # Session
    "RobustSession",
    "SessionEvent",
    "SessionEventType",
    "SessionHandler",
]
