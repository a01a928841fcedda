"""
Transport layer.

HTTPS exchanges with a single RobustIRC server.
"""

from robustsession.transport.types import RequestOutcome, StepResult, StepStatus, classify_status
from robustsession.transport.base import Transport
from robustsession.transport.http import RobustHTTPTransport

__all__ = [
    "Transport",
    "RobustHTTPTransport",
    "RequestOutcome",
    "StepResult",
    "StepStatus",
    "classify_status",
]
