"""
Network layer: where to send requests.

Tracks the candidate targets of each network, their backoff state, and
picks a healthy target for every request.
"""

from robustsession.network.backoff import BackoffLedger, BackoffState, MAX_EXPONENT
from robustsession.network.directory import NetworkEntry, NetworkRegistry
from robustsession.network.discovery import Resolver, parse_static_targets, srv_lookup
from robustsession.network.selector import SelectionMode, TargetSelector

__all__ = [
    "BackoffLedger",
    "BackoffState",
    "MAX_EXPONENT",
    "NetworkEntry",
    "NetworkRegistry",
    "Resolver",
    "parse_static_targets",
    "srv_lookup",
    "SelectionMode",
    "TargetSelector",
]
