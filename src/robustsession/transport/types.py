"""Exchange outcomes and their classification."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Generic, TypeVar

from robustsession.protocol.errors import RobustError

T = TypeVar("T")

SUCCESS_STATUS = 200


class RequestOutcome(Enum):
    """How a completed HTTP exchange is treated."""

    SUCCESS = auto()
    TEMPORARY = auto()
    """Transport error or 5xx: back off this target, retry on another."""
    PERMANENT = auto()
    """Any other non-success status: the session is lost."""


def classify_status(status_code: int) -> RequestOutcome:
    """Classify an HTTP status code."""
    if status_code == SUCCESS_STATUS:
        return RequestOutcome.SUCCESS
    if 500 <= status_code < 600:
        return RequestOutcome.TEMPORARY
    return RequestOutcome.PERMANENT


class StepStatus(Enum):
    """Result of one asynchronous step of the session engine."""

    SUCCESS = auto()
    RETRY = auto()
    FATAL = auto()


@dataclass
class StepResult(Generic[T]):
    """Success with a value, retry needed, or fatal."""

    status: StepStatus
    value: T | None = None
    target: str | None = None
    error: RobustError | None = None

    @classmethod
    def success(cls, value: T | None = None, target: str | None = None) -> "StepResult[T]":
        return cls(StepStatus.SUCCESS, value=value, target=target)

    @classmethod
    def retry(cls, error: RobustError, target: str | None = None) -> "StepResult[T]":
        return cls(StepStatus.RETRY, target=target, error=error)

    @classmethod
    def fatal(cls, error: RobustError, target: str | None = None) -> "StepResult[T]":
        return cls(StepStatus.FATAL, target=target, error=error)

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS
