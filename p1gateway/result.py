"""
Parse Results
Tri-state outcome shared by every parser in the package.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

from p1gateway.errors import TelegramError

T = TypeVar("T")


class Outcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    NOT_MATCHED = "not_matched"


@dataclass
class ParseResult(Generic[T]):
    """
    Result of one parse attempt.

    ``next`` is the offset into the original buffer where parsing should
    resume. For failures it equals the error offset. A NOT_MATCHED result
    made no progress and is not an error.
    """
    outcome: Outcome
    next: int
    value: Optional[T] = None
    error: Optional[TelegramError] = None

    @classmethod
    def success(cls, value: Optional[T], next: int) -> "ParseResult[T]":
        return cls(Outcome.SUCCESS, next, value=value)

    @classmethod
    def failure(cls, error: TelegramError) -> "ParseResult[T]":
        return cls(Outcome.FAILURE, error.offset or 0, error=error)

    @classmethod
    def not_matched(cls, at: int) -> "ParseResult[T]":
        return cls(Outcome.NOT_MATCHED, at)

    @property
    def ok(self) -> bool:
        return self.outcome is not Outcome.FAILURE

    @property
    def failed(self) -> bool:
        return self.outcome is Outcome.FAILURE

    @property
    def matched(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    def raise_for_error(self) -> "ParseResult[T]":
        """Raise the carried error, if any. Returns self otherwise."""
        if self.error is not None:
            raise self.error
        return self
