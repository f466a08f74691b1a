"""
Failure classification and retry policy.

Every error a consumer catches is mapped to one of two outcomes:

    TERMINAL   - a final business outcome; mark the order FAILED, acknowledge
    RETRYABLE  - assumed transient; requeue with exponential backoff

Unrecognised errors are RETRYABLE, bounded by ``RetryPolicy.max_attempts``.
"""

from dataclasses import dataclass
from enum import Enum

from orderflow.core.exceptions import (
    BrokerError,
    BusinessRuleViolation,
    OutOfOrderEventError,
    RetryBudgetExhaustedError,
    StoreUnavailableError,
    TransientDependencyError,
    VersionConflictError,
)


class FailureClass(Enum):
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


# Checked in order; first isinstance match wins.
_CLASSIFICATION: tuple[tuple[type[BaseException], FailureClass], ...] = (
    (BusinessRuleViolation, FailureClass.TERMINAL),
    (RetryBudgetExhaustedError, FailureClass.TERMINAL),
    (VersionConflictError, FailureClass.RETRYABLE),
    (OutOfOrderEventError, FailureClass.RETRYABLE),
    (TransientDependencyError, FailureClass.RETRYABLE),
    (StoreUnavailableError, FailureClass.RETRYABLE),
    (BrokerError, FailureClass.RETRYABLE),
    (TimeoutError, FailureClass.RETRYABLE),
    (ConnectionError, FailureClass.RETRYABLE),
)

DEFAULT_CLASS = FailureClass.RETRYABLE


def classify(error: BaseException) -> FailureClass:
    """Map an error to RETRYABLE or TERMINAL."""
    for error_type, failure_class in _CLASSIFICATION:
        if isinstance(error, error_type):
            return failure_class
    return DEFAULT_CLASS


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    Attributes:
        max_attempts: Attempts allowed before a retryable error turns terminal
        base_delay_seconds: Delay after the first failed attempt
        multiplier: Growth factor per attempt
        max_delay_seconds: Upper bound for any single delay
    """

    max_attempts: int = 5
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 60.0

    def backoff(self, attempt_count: int) -> float:
        """Delay before redelivering a message that failed on ``attempt_count``."""
        exponent = max(attempt_count - 1, 0)
        return min(self.base_delay_seconds * self.multiplier**exponent, self.max_delay_seconds)

    def exhausted(self, attempt_count: int) -> bool:
        return attempt_count >= self.max_attempts

    def decide(self, error: BaseException, attempt_count: int) -> FailureClass:
        """Classify ``error``, escalating to TERMINAL once the budget is spent."""
        failure_class = classify(error)
        if failure_class is FailureClass.RETRYABLE and self.exhausted(attempt_count):
            return FailureClass.TERMINAL
        return failure_class
