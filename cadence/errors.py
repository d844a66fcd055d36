from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .records import ErrorInfo, MeasurementRecord, PolicyResult


class CadenceError(Exception):
    """Base class for every error raised by the scheduler package."""


class ConfigurationError(CadenceError, ValueError):
    """Raised when a schedule, distribution or policy is invalid.

    Always raised before any invocation takes place.
    """


class InvocationError(CadenceError):
    """A unit of work raised while being measured."""

    def __init__(self, error: ErrorInfo) -> None:
        location = f"thread {error.thread_index}"
        if error.invocation_index is not None:
            location += f", invocation {error.invocation_index}"
        super().__init__(f"{error.type_name} in {location}: {error.message}")
        self.error = error


class RequirementViolation(CadenceError):
    """A trial record failed one of its response-time requirements."""

    def __init__(self, record: MeasurementRecord, result: PolicyResult) -> None:
        super().__init__(
            f"{record.display_name} took {record.duration_s:.6f}s: {result.detail}"
        )
        self.record = record
        self.result = result


class StatsUnavailable(CadenceError):
    """Historical measurements could not be provided for a test identity."""

    def __init__(self, test_id: str, reason: str = "no baseline available") -> None:
        super().__init__(f"{test_id}: {reason}")
        self.test_id = test_id
        self.reason = reason


__all__ = [
    "CadenceError",
    "ConfigurationError",
    "InvocationError",
    "RequirementViolation",
    "StatsUnavailable",
]
