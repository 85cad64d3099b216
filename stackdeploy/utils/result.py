"""Result type for explicit error handling.

Every pipeline stage returns a Result or a report value instead of raising
past its own boundary. The orchestrator is the single place that decides
whether to continue or abort.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, NoReturn, TypeVar, Union

T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type


class ResultError(Exception):
    """Raised when unwrapping a Result fails."""

    pass


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Represents a successful result."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the success value. Safe to call since this is Ok."""
        return self.value

    def unwrap_err(self) -> NoReturn:
        """Get the error value. Raises since this is Ok."""
        raise ResultError(f"Called unwrap_err on Ok value: {self.value}")

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True)
class Err(Generic[E]):
    """Represents an error result."""

    error: E

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> NoReturn:
        """Get the success value. Raises since this is Err."""
        raise ResultError(f"Called unwrap on Err value: {self.error}")

    def unwrap_err(self) -> E:
        """Get the error value. Safe to call since this is Err."""
        return self.error

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Type alias for Result
Result = Union[Ok[T], Err[E]]


@dataclass(frozen=True)
class GuardError:
    """Error from a preflight guard check."""

    code: int
    message: str
    details: str = ""

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


@dataclass(frozen=True)
class ConfigError:
    """Error in configuration."""

    field: str
    message: str

    def __str__(self) -> str:
        return f"Config error in '{self.field}': {self.message}"


class ExitCode:
    """Exit codes for the CLI, one per failing stage."""

    SUCCESS = 0
    GENERAL_ERROR = 1

    # Preflight errors (10-19)
    GUARD_FAILED = 10
    CONFIG_INVALID = 11

    # Stage errors (20-29)
    VALIDATION_FAILED = 20
    PUBLISH_FAILED = 21
    STATE_ABORT = 22
    OPERATION_FAILED = 23
    OPERATION_TIMEOUT = 24

    CANCELLED = 130


def collect_results(results: list[Result[T, E]]) -> Result[list[T], list[E]]:
    """
    Collect a list of Results into a single Result.

    Returns Ok with all values if all are Ok, or Err with all errors if any are Err.
    """
    values = []
    errors = []

    for result in results:
        if result.is_ok():
            values.append(result.unwrap())
        else:
            errors.append(result.unwrap_err())

    if errors:
        return Err(errors)
    return Ok(values)
