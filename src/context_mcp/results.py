"""Typed outcomes for operations that can fail for different reasons.

Callers branch on the outcome type instead of catching exceptions:

- ``Ok``: the operation produced a value.
- ``ValidationError``: the input was rejected before any work began.
- ``TransientError``: the operation started but failed (store unavailable,
  I/O error); retrying later may succeed.
"""

from dataclasses import dataclass, field
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass
class Ok(Generic[T]):
    """Successful outcome carrying a value."""

    value: T


@dataclass
class ValidationError:
    """Input rejected before any work began."""

    errors: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return "; ".join(self.errors)


@dataclass
class TransientError:
    """Work started but failed; may succeed on retry."""

    message: str
    cause: BaseException | None = None


Result = Union[Ok[T], ValidationError, TransientError]
