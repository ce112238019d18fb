"""
Result type for operations whose failure is an expected outcome.

"Trade not found" and "no price history" happen routinely during
counterfactual runs and reconciliation, so those paths return a Result
instead of raising.

Usage:
    result = engine.run_counterfactual(trade_id, scenario)
    if result.ok:
        print(result.value.realized_r)
    else:
        logger.warning(result.error)
"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar('T')


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or an error message, never both."""
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> 'Result[T]':
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> 'Result[T]':
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise LookupError with the stored message."""
        if self.error is not None:
            raise LookupError(self.error)
        return self.value
