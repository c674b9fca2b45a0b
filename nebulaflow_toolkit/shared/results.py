"""
Result types for explicit success/failure tracking in reconciliation.

This module provides structured result types that carry success/failure
information, so a failed ledger read is reported to the caller instead of
silently dropping or purging cached data.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class ErrorSeverity(Enum):
    """Severity levels for processing errors."""

    WARNING = "warning"  # Continue processing, log issue
    ERROR = "error"  # Skip this item, continue others
    CRITICAL = "critical"  # Stop processing entirely


@dataclass
class ProcessingError:
    """
    Represents a single processing error with context.

    Attributes:
        source: Component that generated the error (e.g., "ledger_count", "validate_entry")
        message: Human-readable error description
        severity: How severe the error is (affects control flow)
        context: Additional context like activity key, user, activity id
        exception: Original exception if available
    """

    source: str
    message: str
    severity: ErrorSeverity
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[Exception] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "source": self.source,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
        }


@dataclass
class Result(Generic[T]):
    """
    Result type that carries success/failure information.

    A failed result may still carry data: a reconciliation that could not
    reach the ledger returns the cached snapshot as ``data`` with
    ``success=False``.

    Attributes:
        success: Whether the operation succeeded
        data: The result data (possibly stale on failure)
        errors: List of errors encountered (can have errors even on success for warnings)
    """

    success: bool
    data: Optional[T] = None
    errors: List[ProcessingError] = field(default_factory=list)

    @classmethod
    def ok(cls, data: T) -> "Result[T]":
        """Create a successful result with data."""
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls, error: ProcessingError, data: Optional[T] = None
    ) -> "Result[T]":
        """Create a failed result with an error and optional fallback data."""
        return cls(success=False, data=data, errors=[error])

    @classmethod
    def fail_with_message(
        cls,
        source: str,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: Optional[Dict[str, Any]] = None,
        exception: Optional[Exception] = None,
        data: Optional[T] = None,
    ) -> "Result[T]":
        """Create a failed result with a message (convenience method)."""
        error = ProcessingError(
            source=source,
            message=message,
            severity=severity,
            context=context or {},
            exception=exception,
        )
        return cls(success=False, data=data, errors=[error])

    def add_error(self, error: ProcessingError) -> "Result[T]":
        """Add an error to the result (for warnings on success)."""
        self.errors.append(error)
        return self

    def add_warning(
        self,
        source: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> "Result[T]":
        """Add a warning to the result (convenience method)."""
        self.errors.append(
            ProcessingError(
                source=source,
                message=message,
                severity=ErrorSeverity.WARNING,
                context=context or {},
            )
        )
        return self

    @property
    def is_partial(self) -> bool:
        """True when the data is usable but some items were not refreshed."""
        return self.success and self.has_warnings()

    def has_errors(self) -> bool:
        """Check if result has any ERROR or CRITICAL level errors."""
        return any(
            e.severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
            for e in self.errors
        )

    def has_warnings(self) -> bool:
        """Check if result has any WARNING level errors."""
        return any(e.severity == ErrorSeverity.WARNING for e in self.errors)

    def get_error_messages(self) -> List[str]:
        """Get all error messages as strings."""
        return [e.message for e in self.errors]


@dataclass
class ReconciliationSummary:
    """
    Summary of one reconciliation pass.

    Gives the caller a complete picture of the pass: how many cached entries
    were checked, what was pruned and why, what could not be validated, and
    which new activities were discovered on the ledger.
    """

    user_address: Optional[str]
    ledger_count: Optional[int] = None

    # Counts
    entries_cached: int = 0
    entries_validated: int = 0
    entries_removed: int = 0
    entries_unvalidated: int = 0
    entries_discovered: int = 0
    entries_written: int = 0
    superseded: bool = False

    # Details
    errors: List[ProcessingError] = field(default_factory=list)
    removed: List[Dict[str, Any]] = field(default_factory=list)
    unvalidated_keys: List[str] = field(default_factory=list)

    def add_error(self, error: ProcessingError) -> None:
        """Add an error to the summary."""
        self.errors.append(error)

    def add_error_from_result(self, result: Result) -> None:
        """Add all errors from a Result to the summary."""
        self.errors.extend(result.errors)

    def has_critical_errors(self) -> bool:
        """Check if any critical errors occurred."""
        return any(e.severity == ErrorSeverity.CRITICAL for e in self.errors)

    def has_errors(self) -> bool:
        """Check if any errors (not just warnings) occurred."""
        return any(
            e.severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
            for e in self.errors
        )

    def error_count(self) -> int:
        """Count total errors (excluding warnings)."""
        return sum(
            1
            for e in self.errors
            if e.severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
        )

    def warning_count(self) -> int:
        """Count total warnings."""
        return sum(
            1 for e in self.errors if e.severity == ErrorSeverity.WARNING
        )

    def _calculate_rate(self, success: int, failed: int) -> str:
        total = success + failed
        if total == 0:
            return "N/A"
        return f"{success}/{total}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert summary to dictionary for JSON serialization."""
        return {
            "user_address": self.user_address,
            "ledger_count": self.ledger_count,
            "validation_rate": self._calculate_rate(
                self.entries_validated, self.entries_unvalidated
            ),
            "counts": {
                "cached": self.entries_cached,
                "validated": self.entries_validated,
                "removed": self.entries_removed,
                "unvalidated": self.entries_unvalidated,
                "discovered": self.entries_discovered,
                "written": self.entries_written,
            },
            "superseded": self.superseded,
            "error_count": self.error_count(),
            "warning_count": self.warning_count(),
            "errors": [e.to_dict() for e in self.errors],
            "removed": self.removed,
            "unvalidated_keys": self.unvalidated_keys[:100],  # Limit for large caches
        }
