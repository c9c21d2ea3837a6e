"""
Value objects exchanged between the import pipeline stages.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class RowValidationResult:
    """
    Outcome of validating one row.

    ``recoverable`` marks an invalid row whose problems are limited to values
    the mapper can replace with column defaults when the run ignores errors.
    """

    row_number: int
    is_valid: bool
    errors: Tuple[str, ...] = ()
    recoverable: bool = False

    @classmethod
    def valid(cls, row_number: int) -> "RowValidationResult":
        return cls(row_number=row_number, is_valid=True)

    @classmethod
    def invalid(
        cls,
        row_number: int,
        errors: Iterable[str],
        recoverable: bool = False,
    ) -> "RowValidationResult":
        return cls(
            row_number=row_number,
            is_valid=False,
            errors=tuple(errors),
            recoverable=recoverable,
        )


def should_stage(result: Optional[RowValidationResult], ignore_errors: bool) -> bool:
    """Return True when a row with this validation result may be persisted."""
    if result is None:
        return False
    if result.is_valid:
        return True
    return ignore_errors and result.recoverable


@dataclass
class SaveResult:
    """
    Result of a mapper save step.

    ``value`` is the staged entity for ``save_row`` and the staged row count
    for ``save_batch``. ``row_errors`` carries per-row construction failures
    from a batch save.
    """

    success: bool
    value: Any = None
    error: Optional[str] = None
    row_errors: Dict[int, Tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def ok(cls, value: Any = None, row_errors: Optional[Dict[int, Tuple[str, ...]]] = None) -> "SaveResult":
        return cls(success=True, value=value, row_errors=dict(row_errors or {}))

    @classmethod
    def fail(cls, error: str, row_errors: Optional[Dict[int, Tuple[str, ...]]] = None) -> "SaveResult":
        return cls(success=False, error=error, row_errors=dict(row_errors or {}))


class ErrorCategory(str, Enum):
    FILE = "file"
    VALIDATION = "validation"
    PERSISTENCE = "persistence"


@dataclass(frozen=True)
class RowError:
    """One reported problem; file-level problems use ``row_number == 0``."""

    row_number: int
    messages: Tuple[str, ...]
    file_name: Optional[str] = None
    category: str = ErrorCategory.VALIDATION.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row_number": self.row_number,
            "messages": list(self.messages),
            "file_name": self.file_name,
            "category": self.category,
        }


class ImportStatus(str, Enum):
    COMPLETED = "Completed"
    COMPLETED_WITH_ERRORS = "CompletedWithErrors"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


def resolve_status(
    total_rows: int,
    succeeded_rows: int,
    failed_rows: int,
    cancelled: bool = False,
    aborted: bool = False,
) -> ImportStatus:
    """
    Derive the final status of a run from its counters.

    Args:
        total_rows: Rows that were parsed for the run.
        succeeded_rows: Rows committed to the store.
        failed_rows: Rows rejected by validation or by the store.
        cancelled: The run observed its cancellation token.
        aborted: The error policy stopped the run before persistence.

    Returns:
        The status to report.
    """
    if cancelled:
        return ImportStatus.CANCELLED
    if aborted or total_rows == 0 or (succeeded_rows == 0 and failed_rows > 0):
        return ImportStatus.FAILED
    if failed_rows > 0:
        return ImportStatus.COMPLETED_WITH_ERRORS
    return ImportStatus.COMPLETED


@dataclass(frozen=True)
class ImportOutcome:
    """Summary of an import run, or of one file within a run."""

    table_type: str
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    processed_rows: int = 0
    succeeded_rows: int = 0
    failed_rows: int = 0
    errors: Tuple[RowError, ...] = ()
    status: ImportStatus = ImportStatus.COMPLETED
    file_name: Optional[str] = None
    message: str = ""
    duration_seconds: float = 0.0
    files: Tuple["ImportOutcome", ...] = ()

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def error_messages(self) -> List[str]:
        """Flatten errors into ``file: Row n: message`` lines for display."""
        lines: List[str] = []
        for error in self.errors:
            prefix = f"{error.file_name}: " if error.file_name else ""
            location = f"Row {error.row_number}: " if error.row_number else ""
            for message in error.messages:
                lines.append(f"{prefix}{location}{message}")
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_type": self.table_type,
            "file_name": self.file_name,
            "status": self.status.value,
            "total_rows": self.total_rows,
            "valid_rows": self.valid_rows,
            "invalid_rows": self.invalid_rows,
            "processed_rows": self.processed_rows,
            "succeeded_rows": self.succeeded_rows,
            "failed_rows": self.failed_rows,
            "message": self.message,
            "duration_seconds": self.duration_seconds,
            "errors": [error.to_dict() for error in self.errors],
            "files": [item.to_dict() for item in self.files],
        }


@dataclass(frozen=True)
class ProgressUpdate:
    """Progress snapshot emitted after each commit."""

    processed: int
    total: int
    succeeded: int
    failed: int
    batch_index: int
    batch_count: int

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return min(100, int(self.processed * 100 / self.total))
