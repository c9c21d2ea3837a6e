"""
Validation orchestration: runs a mapper's validation over a dataset with a
sequential, batch or parallel strategy and returns row-keyed results.

Every strategy produces the same result map for the same data and store,
except that only the batch strategy can see duplicates between sibling rows.
Keys repeated across the files of one run are flagged after any strategy.
"""
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from app.core.config import settings
from app.domain.imports.cancellation import CancellationToken, ensure_token
from app.domain.imports.dataset import DataRow, TabularDataset
from app.domain.imports.errors import ImportCancelledError
from app.domain.imports.mappers.base import BatchTableMapper, TableMapper
from app.domain.imports.results import ErrorCategory, RowError, RowValidationResult

logger = logging.getLogger(__name__)


class ValidationStrategy(str, Enum):
    AUTO = "auto"
    SEQUENTIAL = "sequential"
    BATCH = "batch"
    PARALLEL = "parallel"


@dataclass
class ValidationReport:
    results: Dict[int, RowValidationResult] = field(default_factory=dict)
    strategy: ValidationStrategy = ValidationStrategy.SEQUENTIAL
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def valid_count(self) -> int:
        return sum(1 for result in self.results.values() if result.is_valid)

    @property
    def invalid_count(self) -> int:
        return sum(1 for result in self.results.values() if not result.is_valid)

    def is_complete(self, total_rows: int) -> bool:
        return not self.cancelled and len(self.results) == total_rows

    def errors(self, file_name: Optional[str] = None) -> List[RowError]:
        """Invalid rows as ``RowError`` entries, ordered by row number."""
        return [
            RowError(number, result.errors, file_name, ErrorCategory.VALIDATION.value)
            for number, result in sorted(self.results.items())
            if not result.is_valid
        ]


def _validate_row_safely(
    mapper: TableMapper,
    row: DataRow,
    cancel: CancellationToken,
) -> RowValidationResult:
    """Run ``validate_row``; unexpected errors become an invalid result."""
    try:
        return mapper.validate_row(row, row.row_number, cancel)
    except ImportCancelledError:
        raise
    except Exception as exc:
        logger.exception("Unexpected error validating row %s", row.row_number)
        return RowValidationResult.invalid(row.row_number, [f"Validation error - {exc}"])


def _validate_rows(
    mapper: TableMapper,
    rows: Iterable[DataRow],
    cancel: CancellationToken,
) -> Tuple[Dict[int, RowValidationResult], bool]:
    """Validate rows in order until done or cancelled; returns (results, cancelled)."""
    results: Dict[int, RowValidationResult] = {}
    for row in rows:
        if cancel.is_cancelled:
            return results, True
        try:
            results[row.row_number] = _validate_row_safely(mapper, row, cancel)
        except ImportCancelledError:
            return results, True
    return results, False


def flag_repeated_run_keys(
    dataset: TabularDataset,
    mapper: TableMapper,
    results: Dict[int, RowValidationResult],
    run_keys: Set[Tuple[str, ...]],
) -> int:
    """
    Invalidate rows whose natural key already appeared in an earlier file of
    the run, then add this file's keys to ``run_keys``.

    Duplicates inside one file are left to the validation strategy.

    Returns:
        Number of rows newly marked invalid.
    """
    file_keys: Set[Tuple[str, ...]] = set()
    flagged = 0
    for row in dataset:
        keys = mapper.run_keys(row)
        file_keys.update(keys)
        result = results.get(row.row_number)
        if result is None:
            continue
        repeated = [message for key, message in keys.items() if key in run_keys and message not in result.errors]
        if repeated:
            if result.is_valid:
                flagged += 1
            results[row.row_number] = RowValidationResult.invalid(row.row_number, result.errors + tuple(repeated))
    run_keys.update(file_keys)
    return flagged


class ValidationOrchestrator:
    """
    Chooses and runs a validation strategy.

    Args:
        max_workers: Parallel pool size override; defaults to
            ``min(os.cpu_count(), settings.bulk_validation_max_workers)``.
        parallel_threshold: Row count from which AUTO picks the parallel
            strategy for row-only mappers.
    """

    def __init__(self, max_workers: Optional[int] = None, parallel_threshold: Optional[int] = None):
        self._max_workers = max_workers
        self.parallel_threshold = (
            parallel_threshold if parallel_threshold is not None else settings.bulk_parallel_validation_threshold
        )

    @property
    def worker_count(self) -> int:
        if self._max_workers is not None:
            return max(1, self._max_workers)
        return max(1, min(os.cpu_count() or 1, settings.bulk_validation_max_workers))

    def choose_strategy(
        self,
        dataset: TabularDataset,
        mapper: TableMapper,
        requested: ValidationStrategy = ValidationStrategy.AUTO,
    ) -> ValidationStrategy:
        if requested == ValidationStrategy.BATCH and not isinstance(mapper, BatchTableMapper):
            logger.warning("%s does not support batch validation; validating row by row", mapper.table_type)
            return ValidationStrategy.SEQUENTIAL
        if requested != ValidationStrategy.AUTO:
            return requested
        if isinstance(mapper, BatchTableMapper):
            return ValidationStrategy.BATCH
        if len(dataset) >= self.parallel_threshold and self.worker_count > 1:
            return ValidationStrategy.PARALLEL
        return ValidationStrategy.SEQUENTIAL

    def validate(
        self,
        dataset: TabularDataset,
        mapper: TableMapper,
        cancel: Optional[CancellationToken] = None,
        strategy: ValidationStrategy = ValidationStrategy.AUTO,
        run_keys: Optional[Set[Tuple[str, ...]]] = None,
    ) -> ValidationReport:
        """
        Validate every row of ``dataset``.

        Args:
            run_keys: Natural keys collected from earlier files of the same
                run. Rows repeating one are marked invalid and this file's keys
                are added to the set.

        Returns:
            Report with one result per validated row. When cancelled, the
            results produced so far are returned with ``cancelled`` set.
        """
        cancel = ensure_token(cancel)
        chosen = self.choose_strategy(dataset, mapper, strategy)
        started = time.monotonic()
        logger.info(
            "Validating %d %s row(s) with the %s strategy",
            len(dataset),
            mapper.table_type,
            chosen.value,
        )

        if chosen == ValidationStrategy.BATCH:
            report = self._validate_batch(dataset, mapper, cancel)
        elif chosen == ValidationStrategy.PARALLEL:
            report = self._validate_parallel(dataset, mapper, cancel)
        else:
            report = self._validate_sequential(dataset, mapper, cancel)

        if run_keys is not None and not report.cancelled:
            repeated = flag_repeated_run_keys(dataset, mapper, report.results, run_keys)
            if repeated:
                logger.warning("%d %s row(s) repeat keys from earlier files of this run", repeated, mapper.table_type)

        report.results = dict(sorted(report.results.items()))
        report.duration_seconds = time.monotonic() - started
        if report.cancelled:
            logger.warning(
                "Validation of %s cancelled after %d of %d row(s)",
                mapper.table_type,
                len(report.results),
                len(dataset),
            )
        else:
            logger.info(
                "Validation finished in %.2fs: %d valid, %d invalid",
                report.duration_seconds,
                report.valid_count,
                report.invalid_count,
            )
        return report

    def _validate_sequential(
        self,
        dataset: TabularDataset,
        mapper: TableMapper,
        cancel: CancellationToken,
    ) -> ValidationReport:
        results, cancelled = _validate_rows(mapper, dataset, cancel)
        return ValidationReport(results, ValidationStrategy.SEQUENTIAL, cancelled)

    def _validate_batch(
        self,
        dataset: TabularDataset,
        mapper: BatchTableMapper,
        cancel: CancellationToken,
    ) -> ValidationReport:
        try:
            results = mapper.validate_batch(dataset, cancel)
        except ImportCancelledError:
            return ValidationReport({}, ValidationStrategy.BATCH, cancelled=True)
        except Exception:
            logger.exception("Batch validation failed for %s; falling back to row-by-row", mapper.table_type)
            return self._validate_sequential(dataset, mapper, cancel)
        return ValidationReport(dict(results), ValidationStrategy.BATCH)

    def _validate_parallel(
        self,
        dataset: TabularDataset,
        mapper: TableMapper,
        cancel: CancellationToken,
    ) -> ValidationReport:
        partitions = dataset.partition(self.worker_count)
        results: Dict[int, RowValidationResult] = {}
        cancelled = False
        if not partitions:
            return ValidationReport(results, ValidationStrategy.PARALLEL)

        with ThreadPoolExecutor(max_workers=len(partitions)) as executor:
            futures = {
                executor.submit(_validate_rows, mapper, rows, cancel): index
                for index, rows in enumerate(partitions)
            }
            for future in as_completed(futures):
                partition_results, partition_cancelled = future.result()
                results.update(partition_results)
                cancelled = cancelled or partition_cancelled
                logger.debug(
                    "Validation partition %d finished with %d result(s)",
                    futures[future] + 1,
                    len(partition_results),
                )

        return ValidationReport(results, ValidationStrategy.PARALLEL, cancelled)
