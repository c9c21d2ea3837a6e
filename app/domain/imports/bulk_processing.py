"""
Persistence of validated rows.

Picks a commit strategy from the mapper's capability and the dataset size,
applies the error policy, stages entities through the run's unit of work and
commits them, honouring cooperative cancellation between units of work.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import DataError, IntegrityError, SQLAlchemyError

from app.core.config import settings
from app.db.unit_of_work import UnitOfWork
from app.domain.imports.cancellation import CancellationToken, ensure_token
from app.domain.imports.dataset import DataRow, TabularDataset
from app.domain.imports.errors import ImportCancelledError, PersistenceInfrastructureError
from app.domain.imports.mappers.base import BatchTableMapper, TableMapper
from app.domain.imports.results import (
    ErrorCategory,
    ImportStatus,
    ProgressUpdate,
    RowError,
    RowValidationResult,
    resolve_status,
    should_stage,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressUpdate], None]

MB = 1024 * 1024


class CommitStrategy(str, Enum):
    BATCH_MAPPER = "batch_mapper"
    CHUNKED = "chunked"
    PER_ROW = "per_row"


def clamp_batch_size(value: int, min_batch: int, max_batch: int) -> int:
    low = max(1, int(min_batch))
    high = max(low, int(max_batch))
    return max(low, min(high, int(value)))


def compute_batch_size(
    memory_budget_bytes: Optional[int],
    row_footprint_bytes: Optional[int],
    min_batch: int,
    max_batch: int,
) -> int:
    """
    Rows per commit that fit the memory budget, clamped to ``[min_batch, max_batch]``.

    An unknown or non-positive footprint means rows are negligible, so the
    maximum is used; an unknown or non-positive budget yields the minimum.
    """
    if not row_footprint_bytes or row_footprint_bytes <= 0:
        return clamp_batch_size(max_batch, min_batch, max_batch)
    if not memory_budget_bytes or memory_budget_bytes <= 0:
        return clamp_batch_size(min_batch, min_batch, max_batch)
    return clamp_batch_size(memory_budget_bytes // row_footprint_bytes, min_batch, max_batch)


def choose_commit_strategy(mapper: TableMapper, row_count: int, row_batch_threshold: int) -> CommitStrategy:
    if isinstance(mapper, BatchTableMapper):
        return CommitStrategy.BATCH_MAPPER
    if row_count > row_batch_threshold:
        return CommitStrategy.CHUNKED
    return CommitStrategy.PER_ROW


@dataclass
class ProcessingResult:
    """Counters and persistence errors for one dataset."""

    strategy: Optional[CommitStrategy]
    total_rows: int
    processed_rows: int = 0
    succeeded_rows: int = 0
    failed_rows: int = 0
    errors: List[RowError] = field(default_factory=list)
    cancelled: bool = False
    aborted: bool = False
    batch_size: int = 0
    batch_count: int = 0
    duration_seconds: float = 0.0

    @property
    def status(self) -> ImportStatus:
        return resolve_status(
            self.total_rows,
            self.succeeded_rows,
            self.failed_rows,
            cancelled=self.cancelled,
            aborted=self.aborted,
        )


class _Run:
    """Mutable state of one ``process`` call."""

    def __init__(
        self,
        dataset: TabularDataset,
        results: Dict[int, RowValidationResult],
        ignore_errors: bool,
        file_name: Optional[str],
        progress: Optional[ProgressCallback],
        result: ProcessingResult,
    ):
        self.dataset = dataset
        self.results = results
        self.ignore_errors = ignore_errors
        self.file_name = file_name
        self.progress = progress
        self.result = result

    def stageable(self, row: DataRow) -> bool:
        return should_stage(self.results.get(row.row_number), self.ignore_errors)

    def skip(self, row: DataRow) -> None:
        self.result.processed_rows += 1
        self.result.failed_rows += 1

    def fail(self, row_numbers: Sequence[int], message: str) -> None:
        for number in row_numbers:
            self.result.processed_rows += 1
            self.result.failed_rows += 1
            self.result.errors.append(
                RowError(number, (message,), self.file_name, ErrorCategory.PERSISTENCE.value)
            )

    def succeed(self, count: int) -> None:
        self.result.processed_rows += count
        self.result.succeeded_rows += count

    def report(self, batch_index: int) -> None:
        if self.progress is None:
            return
        update = ProgressUpdate(
            processed=self.result.processed_rows,
            total=self.result.total_rows,
            succeeded=self.result.succeeded_rows,
            failed=self.result.failed_rows,
            batch_index=batch_index,
            batch_count=self.result.batch_count,
        )
        try:
            self.progress(update)
        except Exception:
            logger.exception("Progress callback failed")


class BulkProcessingService:
    """
    Drives persistence for a validated dataset.

    Args:
        row_batch_threshold: Row-only mappers with more rows than this commit
            in batches instead of per row.
        min_batch_size: Lower clamp for computed batch sizes.
        max_batch_size: Upper clamp for computed batch sizes.
        memory_budget_mb: Memory one staged batch may occupy.
    """

    def __init__(
        self,
        row_batch_threshold: Optional[int] = None,
        min_batch_size: Optional[int] = None,
        max_batch_size: Optional[int] = None,
        memory_budget_mb: Optional[int] = None,
    ):
        self.row_batch_threshold = (
            row_batch_threshold if row_batch_threshold is not None else settings.bulk_row_batch_threshold
        )
        self.min_batch_size = min_batch_size or settings.bulk_min_batch_size
        self.max_batch_size = max_batch_size or settings.bulk_max_batch_size
        self.memory_budget_mb = memory_budget_mb if memory_budget_mb is not None else settings.bulk_memory_budget_mb

    def resolve_batch_size(self, dataset: TabularDataset, override: Optional[int] = None) -> int:
        if override:
            return clamp_batch_size(override, self.min_batch_size, self.max_batch_size)
        return compute_batch_size(
            self.memory_budget_mb * MB,
            dataset.estimate_row_footprint(),
            self.min_batch_size,
            self.max_batch_size,
        )

    def process(
        self,
        dataset: TabularDataset,
        mapper: TableMapper,
        unit_of_work: UnitOfWork,
        validation_results: Dict[int, RowValidationResult],
        acting_user_id: Optional[str],
        ignore_errors: bool = False,
        batch_size: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressCallback] = None,
        file_name: Optional[str] = None,
    ) -> ProcessingResult:
        """
        Persist the rows of one dataset according to the error policy.

        Validation errors are not repeated in the returned ``errors``; only
        construction and commit failures are.

        Raises:
            PersistenceInfrastructureError: The store failed for a reason not
                caused by the data. Staged work is rolled back first.
        """
        cancel = ensure_token(cancel)
        started = time.monotonic()
        total = len(dataset)
        invalid = sum(1 for result in validation_results.values() if not result.is_valid)

        if not ignore_errors and invalid:
            logger.warning(
                "%s: %d invalid row(s) and errors are not ignored; nothing will be saved",
                mapper.table_type,
                invalid,
            )
            return ProcessingResult(
                strategy=None,
                total_rows=total,
                failed_rows=invalid,
                aborted=True,
                duration_seconds=time.monotonic() - started,
            )

        strategy = choose_commit_strategy(mapper, total, self.row_batch_threshold)
        result = ProcessingResult(strategy=strategy, total_rows=total)
        run = _Run(dataset, validation_results, ignore_errors, file_name, progress, result)
        logger.info("%s: persisting %d row(s) with the %s strategy", mapper.table_type, total, strategy.value)

        try:
            if strategy == CommitStrategy.BATCH_MAPPER:
                self._process_batch_mapper(run, mapper, unit_of_work, acting_user_id, cancel)
            elif strategy == CommitStrategy.CHUNKED:
                self._process_chunked(run, mapper, unit_of_work, acting_user_id, batch_size, cancel)
            else:
                self._process_per_row(run, mapper, unit_of_work, acting_user_id, cancel)
        except ImportCancelledError:
            dropped = unit_of_work.rollback()
            result.cancelled = True
            logger.warning(
                "%s: cancelled after %d committed row(s); %d staged row(s) rolled back",
                mapper.table_type,
                result.succeeded_rows,
                dropped,
            )

        result.duration_seconds = time.monotonic() - started
        logger.info(
            "%s: %d succeeded, %d failed in %.2fs",
            mapper.table_type,
            result.succeeded_rows,
            result.failed_rows,
            result.duration_seconds,
        )
        return result

    def _commit(self, run: _Run, unit_of_work: UnitOfWork, row_numbers: List[int], batch_index: int) -> None:
        """Commit staged rows; data errors fail those rows, other errors propagate."""
        if not row_numbers:
            return
        try:
            unit_of_work.commit()
        except (IntegrityError, DataError) as exc:
            unit_of_work.rollback()
            detail = str(getattr(exc, "orig", None) or exc).splitlines()[0]
            logger.warning("Commit of batch %d rejected by the database: %s", batch_index, detail)
            run.fail(row_numbers, f"Database rejected the row: {detail}")
        except SQLAlchemyError as exc:
            unit_of_work.rollback()
            logger.exception("Commit of batch %d failed", batch_index)
            raise PersistenceInfrastructureError(f"Database error while saving: {exc}", exc)
        else:
            run.succeed(len(row_numbers))
        run.report(batch_index)

    def _process_batch_mapper(
        self,
        run: _Run,
        mapper: BatchTableMapper,
        unit_of_work: UnitOfWork,
        acting_user_id: Optional[str],
        cancel: CancellationToken,
    ) -> None:
        run.result.batch_size = len(run.dataset)
        run.result.batch_count = 1
        cancel.raise_if_cancelled()

        saved = mapper.save_batch(run.dataset, acting_user_id, run.results, run.ignore_errors, cancel)
        staged: List[int] = []
        for row in run.dataset:
            if not run.stageable(row):
                run.skip(row)
            elif row.row_number in saved.row_errors:
                run.fail([row.row_number], saved.row_errors[row.row_number][0])
            else:
                staged.append(row.row_number)

        cancel.raise_if_cancelled()
        self._commit(run, unit_of_work, staged, 1)

    def _process_chunked(
        self,
        run: _Run,
        mapper: TableMapper,
        unit_of_work: UnitOfWork,
        acting_user_id: Optional[str],
        batch_size: Optional[int],
        cancel: CancellationToken,
    ) -> None:
        size = self.resolve_batch_size(run.dataset, batch_size)
        run.result.batch_size = size
        run.result.batch_count = math.ceil(len(run.dataset) / size) if len(run.dataset) else 0
        logger.debug("Chunked commit: %d batch(es) of up to %d row(s)", run.result.batch_count, size)

        for index, chunk in enumerate(run.dataset.chunks(size), start=1):
            cancel.raise_if_cancelled()
            staged: List[int] = []
            for row in chunk:
                if not run.stageable(row):
                    run.skip(row)
                    continue
                saved = mapper.save_row(row, acting_user_id, cancel)
                if saved.success:
                    staged.append(row.row_number)
                else:
                    run.fail([row.row_number], saved.error)
            self._commit(run, unit_of_work, staged, index)

    def _process_per_row(
        self,
        run: _Run,
        mapper: TableMapper,
        unit_of_work: UnitOfWork,
        acting_user_id: Optional[str],
        cancel: CancellationToken,
    ) -> None:
        run.result.batch_size = 1
        run.result.batch_count = len(run.dataset)

        for index, row in enumerate(run.dataset, start=1):
            cancel.raise_if_cancelled()
            if not run.stageable(row):
                run.skip(row)
                continue
            saved = mapper.save_row(row, acting_user_id, cancel)
            if not saved.success:
                run.fail([row.row_number], saved.error)
                continue
            self._commit(run, unit_of_work, [row.row_number], index)
