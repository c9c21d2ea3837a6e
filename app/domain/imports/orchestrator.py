"""
Bulk import orchestration.

One call to ``BulkImportService.run`` handles one run: a set of uploaded files
imported into a single table type. Parsing, validation and persistence happen
in that order; nothing is persisted before every file has been validated.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from app.db.session import SessionFactory
from app.db.unit_of_work import UnitOfWork
from app.domain.imports.bulk_processing import BulkProcessingService, ProcessingResult, ProgressCallback
from app.domain.imports.cancellation import CancellationToken, ensure_token, job_cancellations
from app.domain.imports.errors import PersistenceInfrastructureError
from app.domain.imports.history import LoggingUploadHistory, UploadHistoryLogger
from app.domain.imports.parsing import ParsedFile, UploadedFile, parse_files
from app.domain.imports.registry import MapperRegistry, build_default_registry
from app.domain.imports.results import (
    ErrorCategory,
    ImportOutcome,
    ImportStatus,
    RowError,
    resolve_status,
)
from app.domain.imports.validation import ValidationOrchestrator, ValidationReport, ValidationStrategy

logger = logging.getLogger(__name__)


@dataclass
class ImportRequest:
    files: List[UploadedFile]
    table_type: str
    acting_user_id: Optional[str] = None
    ignore_errors: bool = False
    batch_size: Optional[int] = None
    validation_strategy: ValidationStrategy = ValidationStrategy.AUTO
    job_id: Optional[str] = None


@dataclass
class _FileRun:
    parsed: ParsedFile
    report: ValidationReport
    processing: Optional[ProcessingResult] = None
    errors: List[RowError] = field(default_factory=list)


def _status_message(status: ImportStatus, succeeded: int, total: int, invalid: int, aborted: bool) -> str:
    if status == ImportStatus.CANCELLED:
        return f"Import was cancelled after {succeeded} row(s) were saved"
    if aborted:
        return (
            f"{invalid} row(s) failed validation; no rows were imported. "
            "Fix the errors or enable ignore errors"
        )
    if total == 0:
        return "No rows to import"
    return f"Imported {succeeded} of {total} row(s)"


class BulkImportService:
    """
    Runs bulk imports.

    Args:
        registry: Mapper registry (defaults to ``build_default_registry()``)
        session_factory: Session factory for reads, writes and history
        history: Upload history collaborator (defaults to logging only)
        validator: Validation orchestrator
        processor: Bulk processing service
        progress: Optional callback receiving persistence progress
    """

    def __init__(
        self,
        registry: Optional[MapperRegistry] = None,
        session_factory: Optional[SessionFactory] = None,
        history: Optional[UploadHistoryLogger] = None,
        validator: Optional[ValidationOrchestrator] = None,
        processor: Optional[BulkProcessingService] = None,
        progress: Optional[ProgressCallback] = None,
    ):
        self.registry = registry or build_default_registry()
        self.session_factory = session_factory
        self.history = history or LoggingUploadHistory()
        self.validator = validator or ValidationOrchestrator()
        self.processor = processor or BulkProcessingService()
        self.progress = progress

    def run(self, request: ImportRequest, cancel: Optional[CancellationToken] = None) -> ImportOutcome:
        """
        Import every file of ``request`` into its table type.

        Raises:
            UnknownTableTypeError: The table type is not registered.
            PersistenceInfrastructureError: The store failed; history records
                the failure before the error propagates.
        """
        if cancel is None and request.job_id:
            cancel = job_cancellations.register(request.job_id)
        try:
            return self._run(request, ensure_token(cancel))
        finally:
            if request.job_id:
                job_cancellations.release(request.job_id)

    def _run(self, request: ImportRequest, cancel: CancellationToken) -> ImportOutcome:
        started = time.monotonic()
        descriptor = self.registry.descriptor(request.table_type)
        table_type = descriptor.table_type
        logger.info(
            "Starting %s import of %d file(s) for user %s (ignore_errors=%s)",
            table_type,
            len(request.files),
            request.acting_user_id,
            request.ignore_errors,
        )

        parsed = parse_files(request.files, descriptor)
        file_errors = [
            RowError(0, (error.message,), error.file_name, ErrorCategory.FILE.value)
            for error in parsed.errors
        ]
        for error in parsed.errors:
            entry_id = self.history.log_started(error.file_name, request.acting_user_id, table_type)
            self.history.log_failed(error.file_name, error.message, 0, entry_id=entry_id)

        with UnitOfWork(self.session_factory) as unit_of_work:
            mapper = self.registry.create(table_type, unit_of_work, self.session_factory)

            # Natural keys must stay unique across every file of the run
            run_keys: Set[Tuple[str, ...]] = set()
            runs: List[_FileRun] = []
            for parsed_file in parsed.files:
                if cancel.is_cancelled:
                    break
                report = self.validator.validate(
                    parsed_file.dataset,
                    mapper,
                    cancel,
                    request.validation_strategy,
                    run_keys=run_keys,
                )
                runs.append(_FileRun(parsed_file, report))
                if report.cancelled:
                    break

            cancelled = cancel.is_cancelled or any(run.report.cancelled for run in runs)
            invalid_total = sum(run.report.invalid_count for run in runs)
            aborted = not cancelled and not request.ignore_errors and invalid_total > 0
            if aborted:
                logger.warning(
                    "%s import aborted: %d invalid row(s) across %d file(s)",
                    table_type,
                    invalid_total,
                    len(runs),
                )

            outcomes: List[ImportOutcome] = []
            for parsed_file in parsed.files:
                run = next((item for item in runs if item.parsed is parsed_file), None)
                outcome = self._persist_file(
                    request,
                    table_type,
                    parsed_file,
                    run,
                    mapper,
                    unit_of_work,
                    cancel,
                    skip=cancelled or aborted,
                    aborted=aborted,
                )
                outcomes.append(outcome)
                if outcome.status == ImportStatus.CANCELLED:
                    cancelled = True

        return self._aggregate(table_type, outcomes, file_errors, cancelled, aborted, time.monotonic() - started)

    def _persist_file(
        self,
        request: ImportRequest,
        table_type: str,
        parsed_file: ParsedFile,
        run: Optional[_FileRun],
        mapper,
        unit_of_work: UnitOfWork,
        cancel: CancellationToken,
        skip: bool,
        aborted: bool,
    ) -> ImportOutcome:
        file_name = parsed_file.file_name
        dataset = parsed_file.dataset
        file_started = time.monotonic()
        entry_id = self.history.log_started(file_name, request.acting_user_id, table_type)

        report = run.report if run is not None else ValidationReport(cancelled=True)
        validation_errors = report.errors(file_name)

        if skip:
            cancelled = not aborted
            failed = report.invalid_count if aborted else 0
            status = resolve_status(len(dataset), 0, failed, cancelled=cancelled, aborted=aborted)
            outcome = ImportOutcome(
                table_type=table_type,
                total_rows=len(dataset),
                valid_rows=report.valid_count,
                invalid_rows=report.invalid_count,
                processed_rows=0,
                succeeded_rows=0,
                failed_rows=failed,
                errors=tuple(validation_errors),
                status=status,
                file_name=file_name,
                message=_status_message(status, 0, len(dataset), report.invalid_count, aborted),
                duration_seconds=time.monotonic() - file_started,
            )
            self.history.log_completed(outcome, file_name, outcome.duration_seconds, entry_id=entry_id)
            return outcome

        try:
            processing = self.processor.process(
                dataset,
                mapper,
                unit_of_work,
                report.results,
                request.acting_user_id,
                ignore_errors=request.ignore_errors,
                batch_size=request.batch_size,
                cancel=cancel,
                progress=self.progress,
                file_name=file_name,
            )
        except PersistenceInfrastructureError as e:
            self.history.log_failed(file_name, e.message, None, entry_id=entry_id)
            raise

        status = processing.status
        outcome = ImportOutcome(
            table_type=table_type,
            total_rows=len(dataset),
            valid_rows=report.valid_count,
            invalid_rows=report.invalid_count,
            processed_rows=processing.processed_rows,
            succeeded_rows=processing.succeeded_rows,
            failed_rows=processing.failed_rows,
            errors=tuple(validation_errors + processing.errors),
            status=status,
            file_name=file_name,
            message=_status_message(status, processing.succeeded_rows, len(dataset), report.invalid_count, False),
            duration_seconds=time.monotonic() - file_started,
        )
        self.history.log_completed(outcome, file_name, outcome.duration_seconds, entry_id=entry_id)
        return outcome

    def _aggregate(
        self,
        table_type: str,
        outcomes: List[ImportOutcome],
        file_errors: List[RowError],
        cancelled: bool,
        aborted: bool,
        duration: float,
    ) -> ImportOutcome:
        total = sum(item.total_rows for item in outcomes)
        succeeded = sum(item.succeeded_rows for item in outcomes)
        failed = sum(item.failed_rows for item in outcomes)
        invalid = sum(item.invalid_rows for item in outcomes)
        status = resolve_status(total, succeeded, failed, cancelled=cancelled, aborted=aborted)

        errors: List[RowError] = list(file_errors)
        for item in outcomes:
            errors.extend(item.errors)

        message = _status_message(status, succeeded, total, invalid, aborted)
        if file_errors:
            message += f"; {len(file_errors)} file(s) could not be read"

        outcome = ImportOutcome(
            table_type=table_type,
            total_rows=total,
            valid_rows=sum(item.valid_rows for item in outcomes),
            invalid_rows=invalid,
            processed_rows=sum(item.processed_rows for item in outcomes),
            succeeded_rows=succeeded,
            failed_rows=failed,
            errors=tuple(errors),
            status=status,
            file_name=outcomes[0].file_name if len(outcomes) == 1 and not file_errors else None,
            message=message,
            duration_seconds=duration,
            files=tuple(outcomes),
        )
        logger.info(
            "%s import finished with status %s: %d succeeded, %d failed of %d row(s) in %.2fs",
            table_type,
            status.value,
            succeeded,
            failed,
            total,
            duration,
        )
        return outcome
