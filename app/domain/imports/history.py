"""
Upload history tracking for bulk imports.

The import service reports each file's lifecycle through the narrow
``UploadHistoryLogger`` interface. ``log_started`` returns an entry id that
the later calls for the same file pass back, so two files sharing a name keep
separate entries. ``LoggingUploadHistory`` only writes log lines;
``DatabaseUploadHistory`` also keeps one ``bulk_upload_history`` row per file
for auditing.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from app.db.models import BulkUploadHistory
from app.db.session import SessionFactory, session_scope
from app.domain.imports.results import ImportOutcome

logger = logging.getLogger(__name__)

# error_message column keeps the first lines of the error list only
MAX_STORED_ERROR_LINES = 50


class UploadHistoryLogger(Protocol):
    def log_started(self, file_name: str, user_id: Optional[str], table_type: str) -> Optional[str]:
        ...

    def log_completed(
        self,
        outcome: ImportOutcome,
        file_name: str,
        duration_seconds: float,
        entry_id: Optional[str] = None,
    ) -> None:
        ...

    def log_failed(
        self,
        file_name: str,
        message: str,
        processed_count: Optional[int] = None,
        entry_id: Optional[str] = None,
    ) -> None:
        ...


class LoggingUploadHistory:
    """History collaborator that only logs."""

    def log_started(self, file_name: str, user_id: Optional[str], table_type: str) -> Optional[str]:
        logger.info(f"Bulk upload started: file={file_name}, user={user_id}, table_type={table_type}")
        return None

    def log_completed(
        self,
        outcome: ImportOutcome,
        file_name: str,
        duration_seconds: float,
        entry_id: Optional[str] = None,
    ) -> None:
        logger.info(
            f"Bulk upload completed: file={file_name}, status={outcome.status.value}, "
            f"processed={outcome.processed_rows}, succeeded={outcome.succeeded_rows}, "
            f"failed={outcome.failed_rows}, duration={duration_seconds:.2f}s"
        )

    def log_failed(
        self,
        file_name: str,
        message: str,
        processed_count: Optional[int] = None,
        entry_id: Optional[str] = None,
    ) -> None:
        logger.error(f"Bulk upload failed: file={file_name}, error={message}, processed={processed_count or 0}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _summarize_errors(outcome: ImportOutcome) -> Optional[str]:
    lines = outcome.error_messages()
    if not lines:
        return outcome.message or None
    summary = lines[:MAX_STORED_ERROR_LINES]
    if len(lines) > MAX_STORED_ERROR_LINES:
        summary.append(f"... and {len(lines) - MAX_STORED_ERROR_LINES} more")
    return "\n".join(summary)


class DatabaseUploadHistory(LoggingUploadHistory):
    """
    History collaborator that persists one row per file.

    Rows are written through their own short-lived sessions so history is
    recorded even when the import's unit of work rolls back.
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory

    def log_started(self, file_name: str, user_id: Optional[str], table_type: str) -> Optional[str]:
        super().log_started(file_name, user_id, table_type)
        try:
            with session_scope(self.session_factory) as session:
                entry = BulkUploadHistory(
                    user_id=user_id,
                    table_type=table_type,
                    file_name=file_name,
                    status="Processing",
                    started_at=_utcnow(),
                )
                session.add(entry)
                session.commit()
                return entry.id
        except Exception as e:
            logger.error(f"Error starting upload history for {file_name}: {str(e)}")
            raise

    def _update(self, file_name: str, entry_id: Optional[str], values: Dict[str, Any]) -> None:
        if entry_id is None:
            logger.warning("No upload history entry for %s; recording a new one", file_name)
        try:
            with session_scope(self.session_factory) as session:
                entry = session.get(BulkUploadHistory, entry_id) if entry_id else None
                if entry is None:
                    entry = BulkUploadHistory(file_name=file_name)
                    session.add(entry)
                for key, value in values.items():
                    setattr(entry, key, value)
                session.commit()
        except Exception as e:
            logger.error(f"Error updating upload history for {file_name}: {str(e)}")
            raise

    def log_completed(
        self,
        outcome: ImportOutcome,
        file_name: str,
        duration_seconds: float,
        entry_id: Optional[str] = None,
    ) -> None:
        super().log_completed(outcome, file_name, duration_seconds)
        self._update(
            file_name,
            entry_id,
            {
                "table_type": outcome.table_type,
                "status": outcome.status.value,
                "total_rows": outcome.total_rows,
                "processed_rows": outcome.processed_rows,
                "succeeded_rows": outcome.succeeded_rows,
                "failed_rows": outcome.failed_rows,
                "error_message": _summarize_errors(outcome),
                "duration_seconds": duration_seconds,
                "completed_at": _utcnow(),
            },
        )

    def log_failed(
        self,
        file_name: str,
        message: str,
        processed_count: Optional[int] = None,
        entry_id: Optional[str] = None,
    ) -> None:
        super().log_failed(file_name, message, processed_count)
        self._update(
            file_name,
            entry_id,
            {
                "status": "Failed",
                "processed_rows": processed_count or 0,
                "error_message": message,
                "completed_at": _utcnow(),
            },
        )


def list_upload_history(
    session_factory: Optional[SessionFactory] = None,
    user_id: Optional[str] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    """
    Return recent history entries, newest first.

    Args:
        session_factory: Session factory (defaults to the application's)
        user_id: Only entries recorded for this user
        limit: Maximum number of entries

    Returns:
        List of entry dictionaries
    """
    with session_scope(session_factory) as session:
        query = session.query(BulkUploadHistory)
        if user_id:
            query = query.filter(BulkUploadHistory.user_id == user_id)
        entries = query.order_by(BulkUploadHistory.started_at.desc()).limit(limit).all()
        return [
            {
                "id": entry.id,
                "file_name": entry.file_name,
                "table_type": entry.table_type,
                "status": entry.status,
                "total_rows": entry.total_rows,
                "succeeded_rows": entry.succeeded_rows,
                "failed_rows": entry.failed_rows,
                "duration_seconds": entry.duration_seconds,
                "started_at": entry.started_at,
                "completed_at": entry.completed_at,
                "error_message": entry.error_message,
            }
            for entry in entries
        ]
