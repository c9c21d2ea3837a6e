"""
Write-side session for one import run.

Mappers stage entities here without committing; the bulk processing service
decides when to commit. Commits are serialised by a lock so at most one is in
flight per run.
"""
import logging
import threading
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from app.db.repositories import Repository
from app.db.session import SessionFactory, get_session_local

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self._session_factory = session_factory or get_session_local()
        self._session: Optional[Session] = None
        self._pending = 0
        self._lock = threading.Lock()

    @property
    def session(self) -> Session:
        if self._session is None:
            self._session = self._session_factory()
        return self._session

    @property
    def pending_count(self) -> int:
        return self._pending

    def stage(self, repository: Repository, entity: Any) -> None:
        repository.add(self.session, entity)
        self._pending += 1

    def stage_all(self, repository: Repository, entities: List[Any]) -> None:
        if not entities:
            return
        repository.add_all(self.session, entities)
        self._pending += len(entities)

    def commit(self) -> int:
        """
        Commit everything staged since the last commit.

        Returns:
            Number of entities that were committed.

        Raises:
            SQLAlchemyError: The commit failed. The caller must ``rollback()``.
        """
        with self._lock:
            if self._session is None or self._pending == 0:
                return 0
            count = self._pending
            self._session.commit()
            self._pending = 0
            logger.debug("Committed %d staged entities", count)
            return count

    def rollback(self) -> int:
        """Discard staged, uncommitted entities and return how many were dropped."""
        with self._lock:
            dropped = self._pending
            if self._session is not None:
                self._session.rollback()
            self._pending = 0
            if dropped:
                logger.debug("Rolled back %d staged entities", dropped)
            return dropped

    def close(self) -> None:
        with self._lock:
            if self._session is not None:
                if self._pending:
                    self._session.rollback()
                    self._pending = 0
                self._session.close()
                self._session = None

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
