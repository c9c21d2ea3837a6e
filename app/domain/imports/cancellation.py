"""
Cooperative cancellation for import runs.

A run receives a ``CancellationToken``; long loops call
``raise_if_cancelled()`` before each unit of work. Tokens for running jobs can
be registered by id so another thread (the console's signal handler, an
operator tool) can cancel them.
"""
import logging
import threading
from typing import Dict, List, Optional

from app.domain.imports.errors import ImportCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ImportCancelledError()


def ensure_token(token: Optional[CancellationToken]) -> CancellationToken:
    """Return ``token`` or a fresh token that is never cancelled."""
    return token if token is not None else CancellationToken()


class JobCancellationRegistry:
    """Thread-safe map of job id to cancellation token."""

    def __init__(self):
        self._tokens: Dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def register(self, job_id: str) -> CancellationToken:
        with self._lock:
            token = self._tokens.get(job_id)
            if token is None:
                token = CancellationToken()
                self._tokens[job_id] = token
            return token

    def cancel(self, job_id: str) -> bool:
        """
        Request cancellation of a running job.

        Returns:
            True if the job was registered, False otherwise.
        """
        with self._lock:
            token = self._tokens.get(job_id)
        if token is None:
            logger.warning("Cancellation requested for unknown job %s", job_id)
            return False
        token.cancel()
        logger.info("Cancellation requested for job %s", job_id)
        return True

    def release(self, job_id: str) -> None:
        with self._lock:
            self._tokens.pop(job_id, None)

    def active_jobs(self) -> List[str]:
        with self._lock:
            return list(self._tokens)


job_cancellations = JobCancellationRegistry()
