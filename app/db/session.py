from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

_engine = None

SessionFactory = Callable[[], Session]


def _report_connection_failure(exc: Exception) -> None:
    """Log high-signal diagnostics when the application cannot reach the store."""
    logger.warning("Could not connect to database: %s", exc)

    try:
        url = make_url(settings.database_url)
    except Exception as parse_error:  # pragma: no cover
        logger.warning("Unable to parse DATABASE_URL (%s); skipping detailed diagnostics.", parse_error)
        return

    logger.warning(
        "Database settings: dialect=%s driver=%s host=%s port=%s database=%s",
        url.get_backend_name(),
        url.get_driver_name() or "default",
        url.host or "localhost",
        url.port or "(default)",
        url.database,
    )


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        try:
            _engine = create_engine(settings.database_url)
            # Test connection eagerly so failures surface immediately.
            with _engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            _report_connection_failure(e)
            # Create the engine anyway so callers can proceed (may still fail later).
            _engine = create_engine(settings.database_url)
    return _engine


# Don't create engine at import time
SessionLocal = None

Base = declarative_base()


def get_session_local() -> sessionmaker:
    global SessionLocal
    if SessionLocal is None:
        engine = get_engine()
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return SessionLocal


def create_session_factory(engine: Engine) -> sessionmaker:
    """Build a session factory for an explicit engine (tests, console runs)."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all ORM tables that do not exist yet."""
    # Models register themselves on Base at import time.
    from app.db import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


@contextmanager
def session_scope(session_factory: Optional[SessionFactory] = None) -> Iterator[Session]:
    """
    Open a short-lived session for reads and close it on exit.

    Each caller (and each validation worker thread) gets its own session;
    sessions are never shared between threads.
    """
    factory = session_factory or get_session_local()
    session = factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
