"""
Pytest configuration and fixtures for the bulk import tests.

Every test gets its own SQLite database file in a dedicated temp directory with all ORM
tables created, so tests never share state and parallel validation workers
can open their own connections.
"""

import pytest
from sqlalchemy import create_engine

from app.core.config import settings
from app.db.session import create_session_factory, init_db
from app.db.unit_of_work import UnitOfWork
from app.domain.imports.registry import build_default_registry


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    """bcrypt at its minimum cost keeps user imports fast."""
    monkeypatch.setattr(settings, "bulk_password_hash_rounds", 4)


@pytest.fixture
def engine(tmp_path_factory):
    db_dir = tmp_path_factory.mktemp("db")
    engine = create_engine(
        f"sqlite:///{db_dir / 'bulk_import.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def bind(registry, session_factory):
    """Create a mapper for a table type bound to a fresh unit of work."""
    units = []

    def _bind(table_type: str):
        unit_of_work = UnitOfWork(session_factory)
        units.append(unit_of_work)
        return registry.create(table_type, unit_of_work, session_factory), unit_of_work

    yield _bind
    for unit_of_work in units:
        unit_of_work.close()
