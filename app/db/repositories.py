"""
Per-entity persistence handles used by the table mappers.

Every mapper is paired with one repository through the mapper registry, so
staging ("add to the right collection") and key lookups are plain method calls
on a known model. Lookups take the session explicitly: reads run in
short-lived scopes, writes in the run's unit of work.
"""
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.models import Application, TemporaryUser, User, UserApplication, UserRole


def _chunks(values: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def _normalized(values: Iterable[Optional[str]]) -> List[str]:
    seen: Set[str] = set()
    ordered: List[str] = []
    for value in values:
        if value is None:
            continue
        key = str(value).strip().lower()
        if key and key not in seen:
            seen.add(key)
            ordered.append(key)
    return ordered


class Repository:
    """Base repository bound to one ORM model."""

    model: Any = None

    def __init__(self, key_chunk_size: int = 500):
        self.key_chunk_size = max(1, key_chunk_size)

    def add(self, session: Session, entity: Any) -> None:
        session.add(entity)

    def add_all(self, session: Session, entities: List[Any]) -> None:
        session.add_all(entities)

    def existing_keys(self, session: Session, column: Any, values: Iterable[Optional[str]]) -> Set[str]:
        """
        Return the lower-cased values of ``column`` that already exist.

        Candidates are compared case-insensitively and queried in chunks so a
        large batch never produces an unbounded IN (...) clause.
        """
        candidates = _normalized(values)
        found: Set[str] = set()
        for chunk in _chunks(candidates, self.key_chunk_size):
            rows = session.query(column).filter(func.lower(column).in_(chunk)).all()
            found.update(str(row[0]).lower() for row in rows if row[0] is not None)
        return found

    def key_exists(self, session: Session, column: Any, value: str) -> bool:
        if not value or not value.strip():
            return False
        return (
            session.query(column)
            .filter(func.lower(column) == value.strip().lower())
            .first()
            is not None
        )


class UserRepository(Repository):
    model = User

    def existing_usernames(self, session: Session, usernames: Iterable[str]) -> Set[str]:
        return self.existing_keys(session, User.username, usernames)

    def existing_emails(self, session: Session, emails: Iterable[str]) -> Set[str]:
        return self.existing_keys(session, User.email, emails)

    def find_active_id(self, session: Session, username: str) -> Optional[str]:
        row = (
            session.query(User.id)
            .filter(func.lower(User.username) == username.strip().lower(), User.is_active.is_(True))
            .first()
        )
        return row[0] if row else None


class UserRoleRepository(Repository):
    model = UserRole

    def existing_role_names(self, session: Session, role_names: Iterable[str]) -> Set[str]:
        return self.existing_keys(session, UserRole.role_name, role_names)


class ApplicationRepository(Repository):
    model = Application

    def application_exists(self, session: Session, application_name: str) -> bool:
        return self.key_exists(session, Application.application_name, application_name)

    def existing_names(self, session: Session, application_names: Iterable[str]) -> Set[str]:
        return self.existing_keys(session, Application.application_name, application_names)

    def find_id(self, session: Session, application_name: str) -> Optional[str]:
        row = (
            session.query(Application.id)
            .filter(func.lower(Application.application_name) == application_name.strip().lower())
            .first()
        )
        return row[0] if row else None


class UserApplicationRepository(Repository):
    model = UserApplication

    def assignment_exists(self, session: Session, user_id: str, application_id: str) -> bool:
        return (
            session.query(UserApplication.id)
            .filter(UserApplication.user_id == user_id, UserApplication.application_id == application_id)
            .first()
            is not None
        )

    def resolve_assignment(
        self,
        session: Session,
        username: str,
        application_name: str,
    ) -> Tuple[Optional[str], Optional[str], bool]:
        """
        Resolve (active user id, application id, already assigned) in one scope.
        """
        user_id = UserRepository(self.key_chunk_size).find_active_id(session, username)
        application_id = ApplicationRepository(self.key_chunk_size).find_id(session, application_name)
        assigned = False
        if user_id and application_id:
            assigned = self.assignment_exists(session, user_id, application_id)
        return user_id, application_id, assigned


class TemporaryUserRepository(Repository):
    model = TemporaryUser

    def existing_request_emails(self, session: Session, emails: Iterable[str]) -> Set[str]:
        return self.existing_keys(session, TemporaryUser.email, emails)

    def existing_user_emails(self, session: Session, emails: Iterable[str]) -> Set[str]:
        return UserRepository(self.key_chunk_size).existing_emails(session, emails)

    def existing_application_names(self, session: Session, application_names: Iterable[str]) -> Set[str]:
        return ApplicationRepository(self.key_chunk_size).existing_names(session, application_names)


def default_repositories(key_chunk_size: int = 500) -> Dict[str, Repository]:
    """Repositories keyed by the model's table name."""
    return {
        repo.model.__tablename__: repo
        for repo in (
            UserRepository(key_chunk_size),
            UserRoleRepository(key_chunk_size),
            ApplicationRepository(key_chunk_size),
            UserApplicationRepository(key_chunk_size),
            TemporaryUserRepository(key_chunk_size),
        )
    }
