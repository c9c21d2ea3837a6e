"""
Registry of table mappers keyed by their table-type tag.

Built once at startup and read-only afterwards; each run asks it for a fresh
mapper bound to that run's unit of work.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Type

from app.core.config import settings
from app.db.repositories import (
    ApplicationRepository,
    Repository,
    TemporaryUserRepository,
    UserApplicationRepository,
    UserRepository,
    UserRoleRepository,
)
from app.db.session import SessionFactory
from app.db.unit_of_work import UnitOfWork
from app.domain.imports.errors import UnknownTableTypeError
from app.domain.imports.mappers import (
    ApplicationTableMapper,
    MapperDescriptor,
    TableMapper,
    TemporaryUserTableMapper,
    UserApplicationTableMapper,
    UserRoleTableMapper,
    UserTableMapper,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MapperRegistration:
    mapper_class: Type[TableMapper]
    repository: Repository
    descriptor: MapperDescriptor


class MapperRegistry:
    def __init__(self):
        self._registrations: Dict[str, MapperRegistration] = {}

    def register(self, mapper_class: Type[TableMapper], repository: Repository) -> None:
        tag = mapper_class.TABLE_TYPE
        if not tag:
            raise ValueError(f"{mapper_class.__name__} does not declare TABLE_TYPE")
        key = tag.lower()
        if key in self._registrations:
            raise ValueError(f"Table type '{tag}' is already registered")
        self._registrations[key] = MapperRegistration(mapper_class, repository, mapper_class.descriptor())
        logger.debug("Registered mapper %s for table type '%s'", mapper_class.__name__, tag)

    def _lookup(self, table_type: str) -> MapperRegistration:
        registration = self._registrations.get((table_type or "").strip().lower())
        if registration is None:
            raise UnknownTableTypeError(table_type, self.table_types())
        return registration

    def table_types(self) -> List[str]:
        return [registration.descriptor.table_type for registration in self._registrations.values()]

    def descriptor(self, table_type: str) -> MapperDescriptor:
        return self._lookup(table_type).descriptor

    def descriptors(self) -> List[MapperDescriptor]:
        return [registration.descriptor for registration in self._registrations.values()]

    def mapper_class(self, table_type: str) -> Type[TableMapper]:
        return self._lookup(table_type).mapper_class

    def create(
        self,
        table_type: str,
        unit_of_work: Optional[UnitOfWork] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> TableMapper:
        """
        Create a mapper bound to one run.

        Raises:
            UnknownTableTypeError: ``table_type`` is not registered.
        """
        registration = self._lookup(table_type)
        return registration.mapper_class(
            registration.repository,
            unit_of_work=unit_of_work,
            session_factory=session_factory,
        )


def build_default_registry(key_chunk_size: Optional[int] = None) -> MapperRegistry:
    chunk_size = key_chunk_size or settings.bulk_key_query_chunk_size
    registry = MapperRegistry()
    registry.register(UserTableMapper, UserRepository(chunk_size))
    registry.register(UserRoleTableMapper, UserRoleRepository(chunk_size))
    registry.register(ApplicationTableMapper, ApplicationRepository(chunk_size))
    registry.register(UserApplicationTableMapper, UserApplicationRepository(chunk_size))
    registry.register(TemporaryUserTableMapper, TemporaryUserRepository(chunk_size))
    return registry
