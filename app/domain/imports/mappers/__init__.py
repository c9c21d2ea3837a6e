from app.domain.imports.mappers.applications import ApplicationTableMapper
from app.domain.imports.mappers.base import (
    BatchTableMapper,
    ColumnSpec,
    DataType,
    MapperDescriptor,
    TableMapper,
)
from app.domain.imports.mappers.temporary_users import TemporaryUserTableMapper
from app.domain.imports.mappers.user_applications import UserApplicationTableMapper
from app.domain.imports.mappers.user_roles import UserRoleTableMapper
from app.domain.imports.mappers.users import UserTableMapper

__all__ = [
    "ApplicationTableMapper",
    "BatchTableMapper",
    "ColumnSpec",
    "DataType",
    "MapperDescriptor",
    "TableMapper",
    "TemporaryUserTableMapper",
    "UserApplicationTableMapper",
    "UserRoleTableMapper",
    "UserTableMapper",
]
