"""
UserRoles table mapper.

Role names are unique, case-insensitively. Surrounding whitespace is reported
as a soft error and removed before the role is saved.
"""
from typing import Iterable, Optional, Set

from sqlalchemy.orm import Session

from app.db.models import UserRole
from app.db.repositories import UserRoleRepository
from app.domain.imports.dataset import DataRow
from app.domain.imports.mappers.base import BatchTableMapper, ColumnSpec, RowErrorCollector


class UserRoleTableMapper(BatchTableMapper):
    """Role names; whitespace around a name is reported but trimmed on import."""

    TABLE_TYPE = "UserRoles"
    ENTITY_LABEL = "user role"
    NATURAL_KEYS = ("Role",)
    COLUMNS = (
        ColumnSpec("Role", required=True, max_length=100, description="Name of the role"),
        ColumnSpec("CreatedBy", required=True, max_length=50, description="Who created the role"),
    )
    EXAMPLE_ROWS = (
        {"Role": "Data Analyst", "CreatedBy": "system.admin"},
        {"Role": "Project Manager", "CreatedBy": "hr.manager"},
        {"Role": "Developer", "CreatedBy": "system.admin"},
        {"Role": "QA Tester", "CreatedBy": "team.lead"},
    )

    repository: UserRoleRepository

    def check_row(self, row: DataRow, collector: RowErrorCollector) -> None:
        raw = row.get("Role")
        if isinstance(raw, str) and raw.strip() and raw != raw.strip():
            collector.add("Role name cannot have leading or trailing whitespace", soft=True)

    def existing_keys(self, session: Session, column: str, values: Iterable[str]) -> Set[str]:
        return self.repository.existing_role_names(session, values)

    def build_entity(self, row: DataRow, acting_user_id: Optional[str]) -> UserRole:
        role_name = row.text("Role")
        if not role_name:
            raise ValueError("Role is required")
        return UserRole(
            role_name=role_name,
            created_by=row.text("CreatedBy") or acting_user_id or "system",
        )
