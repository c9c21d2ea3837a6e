"""
UserApplications table mapper.

Rows reference a user and an application by name. The referenced entities
must already exist (the user must also be active) and the pair must not be
assigned yet.
"""
from typing import Dict, Optional, Tuple

from sqlalchemy.orm import Session

from app.db.models import UserApplication
from app.db.repositories import UserApplicationRepository
from app.db.session import session_scope
from app.domain.imports.dataset import DataRow
from app.domain.imports.mappers.base import ColumnSpec, DataType, RowErrorCollector, TableMapper
from app.utils.date import parse_flexible_datetime

PERMISSION_LEVELS = ("Read", "Write", "Admin")


class UserApplicationTableMapper(TableMapper):
    TABLE_TYPE = "UserApplications"
    ENTITY_LABEL = "user application assignment"
    COLUMNS = (
        ColumnSpec("Username", required=True, max_length=50, description="Username of an existing, active user"),
        ColumnSpec("ApplicationName", required=True, max_length=100, description="Name of an existing application"),
        ColumnSpec(
            "PermissionLevel",
            data_type=DataType.ENUM,
            default_value="Read",
            allowed_values=PERMISSION_LEVELS,
            description="Permission level: Read, Write, or Admin",
        ),
        ColumnSpec("ExpirationDate", data_type=DataType.DATETIME, description="Optional access expiry (yyyy-mm-dd)"),
        ColumnSpec("Notes", max_length=500, description="Free-text notes"),
    )
    EXAMPLE_ROWS = (
        {
            "Username": "john.doe",
            "ApplicationName": "Employee Portal",
            "PermissionLevel": "Read",
            "ExpirationDate": "",
            "Notes": "Standard employee access",
        },
        {
            "Username": "jane.smith",
            "ApplicationName": "Inventory Management",
            "PermissionLevel": "Write",
            "ExpirationDate": "",
            "Notes": "Operations team member",
        },
    )

    repository: UserApplicationRepository

    def needs_store_check(self, row: DataRow) -> bool:
        return not row.is_blank("Username") and not row.is_blank("ApplicationName")

    def check_store(self, session: Session, row: DataRow, collector: RowErrorCollector) -> None:
        username = row.text("Username")
        application_name = row.text("ApplicationName")
        user_id, application_id, assigned = self.repository.resolve_assignment(session, username, application_name)
        if user_id is None:
            collector.add(f"User '{username}' does not exist or is inactive")
        if application_id is None:
            collector.add(f"Application '{application_name}' does not exist")
        if assigned:
            collector.add(f"User '{username}' is already assigned to application '{application_name}'")

    def run_keys(self, row: DataRow) -> Dict[Tuple[str, ...], str]:
        username = row.text("Username")
        application_name = row.text("ApplicationName")
        if not username or not application_name:
            return {}
        key = ("Assignment", username.lower(), application_name.lower())
        return {key: f"User '{username}' is assigned to application '{application_name}' more than once in this batch"}

    def build_entity(self, row: DataRow, acting_user_id: Optional[str]) -> UserApplication:
        username = row.text("Username")
        application_name = row.text("ApplicationName")
        with session_scope(self.session_factory) as session:
            user_id, application_id, _ = self.repository.resolve_assignment(session, username, application_name)
        if user_id is None:
            raise ValueError(f"User '{username}' does not exist or is inactive")
        if application_id is None:
            raise ValueError(f"Application '{application_name}' does not exist")

        return UserApplication(
            user_id=user_id,
            application_id=application_id,
            permission_level=self.enum_value(row, "PermissionLevel"),
            expiration_date=parse_flexible_datetime(row.get("ExpirationDate", None), log_failures=False),
            notes=self.text_or_none(row, "Notes"),
            created_by=acting_user_id,
        )
