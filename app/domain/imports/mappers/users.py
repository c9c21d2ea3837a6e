"""
Users table mapper.

Imported accounts receive a random temporary password; usernames and emails
are unique, case-insensitively.
"""
from typing import Iterable, Optional, Set

from sqlalchemy.orm import Session

from app.core.security import generate_temporary_password, get_password_hash
from app.db.models import User
from app.db.repositories import UserRepository
from app.domain.imports.dataset import DataRow
from app.domain.imports.mappers.base import (
    BatchTableMapper,
    ColumnSpec,
    DataType,
    RowErrorCollector,
)
from app.domain.imports.validators import matches_preset

USER_ROLES = ("Admin", "User", "PlatformAdmin")


class UserTableMapper(BatchTableMapper):
    TABLE_TYPE = "Users"
    ENTITY_LABEL = "user"
    NATURAL_KEYS = ("Username", "Email")
    COLUMNS = (
        ColumnSpec("Username", required=True, max_length=50, description="Unique username for the user"),
        ColumnSpec("Email", required=True, max_length=100, description="User's email address"),
        ColumnSpec("FirstName", required=True, max_length=50, description="User's first name"),
        ColumnSpec("LastName", required=True, max_length=50, description="User's last name"),
        ColumnSpec("PhoneNumber", max_length=20, description="User's phone number"),
        ColumnSpec(
            "Role",
            data_type=DataType.ENUM,
            default_value="User",
            allowed_values=USER_ROLES,
            lenient=True,
            description="User role: Admin, User, or PlatformAdmin",
        ),
        ColumnSpec(
            "IsActive",
            data_type=DataType.BOOLEAN,
            default_value="true",
            lenient=True,
            description="Whether the user is active",
        ),
        ColumnSpec("Department", max_length=100, description="User's department"),
    )
    EXAMPLE_ROWS = (
        {
            "Username": "john.doe",
            "Email": "john.doe@company.com",
            "FirstName": "John",
            "LastName": "Doe",
            "PhoneNumber": "555-0123",
            "Role": "User",
            "IsActive": True,
            "Department": "Engineering",
        },
        {
            "Username": "jane.smith",
            "Email": "jane.smith@company.com",
            "FirstName": "Jane",
            "LastName": "Smith",
            "PhoneNumber": "555-0124",
            "Role": "Admin",
            "IsActive": True,
            "Department": "IT",
        },
    )

    repository: UserRepository

    def check_row(self, row: DataRow, collector: RowErrorCollector) -> None:
        email = row.text("Email")
        if email and not matches_preset(email, "email"):
            collector.add("Invalid email format")

    def existing_keys(self, session: Session, column: str, values: Iterable[str]) -> Set[str]:
        if column == "Username":
            return self.repository.existing_usernames(session, values)
        return self.repository.existing_emails(session, values)

    def build_entity(self, row: DataRow, acting_user_id: Optional[str]) -> User:
        username = row.text("Username")
        email = row.text("Email")
        if not username or not email:
            raise ValueError("Username and Email are required")
        return User(
            username=username,
            email=email,
            first_name=row.text("FirstName"),
            last_name=row.text("LastName"),
            phone_number=self.text_or_none(row, "PhoneNumber"),
            department=self.text_or_none(row, "Department"),
            role=self.enum_value(row, "Role"),
            is_active=self.bool_value(row, "IsActive"),
            password_hash=get_password_hash(generate_temporary_password()),
            created_by=acting_user_id,
        )
