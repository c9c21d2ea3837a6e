"""
TemporaryUsers table mapper.

Each row requests an account that an administrator approves later. The email
must not belong to an existing user or to another pending request, and every
requested application must already exist.
"""
import uuid
from typing import Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy.orm import Session

from app.core.security import generate_temporary_password, get_password_hash
from app.db.models import TemporaryUser
from app.db.repositories import TemporaryUserRepository
from app.domain.imports.dataset import DataRow
from app.domain.imports.mappers.base import BatchTableMapper, ColumnSpec, RowErrorCollector
from app.domain.imports.validators import matches_preset

# Lookup names for store values pre-loaded next to the Email natural key
ACTIVE_USER_EMAILS = "UserEmail"
APPLICATION_NAMES = "ApplicationName"


def requested_applications(value: str) -> List[str]:
    """Split a comma-separated application list, dropping blanks."""
    return [name.strip() for name in (value or "").split(",") if name.strip()]


class TemporaryUserTableMapper(BatchTableMapper):
    TABLE_TYPE = "TemporaryUsers"
    ENTITY_LABEL = "temporary user"
    NATURAL_KEYS = ("Email",)
    COLUMNS = (
        ColumnSpec("FirstName", required=True, max_length=50, description="User's first name"),
        ColumnSpec("LastName", required=True, max_length=50, description="User's last name"),
        ColumnSpec("Email", required=True, max_length=100, description="User's email address"),
        ColumnSpec("PhoneNumber", max_length=20, description="User's phone number"),
        ColumnSpec(
            "RequestedApplications",
            max_length=500,
            description="Comma-separated list of application names",
        ),
        ColumnSpec("Justification", max_length=1000, description="Justification for the user request"),
        ColumnSpec("RequestedBy", max_length=50, description="Who is requesting this user"),
    )
    EXAMPLE_ROWS = (
        {
            "FirstName": "Michael",
            "LastName": "Johnson",
            "Email": "michael.johnson@company.com",
            "PhoneNumber": "555-0130",
            "RequestedApplications": "Employee Portal, Inventory Management",
            "Justification": "New employee starting in Operations department",
            "RequestedBy": "hr.manager",
        },
        {
            "FirstName": "Sarah",
            "LastName": "Wilson",
            "Email": "sarah.wilson@company.com",
            "PhoneNumber": "",
            "RequestedApplications": "Employee Portal",
            "Justification": "Contractor requiring basic access",
            "RequestedBy": "project.manager",
        },
    )

    repository: TemporaryUserRepository

    def check_row(self, row: DataRow, collector: RowErrorCollector) -> None:
        email = row.text("Email")
        if email and not matches_preset(email, "email"):
            collector.add("Invalid email format")

    def existing_keys(self, session: Session, column: str, values: Iterable[str]) -> Set[str]:
        return self.repository.existing_request_emails(session, values)

    def load_existing(self, session: Session, rows: Sequence[DataRow]) -> Dict[str, Set[str]]:
        emails = [row.text("Email") for row in rows]
        application_names = [
            name for row in rows for name in requested_applications(row.text("RequestedApplications"))
        ]
        return {
            "Email": self.repository.existing_request_emails(session, emails),
            ACTIVE_USER_EMAILS: self.repository.existing_user_emails(session, emails),
            APPLICATION_NAMES: self.repository.existing_application_names(session, application_names),
        }

    def check_existing(self, row: DataRow, existing: Dict[str, Set[str]], collector: RowErrorCollector) -> None:
        email = row.text("Email")
        if email:
            if email.lower() in existing["Email"]:
                collector.add(f"Email '{email}' already has a temporary user request")
            if email.lower() in existing[ACTIVE_USER_EMAILS]:
                collector.add(f"Email '{email}' already exists as an active user")
        for name in requested_applications(row.text("RequestedApplications")):
            if name.lower() not in existing[APPLICATION_NAMES]:
                collector.add(f"Application '{name}' does not exist")

    def needs_store_check(self, row: DataRow) -> bool:
        return not row.is_blank("Email") or not row.is_blank("RequestedApplications")

    def build_entity(self, row: DataRow, acting_user_id: Optional[str]) -> TemporaryUser:
        email = row.text("Email")
        if not email:
            raise ValueError("Email is required")
        applications = requested_applications(row.text("RequestedApplications"))
        return TemporaryUser(
            first_name=row.text("FirstName"),
            last_name=row.text("LastName"),
            email=email,
            username=email,
            password_hash=get_password_hash(generate_temporary_password()),
            phone_number=self.text_or_none(row, "PhoneNumber"),
            token=str(uuid.uuid4()),
            requested_applications=", ".join(applications) or None,
            justification=self.text_or_none(row, "Justification"),
            requested_by=self.text_or_none(row, "RequestedBy") or acting_user_id,
            created_by=acting_user_id,
        )
