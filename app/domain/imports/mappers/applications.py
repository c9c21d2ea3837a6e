"""
Applications table mapper.

Validated row by row; an unrecognised data source type is recoverable and
falls back to Database.
"""
from typing import Optional

from sqlalchemy.orm import Session

from app.db.models import Application
from app.db.repositories import ApplicationRepository
from app.domain.imports.dataset import DataRow
from app.domain.imports.mappers.base import ColumnSpec, DataType, RowErrorCollector, TableMapper

DATA_SOURCE_TYPES = ("Database", "API", "File", "Cloud")


class ApplicationTableMapper(TableMapper):
    TABLE_TYPE = "Applications"
    ENTITY_LABEL = "application"
    NATURAL_KEYS = ("ApplicationName",)
    COLUMNS = (
        ColumnSpec("ApplicationName", required=True, max_length=100, description="Unique application name"),
        ColumnSpec(
            "ApplicationDescription",
            required=True,
            max_length=500,
            description="What the application is used for",
        ),
        ColumnSpec(
            "ApplicationDataSourceType",
            data_type=DataType.ENUM,
            default_value="Database",
            allowed_values=DATA_SOURCE_TYPES,
            lenient=True,
            description="Data source type: Database, API, File, or Cloud",
        ),
        ColumnSpec(
            "IsActive",
            data_type=DataType.BOOLEAN,
            default_value="true",
            lenient=True,
            description="Whether the application is active",
        ),
        ColumnSpec("Owner", max_length=100, description="Team or person owning the application"),
        ColumnSpec("Category", max_length=50, description="Business category"),
    )
    EXAMPLE_ROWS = (
        {
            "ApplicationName": "Employee Portal",
            "ApplicationDescription": "Internal employee self-service portal",
            "ApplicationDataSourceType": "Database",
            "IsActive": True,
            "Owner": "HR Department",
            "Category": "Human Resources",
        },
        {
            "ApplicationName": "Inventory Management",
            "ApplicationDescription": "System for tracking inventory and supplies",
            "ApplicationDataSourceType": "API",
            "IsActive": True,
            "Owner": "Operations Team",
            "Category": "Operations",
        },
    )

    repository: ApplicationRepository

    def needs_store_check(self, row: DataRow) -> bool:
        return not row.is_blank("ApplicationName")

    def check_store(self, session: Session, row: DataRow, collector: RowErrorCollector) -> None:
        name = row.text("ApplicationName")
        if self.repository.application_exists(session, name):
            collector.add(f"ApplicationName '{name}' already exists")

    def build_entity(self, row: DataRow, acting_user_id: Optional[str]) -> Application:
        name = row.text("ApplicationName")
        if not name:
            raise ValueError("ApplicationName is required")
        return Application(
            application_name=name,
            application_description=row.text("ApplicationDescription"),
            data_source_type=self.enum_value(row, "ApplicationDataSourceType"),
            is_active=self.bool_value(row, "IsActive"),
            owner=self.text_or_none(row, "Owner"),
            category=self.text_or_none(row, "Category"),
            created_by=acting_user_id,
        )
