"""
Base classes for table mappers.

A mapper knows one entity type: its columns, how a row is validated, and how
a valid row becomes an ORM entity staged in the run's unit of work. Mappers
are bound to a single run; the registry creates a fresh instance per run.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from sqlalchemy.orm import Session

from app.db.repositories import Repository
from app.db.session import SessionFactory, session_scope
from app.db.unit_of_work import UnitOfWork
from app.domain.imports.cancellation import CancellationToken, ensure_token
from app.domain.imports.dataset import DataRow, TabularDataset
from app.domain.imports.results import RowValidationResult, SaveResult, should_stage
from app.domain.imports.validators import (
    join_choices,
    match_allowed_value,
    matches_preset,
    parse_boolean,
)
from app.utils.date import parse_flexible_datetime

logger = logging.getLogger(__name__)

# Rows between cancellation checks inside in-memory batch loops
CANCEL_CHECK_INTERVAL = 100


class DataType(str, Enum):
    STRING = "string"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    INTEGER = "integer"
    UUID = "uuid"
    ENUM = "enum"
    COLLECTION = "collection"


@dataclass(frozen=True)
class ColumnSpec:
    """
    Column metadata for validation, Excel coercion and templates.

    ``lenient`` columns fall back to ``default_value`` when a value cannot be
    used, so a row failing only on them stays recoverable.
    """

    name: str
    data_type: DataType = DataType.STRING
    required: bool = False
    max_length: Optional[int] = None
    default_value: Optional[str] = None
    description: str = ""
    allowed_values: Tuple[str, ...] = ()
    lenient: bool = False


@dataclass(frozen=True)
class MapperDescriptor:
    table_type: str
    columns: Tuple[ColumnSpec, ...]
    example_rows: Tuple[Dict[str, Any], ...]
    batch_capable: bool = False

    @property
    def required_columns(self) -> List[str]:
        return [column.name for column in self.columns if column.required]

    def column(self, name: str) -> Optional[ColumnSpec]:
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None


@dataclass
class RowErrorCollector:
    """Accumulates messages for one row, tracking which ones are recoverable."""

    messages: List[str] = field(default_factory=list)
    hard_errors: int = 0

    def add(self, message: str, soft: bool = False) -> None:
        self.messages.append(message)
        if not soft:
            self.hard_errors += 1

    def has_hard_errors(self) -> bool:
        return self.hard_errors > 0

    def result(self, row_number: int) -> RowValidationResult:
        if not self.messages:
            return RowValidationResult.valid(row_number)
        return RowValidationResult.invalid(
            row_number,
            self.messages,
            recoverable=self.hard_errors == 0,
        )


def check_columns(row: DataRow, columns: Iterable[ColumnSpec], collector: RowErrorCollector) -> None:
    """Apply required, length, type and membership checks to one row."""
    for column in columns:
        raw = row.get(column.name)
        text = row.text(column.name)

        if not text:
            if column.required:
                collector.add(f"{column.name} is required")
            continue

        if column.max_length is not None and len(text) > column.max_length:
            collector.add(f"{column.name} cannot exceed {column.max_length} characters")

        if column.data_type == DataType.ENUM and column.allowed_values:
            if match_allowed_value(text, column.allowed_values) is None:
                collector.add(
                    f"Invalid {column.name}. Must be {join_choices(column.allowed_values)}",
                    soft=column.lenient,
                )
        elif column.data_type == DataType.BOOLEAN:
            if parse_boolean(raw) is None:
                collector.add(
                    f"Invalid {column.name} value '{text}'. Use true or false",
                    soft=column.lenient,
                )
        elif column.data_type == DataType.DATETIME:
            if parse_flexible_datetime(raw, log_context=column.name) is None:
                collector.add(f"Invalid {column.name} format", soft=column.lenient)
        elif column.data_type == DataType.INTEGER:
            if not isinstance(raw, int) and not matches_preset(text, "integer"):
                collector.add(f"{column.name} must be a whole number", soft=column.lenient)
        elif column.data_type == DataType.UUID:
            if not matches_preset(text, "uuid"):
                collector.add(f"{column.name} must be a valid UUID", soft=column.lenient)


class TableMapper:
    """
    Single-row mapper contract.

    Subclasses declare ``TABLE_TYPE``, ``COLUMNS`` and ``EXAMPLE_ROWS`` and
    implement ``build_entity``. ``check_row`` adds entity-specific checks and
    ``check_store`` adds referential and uniqueness checks against the store.
    ``NATURAL_KEYS`` lists the columns that must be unique, case-insensitively.
    """

    TABLE_TYPE: str = ""
    ENTITY_LABEL: str = "row"
    COLUMNS: Tuple[ColumnSpec, ...] = ()
    EXAMPLE_ROWS: Tuple[Dict[str, Any], ...] = ()
    NATURAL_KEYS: Tuple[str, ...] = ()
    batch_capable = False

    def __init__(
        self,
        repository: Repository,
        unit_of_work: Optional[UnitOfWork] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.repository = repository
        self.unit_of_work = unit_of_work
        self.session_factory = session_factory

    @property
    def table_type(self) -> str:
        return self.TABLE_TYPE

    @classmethod
    def descriptor(cls) -> MapperDescriptor:
        return MapperDescriptor(
            table_type=cls.TABLE_TYPE,
            columns=tuple(cls.COLUMNS),
            example_rows=tuple(dict(row) for row in cls.EXAMPLE_ROWS),
            batch_capable=cls.batch_capable,
        )

    @classmethod
    def template_columns(cls) -> List[ColumnSpec]:
        return list(cls.COLUMNS)

    @classmethod
    def example_rows(cls) -> List[Dict[str, Any]]:
        return [dict(row) for row in cls.EXAMPLE_ROWS]

    # Validation

    def validate_row(
        self,
        row: DataRow,
        row_number: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> RowValidationResult:
        """
        Validate one row, including store lookups through a short-lived session.

        Raises:
            ImportCancelledError: The token was cancelled before the store query.
        """
        cancel = ensure_token(cancel)
        number = row_number if row_number is not None else row.row_number
        collector = RowErrorCollector()
        check_columns(row, self.COLUMNS, collector)
        self.check_row(row, collector)
        if self.needs_store_check(row):
            cancel.raise_if_cancelled()
            with session_scope(self.session_factory) as session:
                self.check_store(session, row, collector)
        return collector.result(number)

    def check_row(self, row: DataRow, collector: RowErrorCollector) -> None:
        """Entity-specific checks that do not touch the store."""

    def needs_store_check(self, row: DataRow) -> bool:
        return False

    def check_store(self, session: Session, row: DataRow, collector: RowErrorCollector) -> None:
        """Checks against persisted data. ``session`` is read-only."""

    def run_keys(self, row: DataRow) -> Dict[Tuple[str, ...], str]:
        """
        Keys of this row that must not repeat anywhere in one import run.

        Returns:
            Lower-cased key tuples mapped to the message reported for a later
            row repeating them.
        """
        keys: Dict[Tuple[str, ...], str] = {}
        for column in self.NATURAL_KEYS:
            value = row.text(column)
            if value:
                keys[(column, value.lower())] = f"{column} '{value}' appears multiple times in this batch"
        return keys

    # Persistence

    def build_entity(self, row: DataRow, acting_user_id: Optional[str]) -> Any:
        """
        Construct the ORM entity for a row.

        Raises:
            ValueError: The row cannot be turned into an entity.
        """
        raise NotImplementedError

    def save_row(
        self,
        row: DataRow,
        acting_user_id: Optional[str],
        cancel: Optional[CancellationToken] = None,
    ) -> SaveResult:
        """Construct the entity and stage it without committing."""
        ensure_token(cancel).raise_if_cancelled()
        if self.unit_of_work is None:
            raise RuntimeError(f"{type(self).__name__} is not bound to a unit of work")
        try:
            entity = self.build_entity(row, acting_user_id)
        except (ValueError, TypeError) as exc:
            logger.warning("Row %s: could not build %s: %s", row.row_number, self.ENTITY_LABEL, exc)
            return SaveResult.fail(f"Error saving {self.ENTITY_LABEL}: {exc}")
        self.unit_of_work.stage(self.repository, entity)
        return SaveResult.ok(entity)

    # Value helpers used by build_entity

    def _column(self, name: str) -> ColumnSpec:
        for column in self.COLUMNS:
            if column.name == name:
                return column
        raise KeyError(name)

    def text_or_none(self, row: DataRow, name: str) -> Optional[str]:
        value = row.text(name)
        return value or None

    def enum_value(self, row: DataRow, name: str) -> Optional[str]:
        column = self._column(name)
        return match_allowed_value(row.text(name), column.allowed_values) or column.default_value

    def bool_value(self, row: DataRow, name: str) -> bool:
        column = self._column(name)
        parsed = parse_boolean(row.get(name, None)) if not row.is_blank(name) else None
        if parsed is None:
            parsed = parse_boolean(column.default_value)
        return bool(parsed)


class BatchTableMapper(TableMapper):
    """
    Mapper that can validate and stage a whole dataset at once.

    Existing keys are pre-loaded with a few ``IN`` queries and duplicates inside
    the batch are detected case-insensitively; the first occurrence wins.
    ``load_existing`` and ``check_existing`` serve both the pre-loaded batch
    path and single-row validation, so the two report the same store errors.
    """

    batch_capable = True

    def existing_keys(self, session: Session, column: str, values: Iterable[str]) -> Set[str]:
        """Lower-cased values of ``column`` already in the store."""
        raise NotImplementedError

    def load_existing(self, session: Session, rows: Sequence[DataRow]) -> Dict[str, Set[str]]:
        """Lower-cased store values the rows may collide with, by lookup name."""
        return {
            column: self.existing_keys(session, column, [row.text(column) for row in rows])
            for column in self.NATURAL_KEYS
        }

    def check_existing(self, row: DataRow, existing: Dict[str, Set[str]], collector: RowErrorCollector) -> None:
        for column in self.NATURAL_KEYS:
            value = row.text(column)
            if value and value.lower() in existing[column]:
                collector.add(f"{column} '{value}' already exists")

    def needs_store_check(self, row: DataRow) -> bool:
        return any(not row.is_blank(column) for column in self.NATURAL_KEYS)

    def check_store(self, session: Session, row: DataRow, collector: RowErrorCollector) -> None:
        self.check_existing(row, self.load_existing(session, [row]), collector)

    def validate_batch(
        self,
        dataset: TabularDataset,
        cancel: Optional[CancellationToken] = None,
    ) -> Dict[int, RowValidationResult]:
        cancel = ensure_token(cancel)
        cancel.raise_if_cancelled()

        with session_scope(self.session_factory) as session:
            existing = self.load_existing(session, dataset.rows)
        logger.debug(
            "%s: pre-loaded existing keys %s",
            self.TABLE_TYPE,
            {column: len(keys) for column, keys in existing.items()},
        )

        seen: Dict[str, Set[str]] = {column: set() for column in self.NATURAL_KEYS}
        results: Dict[int, RowValidationResult] = {}
        for index, row in enumerate(dataset):
            if index % CANCEL_CHECK_INTERVAL == 0:
                cancel.raise_if_cancelled()
            collector = RowErrorCollector()
            check_columns(row, self.COLUMNS, collector)
            self.check_row(row, collector)
            self.check_existing(row, existing, collector)
            for column in self.NATURAL_KEYS:
                value = row.text(column)
                if not value:
                    continue
                key = value.lower()
                if key in seen[column] and key not in existing.get(column, ()):
                    collector.add(f"{column} '{value}' appears multiple times in this batch")
                seen[column].add(key)
            results[row.row_number] = collector.result(row.row_number)
        return results

    def save_batch(
        self,
        dataset: TabularDataset,
        acting_user_id: Optional[str],
        validation_results: Dict[int, RowValidationResult],
        ignore_errors: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> SaveResult:
        """
        Stage every stageable row in the unit of work; the caller commits once.

        Returns:
            ``SaveResult`` whose value is the number of staged rows and whose
            ``row_errors`` hold per-row construction failures.
        """
        cancel = ensure_token(cancel)
        if self.unit_of_work is None:
            raise RuntimeError(f"{type(self).__name__} is not bound to a unit of work")

        entities: List[Any] = []
        row_errors: Dict[int, Tuple[str, ...]] = {}
        for index, row in enumerate(dataset):
            if index % CANCEL_CHECK_INTERVAL == 0:
                cancel.raise_if_cancelled()
            if not should_stage(validation_results.get(row.row_number), ignore_errors):
                continue
            try:
                entities.append(self.build_entity(row, acting_user_id))
            except (ValueError, TypeError) as exc:
                row_errors[row.row_number] = (f"Error saving {self.ENTITY_LABEL}: {exc}",)

        self.unit_of_work.stage_all(self.repository, entities)
        logger.debug("%s: staged %d rows (%d construction failures)", self.TABLE_TYPE, len(entities), len(row_errors))
        return SaveResult.ok(len(entities), row_errors)
