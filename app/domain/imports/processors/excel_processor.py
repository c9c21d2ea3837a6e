"""
Excel parsing with per-column type coercion.

When the target mapper's descriptor is known, header cells are matched
case-insensitively against its column names and each cell is coerced to the
column's semantic type. Headers that match no column are dropped.
"""
import io
import logging
import uuid
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

import pandas as pd

from app.domain.imports.dataset import TabularDataset, normalize_header
from app.domain.imports.mappers.base import ColumnSpec, DataType, MapperDescriptor
from app.domain.imports.validators import parse_boolean
from app.utils.date import parse_flexible_datetime

logger = logging.getLogger(__name__)


class CellCoercionError(ValueError):
    pass


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and pd.isna(value):
        return True
    if value is pd.NaT:
        return True
    return isinstance(value, str) and not value.strip()


def _as_text(value: Any) -> str:
    # Excel stores numeric-looking text (phone numbers, ids) as floats
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime().isoformat()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


def _to_uuid(value: Any) -> str:
    return str(uuid.UUID(_as_text(value)))


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    parsed = parse_flexible_datetime(value, log_failures=False)
    if parsed is None:
        raise ValueError(f"'{value}' is not a valid date")
    return parsed


def _to_integer(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"'{value}' is not a whole number")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"'{value}' is not a whole number")
        return int(value)
    return int(_as_text(value))


def _to_boolean(value: Any) -> bool:
    parsed = parse_boolean(value)
    if parsed is None:
        raise ValueError(f"'{value}' is not a boolean")
    return parsed


COERCERS: Dict[DataType, Callable[[Any], Any]] = {
    DataType.UUID: _to_uuid,
    DataType.DATETIME: _to_datetime,
    DataType.INTEGER: _to_integer,
    DataType.BOOLEAN: _to_boolean,
    DataType.ENUM: _as_text,
    DataType.STRING: _as_text,
}


def coerce_cell(value: Any, column: ColumnSpec) -> Any:
    """
    Convert one cell to the column's semantic type.

    ``collection`` columns are skipped and keep their raw value.
    """
    if _is_empty(value):
        return None
    if column.data_type == DataType.COLLECTION:
        return value
    coercer = COERCERS.get(column.data_type, _as_text)
    return coercer(value)


def _read_first_sheet(file_content: bytes) -> pd.DataFrame:
    try:
        return pd.read_excel(io.BytesIO(file_content), sheet_name=0, header=None, dtype=object, engine='openpyxl')
    except Exception:
        # Legacy .xls workbooks need pandas' default engine
        try:
            return pd.read_excel(io.BytesIO(file_content), sheet_name=0, header=None, dtype=object)
        except Exception as e:
            raise ValueError(f"Could not read Excel file: {str(e)}")


def process_excel(
    file_content: bytes,
    descriptor: Optional[MapperDescriptor] = None,
    source_name: str = None,
) -> TabularDataset:
    """
    Parse the first worksheet of an Excel file.

    Args:
        file_content: Workbook bytes
        descriptor: Target mapper metadata; enables header matching and coercion
        source_name: File name used in log messages

    Returns:
        Dataset with coerced cells

    Raises:
        ValueError: The workbook is unreadable or a cell cannot be coerced
            (message carries the row number and column name).
    """
    df = _read_first_sheet(file_content)
    df = df.dropna(how='all')
    if df.empty:
        raise ValueError("File is empty")

    raw_header = df.iloc[0].tolist()
    body = df.iloc[1:].values.tolist()

    if descriptor is None:
        header = ["" if _is_empty(cell) else _as_text(cell) for cell in raw_header]
        rows = [[None if _is_empty(cell) else _as_text(cell) for cell in row] for row in body]
        return TabularDataset(header, rows, source_name=source_name)

    # Map sheet positions to descriptor columns
    matched: List[tuple] = []
    for position, cell in enumerate(raw_header):
        if _is_empty(cell):
            continue
        column = descriptor.column(normalize_header(cell))
        if column is None:
            logger.debug("Ignoring unmatched Excel header '%s'", cell)
            continue
        matched.append((position, column))

    rows: List[List[Any]] = []
    for index, raw_row in enumerate(body, start=1):
        values = []
        for position, column in matched:
            cell = raw_row[position] if position < len(raw_row) else None
            try:
                values.append(coerce_cell(cell, column))
            except (ValueError, TypeError) as e:
                raise CellCoercionError(f"row {index}, column '{column.name}': {e}")
        rows.append(values)

    dataset = TabularDataset([column.name for _, column in matched], rows, source_name=source_name)
    logger.info(f"Processed Excel {source_name or ''}: {len(dataset)} rows, columns: {dataset.columns}")
    return dataset
