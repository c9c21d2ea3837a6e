"""
Uniform tabular structure produced by every format parser.

Rows are numbered from 1 (the header is not a row) and keep their number
through validation and persistence. Column lookup is case-insensitive and a
missing column reads as an empty value.
"""
import math
import sys
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

import pandas as pd

REQUIRED_MARKER = "*"

# Per-cell bookkeeping added on top of the value size when estimating memory
_CELL_OVERHEAD_BYTES = 64


class DuplicateColumnError(ValueError):
    """Two headers normalise to the same column name."""


def normalize_header(name: Any) -> str:
    """
    Normalise a header cell.

    Surrounding whitespace and a trailing required marker (``Email *``) are
    removed so generated templates import without edits.
    """
    text = "" if name is None else str(name).strip()
    if text.endswith(REQUIRED_MARKER):
        text = text[:-1].rstrip()
    return text


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float):
        return math.isnan(value)
    if isinstance(value, (list, tuple, dict, set)):
        return False
    return value is pd.NaT or value is pd.NA


class DataRow:
    """Read-only view of one dataset row."""

    __slots__ = ("row_number", "_values", "_lookup")

    def __init__(self, row_number: int, values: Dict[str, Any], lookup: Dict[str, str]):
        self.row_number = row_number
        self._values = values
        self._lookup = lookup

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._lookup

    def get(self, name: str, default: Any = "") -> Any:
        column = self._lookup.get(name.lower())
        if column is None:
            return default
        value = self._values.get(column)
        return default if value is None else value

    def text(self, name: str) -> str:
        """Return the cell as stripped text; missing and empty cells give ``""``."""
        value = self.get(name, "")
        if isinstance(value, str):
            return value.strip()
        return str(value).strip()

    def is_blank(self, name: str) -> bool:
        return self.text(name) == ""

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._values)

    def __repr__(self) -> str:
        return f"DataRow({self.row_number}, {self._values!r})"


class TabularDataset:
    """
    Ordered named columns plus ordered rows.

    Args:
        columns: Header names, normalised on construction.
        rows: Cell values per row, positional against ``columns``. Short rows
            are padded with empty cells.
        source_name: Optional file name the dataset was parsed from.
    """

    def __init__(
        self,
        columns: Sequence[Any],
        rows: Iterable[Sequence[Any]] = (),
        source_name: Optional[str] = None,
    ):
        normalized = [normalize_header(column) for column in columns]
        lookup: Dict[str, str] = {}
        for column in normalized:
            key = column.lower()
            if key in lookup:
                raise DuplicateColumnError(f"Duplicate column '{column}'")
            lookup[key] = column

        self._columns = tuple(normalized)
        self._lookup = lookup
        self.source_name = source_name

        built: List[DataRow] = []
        for index, raw in enumerate(rows, start=1):
            cells = list(raw)
            if len(cells) > len(normalized):
                raise ValueError(
                    f"Row {index} has {len(cells)} values but only {len(normalized)} columns"
                )
            cells.extend([None] * (len(normalized) - len(cells)))
            values = {
                column: (None if _is_missing(cell) else cell)
                for column, cell in zip(normalized, cells)
            }
            built.append(DataRow(index, values, lookup))
        self._rows = tuple(built)

    @classmethod
    def from_records(
        cls,
        records: Iterable[Dict[str, Any]],
        columns: Optional[Sequence[str]] = None,
        source_name: Optional[str] = None,
    ) -> "TabularDataset":
        """Build a dataset from mappings; columns default to first-seen key order."""
        records = list(records)
        if columns is None:
            ordered: List[str] = []
            seen = set()
            for record in records:
                for key in record.keys():
                    if key not in seen:
                        seen.add(key)
                        ordered.append(key)
            columns = ordered
        rows = [[record.get(column) for column in columns] for record in records]
        return cls(columns, rows, source_name=source_name)

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, source_name: Optional[str] = None) -> "TabularDataset":
        df = df.astype(object).where(pd.notnull(df), None)
        return cls(list(df.columns), df.values.tolist(), source_name=source_name)

    @property
    def columns(self) -> List[str]:
        return list(self._columns)

    def has_column(self, name: str) -> bool:
        return normalize_header(name).lower() in self._lookup

    def column(self, name: str) -> List[Any]:
        """Values of one column in row order; a missing column yields empty values."""
        return [row.get(name) for row in self._rows]

    def row(self, row_number: int) -> DataRow:
        if row_number < 1 or row_number > len(self._rows):
            raise IndexError(f"Row {row_number} is out of range (1..{len(self._rows)})")
        return self._rows[row_number - 1]

    @property
    def rows(self) -> List[DataRow]:
        return list(self._rows)

    def __iter__(self) -> Iterator[DataRow]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __bool__(self) -> bool:
        return True

    def chunks(self, size: int) -> Iterator[List[DataRow]]:
        size = max(1, int(size))
        for start in range(0, len(self._rows), size):
            yield list(self._rows[start:start + size])

    def partition(self, parts: int) -> List[List[DataRow]]:
        """Split rows into at most ``parts`` contiguous, near-equal slices."""
        parts = max(1, min(int(parts), len(self._rows) or 1))
        base, extra = divmod(len(self._rows), parts)
        slices: List[List[DataRow]] = []
        start = 0
        for index in range(parts):
            end = start + base + (1 if index < extra else 0)
            if end > start:
                slices.append(list(self._rows[start:end]))
            start = end
        return slices

    def subset(self, rows: Iterable[DataRow]) -> "TabularDataset":
        """Dataset view over the given rows, keeping their original numbers."""
        view = TabularDataset.__new__(TabularDataset)
        view._columns = self._columns
        view._lookup = self._lookup
        view.source_name = self.source_name
        view._rows = tuple(rows)
        return view

    def estimate_row_footprint(self, sample_size: int = 200) -> int:
        """Approximate bytes held per row, sampled from the first rows."""
        if not self._rows:
            return 0
        sample = self._rows[:sample_size]
        total = 0
        for row in sample:
            for value in row.to_dict().values():
                total += _CELL_OVERHEAD_BYTES + (sys.getsizeof(value) if value is not None else 0)
        return max(1, total // len(sample))

    def __repr__(self) -> str:
        return f"TabularDataset(columns={list(self._columns)!r}, rows={len(self._rows)})"
