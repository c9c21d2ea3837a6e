"""
Column schema inference for uploaded files.

Semi-structured files (JSON, XML) are classified from their first record by
value shape. Tabular files (CSV, Excel, YAML) use the first data row with a
richer classifier that also recognises numbers and dates.
"""
import io
import json
import logging
import os
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

from lxml import etree

from app.domain.imports.errors import FileParseError
from app.domain.imports.validators import is_boolean_literal, matches_preset
from app.utils.date import looks_like_datetime

logger = logging.getLogger(__name__)

UUID = "uuid"
BOOLEAN = "boolean"
OBJECT = "object"
ARRAY = "array"
TEXT = "text"
INTEGER = "integer"
NUMBER = "number"
DATETIME = "datetime"


@dataclass(frozen=True)
class InferredField:
    name: str
    data_type: str


@dataclass(frozen=True)
class InferredSchema:
    table_name: str
    fields: Tuple[InferredField, ...]
    file_name: Optional[str] = None

    @property
    def column_names(self) -> List[str]:
        return [item.name for item in self.fields]


def classify_value(value: Any) -> str:
    """Shape classifier for JSON/XML values: uuid, boolean, object, array or text."""
    if isinstance(value, dict):
        return OBJECT
    if isinstance(value, list):
        return ARRAY
    if is_boolean_literal(value):
        return BOOLEAN
    if isinstance(value, str) and matches_preset(value, "uuid"):
        return UUID
    return TEXT


def classify_tabular_value(value: Any) -> str:
    """Classifier for spreadsheet-like cells, most specific type first."""
    if value is None:
        return TEXT
    if isinstance(value, bool) or is_boolean_literal(value):
        return BOOLEAN
    if isinstance(value, int):
        return INTEGER
    if isinstance(value, float):
        return INTEGER if value.is_integer() else NUMBER
    text = str(value).strip()
    if not text:
        return TEXT
    if matches_preset(text, "uuid"):
        return UUID
    if matches_preset(text, "integer"):
        return INTEGER
    if matches_preset(text, "number"):
        return NUMBER
    if looks_like_datetime(value):
        return DATETIME
    return TEXT


def table_name_for(file_name: str) -> str:
    return os.path.splitext(os.path.basename(file_name))[0]


def infer_json_schema(file_content: bytes, table_name: str, file_name: str = None) -> InferredSchema:
    data = json.loads(file_content.decode('utf-8-sig'))
    if isinstance(data, list):
        if not data:
            raise ValueError("JSON array is empty")
        first = data[0]
    else:
        first = data
    if not isinstance(first, dict):
        raise ValueError("JSON element at index 0 is not an object")
    fields = tuple(InferredField(str(key), classify_value(value)) for key, value in first.items())
    return InferredSchema(table_name, fields, file_name)


def infer_xml_schema(file_content: bytes, table_name: str, file_name: str = None) -> InferredSchema:
    parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)
    try:
        root = etree.parse(io.BytesIO(file_content), parser).getroot()
    except etree.XMLSyntaxError as e:
        raise ValueError(f"Malformed XML at line {e.lineno}: {e.msg}")

    first = next((child for child in root if isinstance(child.tag, str)), None)
    if first is None:
        raise ValueError("XML document has no record elements")

    children = [child for child in first if isinstance(child.tag, str)]
    counts = Counter(etree.QName(child).localname for child in children)
    fields: List[InferredField] = []
    seen = set()
    for child in children:
        name = etree.QName(child).localname
        if name in seen:
            continue
        seen.add(name)
        if counts[name] > 1:
            data_type = ARRAY
        elif len(child):
            data_type = OBJECT
        else:
            data_type = classify_value((child.text or "").strip())
        fields.append(InferredField(name, data_type))
    return InferredSchema(table_name, tuple(fields), file_name)


def infer_tabular_schema(dataset, table_name: str, file_name: str = None) -> InferredSchema:
    """Infer from the first data row of an already parsed dataset."""
    first = dataset.row(1) if len(dataset) else None
    fields = tuple(
        InferredField(column, classify_tabular_value(first.get(column, None)) if first else TEXT)
        for column in dataset.columns
    )
    return InferredSchema(table_name, fields, file_name)


def infer_schema(file_name: str, file_content: bytes) -> InferredSchema:
    """
    Infer the column schema of one file; the table name is the file stem.

    Raises:
        FileParseError: The file cannot be read.
    """
    from app.domain.imports.parsing import parse_file

    table_name = table_name_for(file_name)
    extension = os.path.splitext(file_name)[1].lower()
    try:
        if extension == ".json":
            return infer_json_schema(file_content, table_name, file_name)
        if extension == ".xml":
            return infer_xml_schema(file_content, table_name, file_name)
    except (ValueError, UnicodeDecodeError) as e:
        raise FileParseError(file_name, str(e))
    dataset = parse_file(file_name, file_content)
    return infer_tabular_schema(dataset, table_name, file_name)


def infer_schemas(files: Iterable[Any]) -> Tuple[List[InferredSchema], List[FileParseError]]:
    """
    Infer schemas for several uploaded files.

    Files whose table name (case-insensitive) was already inferred from an
    earlier file are skipped. A failure in one file never stops the others.

    Returns:
        (schemas in upload order, file-level errors)
    """
    schemas: List[InferredSchema] = []
    errors: List[FileParseError] = []
    seen = set()
    for uploaded in files:
        key = table_name_for(uploaded.file_name).lower()
        if key in seen:
            logger.debug("Skipping %s: table '%s' already inferred", uploaded.file_name, key)
            continue
        try:
            schema = infer_schema(uploaded.file_name, uploaded.content)
        except FileParseError as e:
            logger.warning("Schema inference failed for %s: %s", uploaded.file_name, e.message)
            errors.append(e)
            continue
        seen.add(key)
        schemas.append(schema)
    return schemas, errors
