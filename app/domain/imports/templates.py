"""
Import template generation from mapper column metadata.

Templates re-import cleanly: required headers carry a trailing ``*`` that the
parsers strip, and the example rows are valid data for their table type.
"""
import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pandas as pd
import yaml
from lxml import etree
from openpyxl.comments import Comment
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation

from app.domain.imports.dataset import REQUIRED_MARKER
from app.domain.imports.mappers.base import ColumnSpec, DataType
from app.domain.imports.parsing import CONTENT_TYPES
from app.domain.imports.registry import MapperRegistry
from app.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("xlsx", "csv", "json", "yaml", "xml")

# Rows covered by dropdowns and date formats below the header
TEMPLATE_INPUT_ROWS = 1000

HEADER_FILL = PatternFill(start_color="D9E1F2", end_color="D9E1F2", fill_type="solid")
HEADER_FONT = Font(bold=True)
REQUIRED_HEADER_FONT = Font(bold=True, color="C00000")


@dataclass(frozen=True)
class TemplateFile:
    content: bytes
    content_type: str
    file_name: str


def _header_label(column: ColumnSpec) -> str:
    return f"{column.name} {REQUIRED_MARKER}" if column.required else column.name


def _column_note(column: ColumnSpec) -> str:
    lines = [column.description or column.name]
    lines.append("Required" if column.required else "Optional")
    if column.max_length:
        lines.append(f"Max length: {column.max_length}")
    if column.allowed_values:
        lines.append(f"Allowed: {', '.join(column.allowed_values)}")
    if column.default_value is not None:
        lines.append(f"Default: {column.default_value}")
    if column.data_type == DataType.DATETIME:
        lines.append("Format: yyyy-mm-dd")
    return "\n".join(lines)


def _text_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    return str(value)


class TemplateGenerator:
    def __init__(self, registry: MapperRegistry):
        self.registry = registry

    def generate(
        self,
        table_type: str,
        file_format: str = "xlsx",
        include_examples: bool = True,
        today: Optional[date] = None,
    ) -> TemplateFile:
        """
        Build an import template for a table type.

        Args:
            table_type: Registered table-type tag (case-insensitive).
            file_format: One of ``SUPPORTED_FORMATS``.
            include_examples: Add the mapper's example rows below the header.
            today: Date used in the file name (defaults to today).

        Returns:
            Template bytes with content type and ``<Tag>_Template_<YYYYMMDD>.<ext>`` name.

        Raises:
            UnknownTableTypeError: ``table_type`` is not registered.
            ValueError: ``file_format`` is not supported.
        """
        descriptor = self.registry.descriptor(table_type)
        file_format = (file_format or "xlsx").lower().lstrip(".")
        if file_format == "yml":
            file_format = "yaml"
        if file_format not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported template format '{file_format}'. Supported: {', '.join(SUPPORTED_FORMATS)}")

        columns = list(descriptor.columns)
        examples = [dict(row) for row in descriptor.example_rows] if include_examples else []
        builder = getattr(self, f"_build_{file_format}")
        content = builder(descriptor.table_type, columns, examples)

        stamp = (today or date.today()).strftime("%Y%m%d")
        file_name = f"{descriptor.table_type}_Template_{stamp}.{file_format}"
        logger.info("Generated %s template %s (%d bytes)", descriptor.table_type, file_name, len(content))
        return TemplateFile(content, CONTENT_TYPES[f".{file_format}"], file_name)

    def _build_xlsx(self, table_type: str, columns: List[ColumnSpec], examples: List[Dict[str, Any]]) -> bytes:
        headers = [_header_label(column) for column in columns]
        data = [
            [example.get(column.name) if example.get(column.name) != "" else None for column in columns]
            for example in examples
        ]
        instructions = pd.DataFrame(
            [
                {
                    "Column": column.name,
                    "Type": column.data_type.value,
                    "Required": "Yes" if column.required else "No",
                    "Max Length": column.max_length or "",
                    "Default": column.default_value or "",
                    "Allowed Values": ", ".join(column.allowed_values),
                    "Description": column.description,
                }
                for column in columns
            ]
        )

        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            pd.DataFrame(data, columns=headers).to_excel(writer, sheet_name=table_type, index=False)
            instructions.to_excel(writer, sheet_name="Instructions", index=False)

            sheet = writer.sheets[table_type]
            sheet.freeze_panes = "A2"
            for index, column in enumerate(columns, start=1):
                letter = get_column_letter(index)
                cell = sheet.cell(row=1, column=index)
                cell.font = REQUIRED_HEADER_FONT if column.required else HEADER_FONT
                cell.fill = HEADER_FILL
                cell.alignment = Alignment(horizontal="center")
                cell.comment = Comment(_column_note(column), "Bulk Import")
                sheet.column_dimensions[letter].width = max(14, len(headers[index - 1]) + 4)

                cell_range = f"{letter}2:{letter}{TEMPLATE_INPUT_ROWS + 1}"
                if column.data_type == DataType.BOOLEAN:
                    self._add_dropdown(sheet, cell_range, ["true", "false"])
                elif column.data_type == DataType.ENUM and column.allowed_values:
                    self._add_dropdown(sheet, cell_range, list(column.allowed_values))
                elif column.data_type == DataType.DATETIME:
                    for row in sheet.iter_rows(min_row=2, max_row=TEMPLATE_INPUT_ROWS + 1, min_col=index, max_col=index):
                        row[0].number_format = "yyyy-mm-dd"

            guide = writer.sheets["Instructions"]
            for index in range(1, instructions.shape[1] + 1):
                guide.cell(row=1, column=index).font = HEADER_FONT
                guide.column_dimensions[get_column_letter(index)].width = 22

        return buffer.getvalue()

    @staticmethod
    def _add_dropdown(sheet, cell_range: str, values: List[str]) -> None:
        validation = DataValidation(type="list", formula1=f'"{",".join(values)}"', allow_blank=True)
        validation.error = f"Choose one of: {', '.join(values)}"
        validation.errorTitle = "Invalid value"
        sheet.add_data_validation(validation)
        validation.add(cell_range)

    def _build_csv(self, table_type: str, columns: List[ColumnSpec], examples: List[Dict[str, Any]]) -> bytes:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow([column.name for column in columns])
        for example in examples:
            writer.writerow([_text_value(example.get(column.name)) for column in columns])
        return buffer.getvalue().encode("utf-8")

    def _records(self, columns: List[ColumnSpec], examples: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not examples:
            return [{column.name: column.default_value or "" for column in columns}]
        return [
            {column.name: make_json_safe(example.get(column.name, "")) for column in columns}
            for example in examples
        ]

    def _build_json(self, table_type: str, columns: List[ColumnSpec], examples: List[Dict[str, Any]]) -> bytes:
        return json.dumps(self._records(columns, examples), indent=2).encode("utf-8")

    def _build_yaml(self, table_type: str, columns: List[ColumnSpec], examples: List[Dict[str, Any]]) -> bytes:
        return yaml.safe_dump(self._records(columns, examples), sort_keys=False, allow_unicode=True).encode("utf-8")

    def _build_xml(self, table_type: str, columns: List[ColumnSpec], examples: List[Dict[str, Any]]) -> bytes:
        root = etree.Element(table_type)
        for record in self._records(columns, examples):
            element = etree.SubElement(root, "Record")
            for column in columns:
                etree.SubElement(element, column.name).text = _text_value(record.get(column.name))
        return etree.tostring(root, pretty_print=True, xml_declaration=True, encoding="UTF-8")
