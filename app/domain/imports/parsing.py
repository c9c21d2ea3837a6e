"""
Entry point from uploaded file bytes to datasets.

Dispatches on file extension, enforces upload limits and turns every parser
failure into a ``FileParseError`` tied to the file name.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

import yaml
from lxml import etree

from app.core.config import settings
from app.domain.imports.dataset import TabularDataset
from app.domain.imports.errors import FileParseError
from app.domain.imports.mappers.base import MapperDescriptor
from app.domain.imports.processors.csv_processor import process_csv
from app.domain.imports.processors.excel_processor import process_excel
from app.domain.imports.processors.json_processor import process_json
from app.domain.imports.processors.xml_processor import process_xml
from app.domain.imports.processors.yaml_processor import process_yaml

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".csv": "text/csv",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".json": "application/json",
    ".xml": "application/xml",
    ".yaml": "application/x-yaml",
    ".yml": "application/x-yaml",
}

_EXTENSION_BY_CONTENT_TYPE = {
    "text/csv": ".csv",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/vnd.ms-excel": ".xls",
    "application/json": ".json",
    "application/xml": ".xml",
    "text/xml": ".xml",
    "application/x-yaml": ".yaml",
    "text/yaml": ".yaml",
}


@dataclass(frozen=True)
class UploadedFile:
    """A file as received from the caller: name, raw bytes, optional MIME type."""

    file_name: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def extension(self) -> str:
        extension = os.path.splitext(self.file_name)[1].lower()
        if not extension and self.content_type:
            extension = _EXTENSION_BY_CONTENT_TYPE.get(self.content_type.split(";")[0].strip(), "")
        return extension

    @property
    def size_bytes(self) -> int:
        return len(self.content)


@dataclass
class ParsedFile:
    file_name: str
    dataset: TabularDataset


@dataclass
class ParseBatch:
    files: List[ParsedFile] = field(default_factory=list)
    errors: List[FileParseError] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return sum(len(item.dataset) for item in self.files)


def _parsers(descriptor: Optional[MapperDescriptor]) -> Dict[str, Callable[[bytes, str], TabularDataset]]:
    return {
        ".csv": lambda content, name: process_csv(content, source_name=name),
        ".xlsx": lambda content, name: process_excel(content, descriptor, source_name=name),
        ".xls": lambda content, name: process_excel(content, descriptor, source_name=name),
        ".json": lambda content, name: process_json(content, source_name=name),
        ".xml": lambda content, name: process_xml(content, source_name=name),
        ".yaml": lambda content, name: process_yaml(content, source_name=name),
        ".yml": lambda content, name: process_yaml(content, source_name=name),
    }


def check_upload(uploaded: UploadedFile) -> None:
    """
    Enforce extension, emptiness and size limits.

    Raises:
        FileParseError: The file is rejected before parsing.
    """
    extension = uploaded.extension
    allowed = [value.lower() for value in settings.bulk_allowed_extensions]
    if extension not in allowed:
        raise FileParseError(
            uploaded.file_name,
            f"Unsupported file type '{extension or '(none)'}'. Allowed: {', '.join(allowed)}",
        )
    if uploaded.size_bytes == 0:
        raise FileParseError(uploaded.file_name, "File is empty")
    limit = settings.bulk_max_file_size_mb * 1024 * 1024
    if uploaded.size_bytes > limit:
        raise FileParseError(
            uploaded.file_name,
            f"File exceeds the maximum size of {settings.bulk_max_file_size_mb} MB",
        )


def parse_file(
    file_name: str,
    content: bytes,
    descriptor: Optional[MapperDescriptor] = None,
    content_type: Optional[str] = None,
) -> TabularDataset:
    """
    Parse one file into a dataset.

    Args:
        file_name: Original file name; its extension selects the parser.
        content: Raw file bytes.
        descriptor: Target mapper metadata (used by the Excel parser).
        content_type: MIME type used when the name has no extension.

    Raises:
        FileParseError: The file is rejected or malformed.
    """
    uploaded = UploadedFile(file_name, content, content_type)
    check_upload(uploaded)
    parser = _parsers(descriptor)[uploaded.extension]
    try:
        dataset = parser(content, file_name)
    except (ValueError, UnicodeDecodeError, etree.LxmlError, yaml.YAMLError) as e:
        raise FileParseError(file_name, str(e))
    if len(dataset) == 0:
        raise FileParseError(file_name, "File contains no data rows")
    return dataset


def parse_files(
    files: Iterable[UploadedFile],
    descriptor: Optional[MapperDescriptor] = None,
) -> ParseBatch:
    """
    Parse several files; one file's failure never stops its siblings.
    """
    batch = ParseBatch()
    for uploaded in files:
        try:
            dataset = parse_file(uploaded.file_name, uploaded.content, descriptor, uploaded.content_type)
        except FileParseError as e:
            logger.warning("Skipping %s: %s", e.file_name, e.message)
            batch.errors.append(e)
            continue
        batch.files.append(ParsedFile(uploaded.file_name, dataset))
    logger.info(
        "Parsed %d file(s) with %d row(s); %d file(s) failed",
        len(batch.files),
        batch.total_rows,
        len(batch.errors),
    )
    return batch
