import io
import logging
import re
from typing import Tuple

import pandas as pd

from app.domain.imports.dataset import TabularDataset

logger = logging.getLogger(__name__)

# Tried in order; latin-1 accepts any byte sequence
CSV_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")

# Excel writes "sep=;" as the first line when it exports with a non-default delimiter
SEPARATOR_MARKER = re.compile(r"^sep=(.)[ \t]*\r?$", re.IGNORECASE)


def decode_csv_bytes(file_content: bytes) -> str:
    for encoding in CSV_ENCODINGS:
        try:
            text = file_content.decode(encoding)
        except UnicodeDecodeError:
            continue
        if encoding != CSV_ENCODINGS[0]:
            logger.info(f"CSV is not valid UTF-8; decoded as {encoding}")
        return text
    raise ValueError("Could not decode the file")


def split_separator_marker(text: str) -> Tuple[str, str]:
    """Return (delimiter, text without the marker line); ',' when there is no marker."""
    first_line, _, rest = text.lstrip("\ufeff").partition("\n")
    match = SEPARATOR_MARKER.match(first_line)
    if match is None:
        return ",", text
    return match.group(1), rest


def process_csv(file_content: bytes, source_name: str = None) -> TabularDataset:
    """
    Parse a CSV file into a dataset.

    The first line is the header, unless it is a ``sep=`` marker naming the
    delimiter, in which case the header follows it. Content that is not UTF-8
    is decoded as cp1252, then latin-1. Every cell is kept as text, with no NA
    coercion, so "NULL" or "N/A" reach the mappers unchanged. A line with more
    fields than the header aborts the file.

    Args:
        file_content: CSV file content as bytes
        source_name: File name used in log messages

    Returns:
        Dataset whose rows are numbered from 1 after the header
    """
    text = decode_csv_bytes(file_content)
    delimiter, text = split_separator_marker(text)
    if not text.strip():
        raise ValueError("File is empty")

    try:
        df = pd.read_csv(
            io.StringIO(text.lstrip("\ufeff")),
            sep=delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            na_filter=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError:
        raise ValueError("File is empty")
    except pd.errors.ParserError as e:
        raise ValueError(f"Malformed CSV: {e}")

    if df.empty:
        raise ValueError("File is empty")

    header = [str(value) for value in df.iloc[0].tolist()]
    rows = df.iloc[1:].values.tolist()
    dataset = TabularDataset(header, rows, source_name=source_name)

    logger.info(f"Processed CSV {source_name or ''}: {len(dataset)} rows, columns: {dataset.columns}")
    return dataset
