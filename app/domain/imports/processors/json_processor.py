import json
from typing import Any, Dict, List

from app.domain.imports.dataset import TabularDataset
from app.utils.serialization import to_cell_text


def load_json_records(file_content: bytes) -> List[Dict[str, Any]]:
    """Decode a JSON array of objects (or a single object) into records."""
    data = json.loads(file_content.decode('utf-8-sig'))

    if isinstance(data, dict):
        data = [data]
    elif not isinstance(data, list):
        raise ValueError("JSON must contain an object or array of objects")

    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise ValueError(f"JSON element at index {index} is not an object")
    return data


def process_json(file_content: bytes, source_name: str = None) -> TabularDataset:
    """Process JSON file; nested values are flattened to JSON text cells."""
    records = load_json_records(file_content)
    flattened = [{key: to_cell_text(value) for key, value in record.items()} for record in records]
    return TabularDataset.from_records(flattened, source_name=source_name)
