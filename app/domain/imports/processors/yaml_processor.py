from typing import Any, Dict, List

import yaml

from app.domain.imports.dataset import TabularDataset
from app.utils.serialization import to_cell_text


def load_yaml_records(file_content: bytes) -> List[Dict[str, Any]]:
    """
    Read a YAML list of mappings, or a mapping that holds exactly one list of
    mappings (``users: [...]``).
    """
    data = yaml.safe_load(file_content.decode('utf-8-sig'))

    if isinstance(data, dict):
        lists = [value for value in data.values() if isinstance(value, list)]
        if len(lists) == 1:
            data = lists[0]
        elif not lists:
            data = [data]
        else:
            raise ValueError("YAML mapping must hold a single list of records")

    if not isinstance(data, list):
        raise ValueError("YAML must contain a list of mappings")

    for index, item in enumerate(data):
        if not isinstance(item, dict):
            raise ValueError(f"YAML element at index {index} is not a mapping")
    return data


def process_yaml(file_content: bytes, source_name: str = None) -> TabularDataset:
    records = load_yaml_records(file_content)
    flattened = [{str(key): to_cell_text(value) for key, value in record.items()} for record in records]
    return TabularDataset.from_records(flattened, source_name=source_name)
