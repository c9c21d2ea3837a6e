from lxml import etree
from typing import List, Dict, Any
import io

from app.domain.imports.dataset import TabularDataset


def _parser() -> etree.XMLParser:
    return etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)


def load_xml_records(file_content: bytes) -> List[Dict[str, Any]]:
    """
    Read XML records: each element under the root is a record and each of
    its child elements is a field. Attributes on a record are fields too.
    """
    try:
        root = etree.parse(io.BytesIO(file_content), _parser()).getroot()
    except etree.XMLSyntaxError as e:
        raise ValueError(f"Malformed XML at line {e.lineno}: {e.msg}")

    records = []
    for record_element in root:
        if not isinstance(record_element.tag, str):
            continue
        record: Dict[str, Any] = dict(record_element.attrib)
        for child in record_element:
            if not isinstance(child.tag, str):
                continue
            text = child.text.strip() if child.text else None
            record[etree.QName(child).localname] = text
        records.append(record)

    return records


def process_xml(file_content: bytes, source_name: str = None) -> TabularDataset:
    """Process XML file into a dataset; columns follow first-seen field order."""
    return TabularDataset.from_records(load_xml_records(file_content), source_name=source_name)
