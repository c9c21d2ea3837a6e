import json
import uuid
from datetime import date, datetime
from decimal import Decimal

from app.utils.serialization import make_json_safe, to_cell_text


def test_make_json_safe_converts_nested_values():
    identifier = uuid.UUID("3f2504e0-4f89-11d3-9a0c-0305e82c3301")
    value = {
        "when": datetime(2025, 10, 20, 9, 30),
        "day": date(2025, 10, 20),
        "ids": (identifier,),
        "amount": Decimal("12.50"),
        "count": Decimal("3"),
    }

    assert make_json_safe(value) == {
        "when": "2025-10-20T09:30:00",
        "day": "2025-10-20",
        "ids": ["3f2504e0-4f89-11d3-9a0c-0305e82c3301"],
        "amount": "12.50",
        "count": 3,
    }


def test_to_cell_text_flattens_nested_values():
    assert to_cell_text({"city": "Paris", "zip": "75001"}) == '{"city":"Paris","zip":"75001"}'
    assert json.loads(to_cell_text(["a", "b"])) == ["a", "b"]


def test_to_cell_text_keeps_scalars():
    assert to_cell_text("alice") == "alice"
    assert to_cell_text(42) == 42
    assert to_cell_text(None) is None
