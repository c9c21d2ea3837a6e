"""
Tests for column schema inference across file formats.
"""

import json

import pytest

from app.domain.imports.errors import FileParseError
from app.domain.imports.parsing import UploadedFile
from app.domain.imports.schema_inference import (
    ARRAY,
    BOOLEAN,
    DATETIME,
    INTEGER,
    NUMBER,
    OBJECT,
    TEXT,
    UUID,
    classify_tabular_value,
    classify_value,
    infer_schema,
    infer_schemas,
)
from tests.utils.factories import csv_bytes

SAMPLE_UUID = "3f2504e0-4f89-11d3-9a0c-0305e82c3301"


def _types(schema):
    return {item.name: item.data_type for item in schema.fields}


class TestClassifiers:
    @pytest.mark.parametrize("value, expected", [
        ({"a": 1}, OBJECT),
        ([1, 2], ARRAY),
        (True, BOOLEAN),
        ("FALSE", BOOLEAN),
        (SAMPLE_UUID, UUID),
        ("yes", TEXT),
        (42, TEXT),
        ("alice", TEXT),
    ])
    def test_classify_value(self, value, expected):
        assert classify_value(value) == expected

    @pytest.mark.parametrize("value, expected", [
        ("true", BOOLEAN),
        ("42", INTEGER),
        (7, INTEGER),
        ("3.14", NUMBER),
        (2.5, NUMBER),
        ("2025-10-20", DATETIME),
        ("20/10/2025", DATETIME),
        (SAMPLE_UUID, UUID),
        ("Engineering", TEXT),
        ("", TEXT),
        (None, TEXT),
    ])
    def test_classify_tabular_value(self, value, expected):
        assert classify_tabular_value(value) == expected


class TestSingleFile:
    def test_json_uses_first_record(self):
        content = json.dumps([
            {"Id": SAMPLE_UUID, "Active": True, "Profile": {"a": 1}, "Tags": ["x"], "Name": "alice"},
            {"Extra": "ignored"},
        ]).encode("utf-8")

        schema = infer_schema("people.json", content)

        assert schema.table_name == "people"
        assert schema.column_names == ["Id", "Active", "Profile", "Tags", "Name"]
        assert _types(schema) == {
            "Id": UUID,
            "Active": BOOLEAN,
            "Profile": OBJECT,
            "Tags": ARRAY,
            "Name": TEXT,
        }

    def test_xml_repeated_and_nested_children(self):
        content = b"""<Users>
  <User>
    <Username>alice</Username>
    <Tag>a</Tag>
    <Tag>b</Tag>
    <Address><City>Paris</City></Address>
    <Active>true</Active>
  </User>
</Users>"""

        schema = infer_schema("users.xml", content)

        assert schema.column_names == ["Username", "Tag", "Address", "Active"]
        assert _types(schema) == {"Username": TEXT, "Tag": ARRAY, "Address": OBJECT, "Active": BOOLEAN}

    def test_csv_uses_first_data_row(self):
        content = csv_bytes([["Name", "Age", "Score", "Joined"], ["alice", "31", "9.5", "2024-01-15"]])

        schema = infer_schema("members.csv", content)

        assert _types(schema) == {"Name": TEXT, "Age": INTEGER, "Score": NUMBER, "Joined": DATETIME}

    def test_unreadable_file(self):
        with pytest.raises(FileParseError):
            infer_schema("broken.json", b"{")


class TestManyFiles:
    def test_same_table_name_is_inferred_once(self):
        files = [
            UploadedFile("Users.csv", csv_bytes([["Username"], ["alice"]])),
            UploadedFile("users.json", json.dumps([{"Email": "a@example.com"}]).encode("utf-8")),
        ]

        schemas, errors = infer_schemas(files)

        assert errors == []
        assert len(schemas) == 1
        assert schemas[0].file_name == "Users.csv"
        assert schemas[0].column_names == ["Username"]

    def test_failed_file_does_not_claim_the_table_name(self):
        files = [
            UploadedFile("users.json", b"not json"),
            UploadedFile("users.csv", csv_bytes([["Username"], ["alice"]])),
        ]

        schemas, errors = infer_schemas(files)

        assert [error.file_name for error in errors] == ["users.json"]
        assert [schema.file_name for schema in schemas] == ["users.csv"]
