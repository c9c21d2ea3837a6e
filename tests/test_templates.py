"""
Tests for import template generation.
"""

import io
import json
from datetime import date

import pytest
import yaml
from lxml import etree
from openpyxl import load_workbook

from app.domain.imports.errors import UnknownTableTypeError
from app.domain.imports.parsing import parse_file
from app.domain.imports.templates import TemplateGenerator
from tests.utils.factories import seed_application, seed_user


@pytest.fixture
def generator(registry):
    return TemplateGenerator(registry)


class TestFileNames:
    @pytest.mark.parametrize("file_format, extension", [
        ("xlsx", "xlsx"),
        ("csv", "csv"),
        ("JSON", "json"),
        ("yml", "yaml"),
        ("xml", "xml"),
    ])
    def test_name_and_extension(self, generator, file_format, extension):
        template = generator.generate("users", file_format, today=date(2025, 10, 20))

        assert template.file_name == f"Users_Template_20251020.{extension}"

    def test_unsupported_format(self, generator):
        with pytest.raises(ValueError):
            generator.generate("Users", "pdf")

    def test_unknown_table_type(self, generator):
        with pytest.raises(UnknownTableTypeError):
            generator.generate("Invoices")


class TestExcelTemplate:
    def test_required_headers_are_marked_in_red(self, generator):
        template = generator.generate("Users", "xlsx")

        workbook = load_workbook(io.BytesIO(template.content))
        sheet = workbook["Users"]

        assert sheet["A1"].value == "Username *"
        assert sheet["A1"].font.bold
        assert sheet["A1"].font.color.rgb.endswith("C00000")
        assert sheet["E1"].value == "PhoneNumber"
        assert sheet["A1"].comment is not None
        assert "Instructions" in workbook.sheetnames

    def test_boolean_and_enum_columns_get_dropdowns(self, generator):
        template = generator.generate("Users", "xlsx")

        sheet = load_workbook(io.BytesIO(template.content))["Users"]
        formulas = {validation.formula1 for validation in sheet.data_validations.dataValidation}

        assert '"true,false"' in formulas
        assert '"Admin,User,PlatformAdmin"' in formulas

    def test_template_reimports_as_valid_rows(self, generator, bind, registry):
        template = generator.generate("Users", "xlsx")

        dataset = parse_file(template.file_name, template.content, registry.descriptor("Users"))
        mapper, _ = bind("Users")

        assert len(dataset) == 2
        assert dataset.row(1)["Username"] == "john.doe"
        assert all(result.is_valid for result in mapper.validate_batch(dataset).values())

    def test_assignment_template_reimports_once_references_exist(self, generator, bind, registry, session_factory):
        for username in ("john.doe", "jane.smith"):
            seed_user(session_factory, username)
        for name in ("Employee Portal", "Inventory Management"):
            seed_application(session_factory, name)
        template = generator.generate("UserApplications", "xlsx")

        dataset = parse_file(template.file_name, template.content, registry.descriptor("UserApplications"))
        mapper, _ = bind("UserApplications")

        assert all(mapper.validate_row(row).is_valid for row in dataset)

    def test_without_examples(self, generator, registry):
        template = generator.generate("UserRoles", "xlsx", include_examples=False)

        sheet = load_workbook(io.BytesIO(template.content))["UserRoles"]

        assert sheet.max_row == 1
        assert [cell.value for cell in sheet[1]] == ["Role *", "CreatedBy *"]


class TestTextTemplates:
    def test_csv_uses_plain_headers(self, generator, bind):
        template = generator.generate("Applications", "csv")

        lines = template.content.decode("utf-8").splitlines()
        mapper, _ = bind("Applications")

        assert template.content_type == "text/csv"
        assert lines[0].split(",") == [column.name for column in mapper.template_columns()]
        assert lines[1].startswith("Employee Portal,")
        assert all(mapper.validate_row(row).is_valid for row in parse_file(template.file_name, template.content))

    def test_json_records(self, generator):
        records = json.loads(generator.generate("UserRoles", "json").content)

        assert records[0] == {"Role": "Data Analyst", "CreatedBy": "system.admin"}
        assert len(records) == 4

    def test_yaml_without_examples_has_one_blank_record(self, generator):
        records = yaml.safe_load(generator.generate("Users", "yaml", include_examples=False).content)

        assert len(records) == 1
        assert records[0]["Role"] == "User"
        assert records[0]["Username"] == ""

    def test_xml_structure(self, generator):
        root = etree.fromstring(generator.generate("Users", "xml").content)

        assert root.tag == "Users"
        assert [child.tag for child in root] == ["Record", "Record"]
        assert root[0].findtext("IsActive") == "true"
