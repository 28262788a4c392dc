# tests/test_export.py

import json
from io import BytesIO

from openpyxl import load_workbook

from student_records.export import backup_json_bytes, export_to_excel_bytes, template_csv_bytes
from student_records.ingest import read_tabular_rows


def test_template_is_header_only():
    assert template_csv_bytes().decode("utf-8") == "名前,学年,学校名,留意事項\n"


def test_template_reads_back_as_empty_import():
    assert read_tabular_rows("students_template.csv", template_csv_bytes()) == []


def test_backup_is_pretty_printed_array(sample_students):
    raw = backup_json_bytes(sample_students).decode("utf-8")

    assert raw.startswith("[\n  {")
    assert "山田太郎" in raw
    assert json.loads(raw) == sample_students


def test_excel_report_sheets(sample_students):
    wb = load_workbook(BytesIO(export_to_excel_bytes(sample_students)))

    assert wb.sheetnames == ["生徒一覧", "授業記録", "成績"]
    assert wb["生徒一覧"].max_row == 4
    assert wb["授業記録"].max_row == 2
    assert wb["成績"].max_row == 7
    assert wb["生徒一覧"]["A2"].value == "山田太郎"


def test_excel_report_empty_collection():
    wb = load_workbook(BytesIO(export_to_excel_bytes([])))
    assert wb["生徒一覧"].max_row == 1
