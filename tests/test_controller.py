# tests/test_controller.py

import pytest

from conftest import RecordingStore, make_student
from student_records.controller import StudentController
from student_records.grades import update_entry_field
from student_records.reconcile import parse_structured_import
from student_records.store import StoreError


@pytest.fixture
def controller(memory_store):
    ctl = StudentController(memory_store, settle_delay=0)
    ctl.refresh()
    return ctl


def test_refresh_loads_everything(controller):
    assert len(controller.students) == 3


def test_filter_by_grade_and_name(controller):
    assert [s["name"] for s in controller.filter_students("中1")] == ["山田太郎"]
    assert [s["name"] for s in controller.filter_students(query="花")] == ["鈴木花子"]
    assert controller.filter_students("中1", "花") == []
    assert len(controller.filter_students()) == 3


def test_add_student_requires_name(controller):
    with pytest.raises(ValueError):
        controller.add_student({"name": "  ", "grade": "中1"})
    assert len(controller.students) == 3


def test_add_student_reloads(controller):
    rid = controller.add_student({"name": "新入生", "grade": "小1"})

    assert controller.get(rid)["name"] == "新入生"
    assert controller.get(rid)["lessons"] == []


def test_save_edit_overwrites_record(controller):
    student = dict(controller.filter_students("中1")[0])
    student["grades"] = update_entry_field(student["grades"], "1学期中間", "数学", "score", "90", "中1")
    student["notes"] = "更新"

    saved = controller.save_edit(student)

    assert saved["notes"] == "更新"
    math = next(g for g in saved["grades"] if g["subject"] == "数学")
    assert math["score"] == 90
    assert saved["grades"][-1]["score"] == 90
    assert saved["id"] == student["id"]


def test_save_edit_without_id_is_noop(controller):
    assert controller.save_edit({"name": "A"}) is None


def test_delete_student(controller):
    sid = controller.students[0]["id"]
    controller.delete_student(sid)

    assert controller.get(sid) is None
    assert len(controller.students) == 2


def test_failed_write_keeps_last_list(sample_students):
    store = RecordingStore(sample_students, fail_on="delete")
    ctl = StudentController(store, settle_delay=0)
    ctl.refresh()
    before = list(ctl.students)

    with pytest.raises(StoreError):
        ctl.delete_student(before[0]["id"])

    assert ctl.students == before


def test_failed_write_is_logged_with_its_target(sample_students, caplog):
    store = RecordingStore(sample_students, fail_on="delete")
    ctl = StudentController(store, settle_delay=0)
    ctl.refresh()

    with caplog.at_level("ERROR", logger="student_records.controller"):
        with pytest.raises(StoreError):
            ctl.delete_student("r001")

    record = caplog.records[-1]
    assert record.getMessage() == "Deleting student r001 failed"
    assert record.args == ("r001",)


def test_tabular_import_flow(controller):
    data = "名前,学年,学校名,留意事項\n新入生,中1,,\n山田太郎,中1,,\n".encode("utf-8")

    preview = controller.preview_tabular("students.csv", data)
    assert len(preview.preview) == 1
    assert len(preview.errors) == 1

    controller.commit_tabular(preview, "append")
    assert len(controller.students) == 4


def test_unreadable_tabular_file_is_an_error(controller):
    preview = controller.preview_tabular("students.xlsx", b"garbage")
    assert preview.preview == []
    assert len(preview.errors) == 1


def test_backup_restore_round_trip(controller):
    backup = controller.export_backup()
    controller.add_student({"name": "一時", "grade": "その他"})

    parsed = controller.preview_structured(backup)
    controller.commit_structured(parsed)

    names = sorted(s["name"] for s in controller.students)
    assert names == ["山田太郎", "田中一郎", "鈴木花子"]
    yamada = controller.filter_students(query="山田")[0]
    assert len(yamada["grades"]) == 6
    assert yamada["lessons"][0]["subject"] == "数学"


def test_single_json_import_updates(controller):
    parsed = parse_structured_import('{"name": "鈴木花子", "grade": "中2", "notes": "JSONから"}')
    controller.commit_structured(parsed)

    assert len(controller.students) == 3
    assert controller.filter_students(query="鈴木")[0]["notes"] == "JSONから"


def test_exports(controller):
    assert controller.export_template().startswith("名前".encode("utf-8"))
    assert controller.export_report()[:2] == b"PK"


def test_works_with_recording_store(sample_students):
    store = RecordingStore(sample_students)
    ctl = StudentController(store, settle_delay=0)
    ctl.refresh()
    store.calls.clear()

    ctl.add_student(make_student("B", "中1"))

    assert store.calls == [("create", "B"), ("list",)]
