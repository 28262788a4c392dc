# tests/test_models.py

from student_records.models import (
    add_lesson,
    new_student,
    normalize_grade_entry,
    normalize_student,
    remove_lesson,
    update_lesson,
)
from student_records.utils import as_int, today_iso, try_parse_date


def test_normalize_student_fills_defaults_and_drops_id():
    s = normalize_student({"id": "x1", "name": " A ", "grade": "中1"})

    assert s == {"name": "A", "grade": "中1", "school": "", "notes": "", "lessons": [], "grades": []}


def test_normalize_student_keeps_extra_fields():
    s = normalize_student({"name": "A", "grade": "中1", "phone": "090"})
    assert s["phone"] == "090"


def test_normalize_student_bad_lists():
    s = normalize_student({"name": "A", "grade": "中1", "lessons": "none", "grades": [1, {"subject": "国語"}]})

    assert s["lessons"] == []
    assert len(s["grades"]) == 1


def test_normalize_grade_entry_coerces_numbers():
    e = normalize_grade_entry({"subject": "数学", "test": "期末", "grade": "中1", "score": "88", "maxScore": None})

    assert e["score"] == 88
    assert e["maxScore"] == 0
    assert e["average"] == 0


def test_normalize_lesson_dates():
    s = normalize_student({"name": "A", "lessons": [{"date": "2024/4/1"}, {"date": "先週"}]})

    assert s["lessons"][0]["date"] == "2024-04-01"
    assert s["lessons"][1]["date"] == "先週"
    assert s["lessons"][0]["homework"] == ""


def test_add_lesson_newest_first():
    lessons = add_lesson([{"date": "2024-01-01"}])

    assert len(lessons) == 2
    assert lessons[0]["date"] == today_iso()
    assert lessons[0]["subject"] == ""


def test_update_and_remove_lesson():
    lessons = add_lesson(add_lesson([]))
    updated = update_lesson(lessons, 1, "subject", "英語")

    assert updated[1]["subject"] == "英語"
    assert lessons[1]["subject"] == ""
    assert update_lesson(lessons, 5, "subject", "英語") == lessons
    assert update_lesson(lessons, 0, "unknown", "x") == lessons
    assert len(remove_lesson(updated, 0)) == 1


def test_new_student_is_blank():
    assert new_student()["lessons"] == []
    assert new_student() is not new_student()


def test_as_int():
    assert as_int("42") == 42
    assert as_int(" 7 ") == 7
    assert as_int("85点") == 85
    assert as_int("12.9") == 12
    assert as_int("abc") == 0
    assert as_int("") == 0
    assert as_int(None) == 0
    assert as_int(3.7) == 3
    assert as_int(float("nan")) == 0


def test_try_parse_date():
    assert try_parse_date("2024-05-10") == "2024-05-10"
    assert try_parse_date("2024.5.1") == "2024-05-01"
    assert try_parse_date("") is None
    assert try_parse_date("zzz") is None
