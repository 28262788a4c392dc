# tests/conftest.py

import pytest

from student_records.grades import create_grade_set
from student_records.store import MemoryStore, RecordStore, StoreError


class RecordingStore(RecordStore):
    """In-memory store that logs every call in order, with no batch support."""

    strongly_consistent = False

    def __init__(self, records=None, fail_on=None):
        self.docs = {}
        self.calls = []
        self.fail_on = fail_on
        self._next = 0
        for r in records or []:
            rid = self._new_id()
            self.docs[rid] = dict(r)

    def _new_id(self):
        self._next += 1
        return f"r{self._next:03d}"

    def _check(self, op):
        if self.fail_on == op:
            raise StoreError(f"{op} failed")

    def list(self):
        self.calls.append(("list",))
        return [{"id": rid, **doc} for rid, doc in self.docs.items()]

    def create(self, fields):
        self._check("create")
        rid = self._new_id()
        self.docs[rid] = {k: v for k, v in fields.items() if k != "id"}
        self.calls.append(("create", fields.get("name")))
        return rid

    def update(self, record_id, fields):
        self._check("update")
        self.docs[record_id] = {k: v for k, v in fields.items() if k != "id"}
        self.calls.append(("update", record_id))

    def delete(self, record_id):
        self._check("delete")
        del self.docs[record_id]
        self.calls.append(("delete", record_id))


def make_student(name, grade, **extra):
    s = {"name": name, "grade": grade, "school": "", "notes": "", "lessons": [], "grades": []}
    s.update(extra)
    return s


@pytest.fixture
def sample_students():
    return [
        make_student(
            "山田太郎",
            "中1",
            school="第一中学校",
            notes="数学が得意",
            lessons=[
                {
                    "date": "2024-05-10",
                    "subject": "数学",
                    "instructor": "佐藤",
                    "content": "一次方程式",
                    "homework": "p.20-21",
                    "comment": "よく理解している",
                }
            ],
            grades=create_grade_set("中1", "1学期中間"),
        ),
        make_student("鈴木花子", "中2", school="第二中学校"),
        make_student("田中一郎", "小6"),
    ]


@pytest.fixture
def recording_store(sample_students):
    return RecordingStore(sample_students)


@pytest.fixture
def memory_store(sample_students):
    return MemoryStore(sample_students)


@pytest.fixture
def sample_grades():
    return create_grade_set("中2", "期末") + create_grade_set("中2", "中間")
