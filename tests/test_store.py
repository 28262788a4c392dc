# tests/test_store.py

import pytest
import requests

from student_records.config import Settings
from student_records.store import (
    FirestoreStore,
    JsonFileStore,
    MemoryStore,
    StoreError,
    build_store,
    decode_fields,
    encode_fields,
)

PROJECT_DOCS = "https://firestore.googleapis.com/v1/projects/demo/databases/(default)/documents"


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self._payload = payload or {}
        self.status_code = status_code
        self.text = str(payload)

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeSession:
    def __init__(self, responses):
        self.headers = {}
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, kwargs))
        return self.responses.pop(0)

    def close(self):
        pass


# === memory / json file ===


def test_memory_store_crud():
    store = MemoryStore()
    rid = store.create({"name": "A", "grade": "中1"})

    assert store.list() == [{"id": rid, "name": "A", "grade": "中1"}]

    store.update(rid, {"id": "ignored", "name": "A", "grade": "中2"})
    assert store.list()[0]["grade"] == "中2"
    assert "ignored" not in [s["id"] for s in store.list()]

    store.delete(rid)
    assert store.list() == []


def test_memory_store_returns_copies():
    store = MemoryStore([{"name": "A", "lessons": []}])
    listed = store.list()
    listed[0]["lessons"].append({"date": "2024-01-01"})

    assert store.list()[0]["lessons"] == []


def test_memory_store_missing_id():
    store = MemoryStore()
    with pytest.raises(StoreError):
        store.delete("nope")
    with pytest.raises(StoreError):
        store.update("nope", {})


def test_json_file_store_persists(tmp_path):
    path = tmp_path / "data" / "students.json"
    store = JsonFileStore(path)
    rid = store.create({"name": "山田太郎", "grade": "中1"})

    reopened = JsonFileStore(path)
    assert reopened.list() == [{"id": rid, "name": "山田太郎", "grade": "中1"}]
    assert "山田太郎" in path.read_text(encoding="utf-8")


def test_json_file_store_missing_file_is_empty(tmp_path):
    assert JsonFileStore(tmp_path / "students.json").list() == []


def test_json_file_store_replace_all(tmp_path):
    store = JsonFileStore(tmp_path / "students.json")
    store.create({"name": "A"})

    ids = store.replace_all([{"name": "B"}, {"id": "old", "name": "C"}])

    assert sorted(s["name"] for s in store.list()) == ["B", "C"]
    assert sorted(s["id"] for s in store.list()) == sorted(ids)


def test_json_file_store_corrupt_file(tmp_path):
    path = tmp_path / "students.json"
    path.write_text("{broken", encoding="utf-8")

    with pytest.raises(StoreError):
        JsonFileStore(path).list()


def test_build_store(tmp_path):
    assert isinstance(build_store(Settings(backend="memory")), MemoryStore)
    assert isinstance(build_store(Settings(backend="json", data_dir=tmp_path)), JsonFileStore)
    assert isinstance(build_store(Settings(backend="firestore", firestore_project_id="demo")), FirestoreStore)
    with pytest.raises(ValueError):
        build_store(Settings(backend="firestore"))


# === firestore ===


def test_firestore_value_encoding_round_trip():
    fields = {
        "name": "山田太郎",
        "grade": "中1",
        "notes": None,
        "active": True,
        "ratio": 0.5,
        "grades": [{"subject": "数学", "score": 80, "maxScore": 100}],
        "lessons": [],
    }

    encoded = encode_fields(fields)

    assert encoded["grades"]["arrayValue"]["values"][0]["mapValue"]["fields"]["score"] == {"integerValue": "80"}
    assert encoded["active"] == {"booleanValue": True}
    assert decode_fields(encoded) == fields


def test_firestore_list_paginates():
    session = FakeSession([
        FakeResponse({
            "documents": [{"name": f"{PROJECT_DOCS}/students/a1", "fields": encode_fields({"name": "A"})}],
            "nextPageToken": "p2",
        }),
        FakeResponse({
            "documents": [{"name": f"{PROJECT_DOCS}/students/b2", "fields": encode_fields({"name": "B"})}],
        }),
    ])
    store = FirestoreStore("demo", api_key="k", session=session)

    students = store.list()

    assert students == [{"id": "a1", "name": "A"}, {"id": "b2", "name": "B"}]
    assert session.requests[1][2]["params"]["pageToken"] == "p2"
    assert session.requests[0][2]["params"]["key"] == "k"


def test_firestore_create_update_delete():
    session = FakeSession([
        FakeResponse({"name": "projects/demo/databases/(default)/documents/students/new1"}),
        FakeResponse({}),
        FakeResponse({}),
    ])
    store = FirestoreStore("demo", session=session)

    rid = store.create({"id": "x", "name": "A"})
    store.update(rid, {"name": "B"})
    store.delete(rid)

    assert rid == "new1"
    methods = [r[0] for r in session.requests]
    assert methods == ["POST", "PATCH", "DELETE"]
    assert session.requests[0][2]["json"] == {"fields": {"name": {"stringValue": "A"}}}
    assert session.requests[1][1].endswith("/students/new1")


def test_firestore_http_error_becomes_store_error():
    session = FakeSession([FakeResponse({"error": "denied"}, status_code=403)])
    store = FirestoreStore("demo", session=session)

    with pytest.raises(StoreError):
        store.delete("a1")


def test_firestore_replace_all_is_one_commit():
    session = FakeSession([
        FakeResponse({"documents": [{"name": f"{PROJECT_DOCS}/students/a1", "fields": {}}]}),
        FakeResponse({}),
    ])
    store = FirestoreStore("demo", session=session)

    ids = store.replace_all([{"name": "B"}])

    method, url, kwargs = session.requests[1]
    writes = kwargs["json"]["writes"]
    assert method == "POST"
    assert url.endswith("documents:commit")
    assert writes[0] == {"delete": "projects/demo/databases/(default)/documents/students/a1"}
    assert writes[1]["update"]["name"].endswith(f"/students/{ids[0]}")
