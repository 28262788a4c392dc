"""Record store gateways: where student documents live between page loads."""
from __future__ import annotations

import copy
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import requests

from .config import Settings
from .utils import load_json, save_json

LOGGER = logging.getLogger(__name__)

FIRESTORE_URL = "https://firestore.googleapis.com/v1"


class StoreError(RuntimeError):
    """A create/list/update/delete against the backing store failed."""


def _new_id() -> str:
    return uuid.uuid4().hex[:20]


class RecordStore:
    """
    Gateway contract used by the controller and the import commits.

    list() -> [{"id": ..., **fields}], create(fields) -> id,
    update(id, fields) replaces every field, delete(id).

    Stores that can swap the whole collection atomically set
    ``supports_batch`` and implement ``replace_all``.
    """

    strongly_consistent = True
    supports_batch = False

    def list(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def create(self, fields: Dict[str, Any]) -> str:
        raise NotImplementedError

    def update(self, record_id: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete(self, record_id: str) -> None:
        raise NotImplementedError

    def replace_all(self, records: Iterable[Dict[str, Any]]) -> List[str]:
        raise NotImplementedError


def _body(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: copy.deepcopy(v) for k, v in fields.items() if k != "id"}


class MemoryStore(RecordStore):
    """Process-local store, mainly for tests and demos."""

    supports_batch = True

    def __init__(self, records: Optional[Iterable[Dict[str, Any]]] = None) -> None:
        self._docs: Dict[str, Dict[str, Any]] = {}
        for r in records or []:
            self.create(r)

    def list(self) -> List[Dict[str, Any]]:
        return [{"id": rid, **copy.deepcopy(doc)} for rid, doc in self._docs.items()]

    def create(self, fields: Dict[str, Any]) -> str:
        rid = _new_id()
        self._docs[rid] = _body(fields)
        return rid

    def update(self, record_id: str, fields: Dict[str, Any]) -> None:
        if record_id not in self._docs:
            raise StoreError(f"No student with id {record_id!r}")
        self._docs[record_id] = _body(fields)

    def delete(self, record_id: str) -> None:
        if self._docs.pop(record_id, None) is None:
            raise StoreError(f"No student with id {record_id!r}")

    def replace_all(self, records: Iterable[Dict[str, Any]]) -> List[str]:
        docs = {_new_id(): _body(r) for r in records}
        self._docs = docs
        return list(docs)


class JsonFileStore(RecordStore):
    """
    All students in one JSON file, ``{id: document}``. Every write rewrites
    the file, so a replace_all is a single atomic file swap.
    """

    supports_batch = True

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _read(self) -> Dict[str, Dict[str, Any]]:
        try:
            data = load_json(self.path, {})
        except (OSError, json.JSONDecodeError) as e:
            LOGGER.error("Cannot read student file %s: %s", self.path, e)
            raise StoreError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"{self.path} does not contain a student mapping")
        return data

    def _write(self, docs: Dict[str, Dict[str, Any]]) -> None:
        try:
            save_json(self.path, docs)
        except OSError as e:
            LOGGER.error("Cannot write student file %s: %s", self.path, e)
            raise StoreError(f"Cannot write {self.path}: {e}") from e

    def list(self) -> List[Dict[str, Any]]:
        return [{"id": rid, **doc} for rid, doc in self._read().items()]

    def create(self, fields: Dict[str, Any]) -> str:
        docs = self._read()
        rid = _new_id()
        docs[rid] = _body(fields)
        self._write(docs)
        return rid

    def update(self, record_id: str, fields: Dict[str, Any]) -> None:
        docs = self._read()
        if record_id not in docs:
            raise StoreError(f"No student with id {record_id!r}")
        docs[record_id] = _body(fields)
        self._write(docs)

    def delete(self, record_id: str) -> None:
        docs = self._read()
        if docs.pop(record_id, None) is None:
            raise StoreError(f"No student with id {record_id!r}")
        self._write(docs)

    def replace_all(self, records: Iterable[Dict[str, Any]]) -> List[str]:
        docs = {_new_id(): _body(r) for r in records}
        self._write(docs)
        return list(docs)


# ------------------------------------------------------------------
# Firestore typed values
# ------------------------------------------------------------------
def encode_value(v: Any) -> Dict[str, Any]:
    if v is None:
        return {"nullValue": None}
    if isinstance(v, bool):
        return {"booleanValue": v}
    if isinstance(v, int):
        return {"integerValue": str(v)}
    if isinstance(v, float):
        return {"doubleValue": v}
    if isinstance(v, str):
        return {"stringValue": v}
    if isinstance(v, dict):
        return {"mapValue": {"fields": encode_fields(v)}}
    if isinstance(v, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(x) for x in v]}}
    raise TypeError(f"Cannot store value of type {type(v).__name__}")


def encode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {str(k): encode_value(v) for k, v in fields.items()}


def decode_value(v: Dict[str, Any]) -> Any:
    if "nullValue" in v:
        return None
    if "booleanValue" in v:
        return bool(v["booleanValue"])
    if "integerValue" in v:
        return int(v["integerValue"])
    if "doubleValue" in v:
        return float(v["doubleValue"])
    if "stringValue" in v:
        return v["stringValue"]
    if "timestampValue" in v:
        return v["timestampValue"]
    if "mapValue" in v:
        return decode_fields(v["mapValue"].get("fields", {}))
    if "arrayValue" in v:
        return [decode_value(x) for x in v["arrayValue"].get("values", [])]
    # references, geo points, bytes: passed through as-is
    return v


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: decode_value(v) for k, v in (fields or {}).items()}


class FirestoreStore(RecordStore):
    """Thin wrapper around the Cloud Firestore REST API v1."""

    strongly_consistent = False
    supports_batch = True

    # Firestore rejects commits with more than 500 writes
    MAX_BATCH_WRITES = 500

    def __init__(
        self,
        project_id: str,
        collection: str = "students",
        *,
        api_key: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.project_id = project_id
        self.collection = collection
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Content-Type": "application/json"})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @property
    def _database(self) -> str:
        return f"projects/{self.project_id}/databases/(default)"

    @property
    def _collection_path(self) -> str:
        return f"{self._database}/documents/{self.collection}"

    def _doc_name(self, record_id: str) -> str:
        return f"{self._collection_path}/{record_id}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{FIRESTORE_URL}/{path}"
        if self.api_key:
            params = dict(kwargs.pop("params", None) or {})
            params["key"] = self.api_key
            kwargs["params"] = params
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.HTTPError as e:
            LOGGER.error("Firestore request failed: %s %s -> %s", method, url, e.response.text)
            raise StoreError(f"Firestore {method} failed: {e}") from e
        except requests.RequestException as e:
            LOGGER.error("Firestore request failed: %s %s -> %s", method, url, e)
            raise StoreError(f"Firestore {method} failed: {e}") from e
        return response

    @staticmethod
    def _id_of(document: Dict[str, Any]) -> str:
        return document["name"].rsplit("/", 1)[-1]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def list(self, *, page_size: int = 300) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"pageSize": page_size}
            if page_token:
                params["pageToken"] = page_token
            payload = self._request("GET", self._collection_path, params=params).json()
            for document in payload.get("documents", []):
                out.append({"id": self._id_of(document), **decode_fields(document.get("fields", {}))})
            page_token = payload.get("nextPageToken")
            if not page_token:
                break
        return out

    def create(self, fields: Dict[str, Any]) -> str:
        response = self._request("POST", self._collection_path, json={"fields": encode_fields(_body(fields))})
        return self._id_of(response.json())

    def update(self, record_id: str, fields: Dict[str, Any]) -> None:
        # no updateMask: the stored document is replaced field-for-field
        self._request("PATCH", self._doc_name(record_id), json={"fields": encode_fields(_body(fields))})

    def delete(self, record_id: str) -> None:
        self._request("DELETE", self._doc_name(record_id))

    def replace_all(self, records: Iterable[Dict[str, Any]]) -> List[str]:
        records = list(records)
        existing = self.list()
        writes: List[Dict[str, Any]] = [{"delete": self._doc_name(r["id"])} for r in existing]
        new_ids = [_new_id() for _ in records]
        for rid, r in zip(new_ids, records):
            writes.append({
                "update": {"name": self._doc_name(rid), "fields": encode_fields(_body(r))},
                "currentDocument": {"exists": False},
            })

        if len(writes) > self.MAX_BATCH_WRITES:
            # deletes come first in `writes`, so chunking keeps delete-before-create
            LOGGER.warning(
                "Restore needs %s writes; committing in chunks of %s (not atomic)",
                len(writes), self.MAX_BATCH_WRITES,
            )
        for start in range(0, len(writes), self.MAX_BATCH_WRITES):
            chunk = writes[start:start + self.MAX_BATCH_WRITES]
            self._request("POST", f"{self._database}/documents:commit", json={"writes": chunk})
        return new_ids

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "FirestoreStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def build_store(settings: Settings) -> RecordStore:
    if settings.backend == "memory":
        return MemoryStore()
    if settings.backend == "firestore":
        if not settings.firestore_project_id:
            raise ValueError("FIRESTORE_PROJECT_ID is required for the firestore backend")
        return FirestoreStore(
            settings.firestore_project_id,
            settings.firestore_collection,
            api_key=settings.firestore_api_key,
        )
    return JsonFileStore(Path(settings.data_dir) / "students.json")
