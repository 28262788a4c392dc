"""Application state controller: the loaded student list and every store write."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from .config import DEFAULT_SETTLE_DELAY
from .export import backup_json_bytes, export_to_excel_bytes, template_csv_bytes
from .ingest import read_tabular_rows
from .models import normalize_student, without_id
from .reconcile import (
    ImportPreview,
    StructuredImport,
    commit_structured_import,
    commit_tabular_import,
    parse_structured_import,
    validate_and_preview_tabular,
)
from .store import RecordStore, StoreError

LOGGER = logging.getLogger(__name__)


class StudentController:
    """
    Owns the in-memory student list.

    Every mutation goes to the store first and is followed by a full
    reload, so ``students`` always mirrors the last successful write. When
    a store call fails the error is logged and re-raised and ``students``
    keeps whatever was loaded before.
    """

    def __init__(self, store: RecordStore, *, settle_delay: float = DEFAULT_SETTLE_DELAY) -> None:
        self.store = store
        self.settle_delay = settle_delay
        self.students: List[Dict[str, Any]] = []

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _mutate(self, fn: Callable[[], Any], action: str, *args: Any) -> Any:
        # action is a logging format string, args its lazy arguments
        try:
            result = fn()
        except StoreError:
            LOGGER.exception(action + " failed", *args)
            raise
        self.refresh()
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def refresh(self) -> List[Dict[str, Any]]:
        try:
            students = self.store.list()
        except StoreError:
            LOGGER.exception("Loading students failed")
            raise
        self.students = students
        LOGGER.debug("Loaded %s student(s)", len(students))
        return students

    def get(self, student_id: Optional[str]) -> Optional[Dict[str, Any]]:
        for s in self.students:
            if s.get("id") == student_id:
                return s
        return None

    def filter_students(self, grade: str = "", query: str = "") -> List[Dict[str, Any]]:
        # exact grade-level match, plain substring on the name
        out = self.students
        if grade:
            out = [s for s in out if s.get("grade") == grade]
        if query:
            out = [s for s in out if query in str(s.get("name", ""))]
        return out

    # ------------------------------------------------------------------
    # Single-student writes
    # ------------------------------------------------------------------
    def add_student(self, data: Dict[str, Any]) -> str:
        student = normalize_student(data)
        if not student.get("name"):
            raise ValueError("名前を入力してください")
        return self._mutate(lambda: self.store.create(student), "Adding student")

    def save_edit(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Overwrites the whole stored record with the edit buffer; returns the reloaded record."""
        student_id = data.get("id")
        if not student_id:
            return None
        body = normalize_student(without_id(data))
        self._mutate(lambda: self.store.update(student_id, body), "Saving student %s", student_id)
        return self.get(student_id)

    def delete_student(self, student_id: str) -> None:
        self._mutate(lambda: self.store.delete(student_id), "Deleting student %s", student_id)

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------
    def preview_tabular(self, file_name: str, data: bytes) -> ImportPreview:
        try:
            rows = read_tabular_rows(file_name, data)
        except ValueError as e:
            return ImportPreview(errors=[str(e)])
        return validate_and_preview_tabular(rows, self.students)

    def commit_tabular(self, preview: ImportPreview, mode: str) -> None:
        existing = list(self.students)
        self._mutate(
            lambda: commit_tabular_import(preview.preview, mode, existing, self.store),
            "Tabular import (%s)",
            mode,
        )

    def preview_structured(self, raw: Any) -> StructuredImport:
        return parse_structured_import(raw)

    def commit_structured(self, parsed: StructuredImport) -> None:
        existing = list(self.students)
        self._mutate(
            lambda: commit_structured_import(
                parsed.records, parsed.mode, existing, self.store, settle_delay=self.settle_delay
            ),
            "JSON import (%s)",
            parsed.mode,
        )

    # ------------------------------------------------------------------
    # Exports
    # ------------------------------------------------------------------
    def export_backup(self) -> bytes:
        return backup_json_bytes(self.students)

    def export_template(self) -> bytes:
        return template_csv_bytes()

    def export_report(self) -> bytes:
        return export_to_excel_bytes(self.students)
