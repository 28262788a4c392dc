"""
Import reconciliation: turning uploaded files into student records.

Two flows share the same shape (file -> preview -> confirm -> commit):

- CSV/XLSX roster: each row is validated on its own (required fields,
  grade-level, duplicates against existing students and earlier rows of the
  same file). Valid rows become new students with empty lesson/grade lists;
  bad rows are reported by line number and skipped. Commit either appends
  or wipes the collection first ("overwrite").

- JSON backup: an array restores the whole collection ("all"), a single
  object upserts one student matched by (name, grade-level) ("single").

Validation never raises; it returns what it found. Only store calls in the
commit functions can fail, and those errors are passed up unchanged.
"""
from __future__ import annotations
import json
import logging
import time
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set
from rapidfuzz import fuzz
from .config import DEFAULT_SETTLE_DELAY
from .constants import (
    CSV_GRADE,
    CSV_HEADER_LINES,
    CSV_NAME,
    CSV_NOTES,
    CSV_SCHOOL,
    GRADE_LEVELS,
    IMPORT_MODES,
    IMPORT_OVERWRITE,
    STRUCTURED_ALL,
    STRUCTURED_SINGLE,
)
from .models import StudentKey, normalize_student, student_key
from .store import RecordStore
from .utils import clean_cell

LOGGER = logging.getLogger(__name__)

# rapidfuzz ratio at which two names in the same grade are flagged as "maybe the same person"
SIMILAR_NAME_RATIO = 90


@dataclass
class ImportPreview:
    preview: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def can_confirm(self) -> bool:
        return bool(self.preview)


@dataclass
class StructuredImport:
    records: List[Dict[str, Any]] = field(default_factory=list)
    mode: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def can_confirm(self) -> bool:
        return bool(self.records) and self.mode in (STRUCTURED_ALL, STRUCTURED_SINGLE)


def _name_fingerprint(name: str) -> str:
    # width/case/spacing variants of the same name collapse to one key
    s = unicodedata.normalize("NFKC", clean_cell(name)).lower()
    return "".join(s.split())


def _similar_names(name: str, grade: str, existing: List[Dict[str, Any]]) -> List[str]:
    fp = _name_fingerprint(name)
    hits = []
    for s in existing:
        other = str(s.get("name", "") or "")
        if s.get("grade") != grade or other == name:
            continue
        if fuzz.ratio(fp, _name_fingerprint(other)) >= SIMILAR_NAME_RATIO:
            hits.append(other)
    return hits


# =========================
# Tabular (CSV / XLSX)
# =========================
def validate_and_preview_tabular(
    rows: List[Dict[str, Any]],
    existing_students: List[Dict[str, Any]],
) -> ImportPreview:
    result = ImportPreview()
    existing: Set[StudentKey] = {student_key(s) for s in existing_students}
    seen_in_file: Set[StudentKey] = set()

    for i, row in enumerate(rows):
        line = i + 1 + CSV_HEADER_LINES
        name = clean_cell(row.get(CSV_NAME))
        grade = clean_cell(row.get(CSV_GRADE))

        if not name or not grade:
            result.errors.append(f"{line}行目: 名前・学年は必須です")
            continue

        if grade not in GRADE_LEVELS:
            result.errors.append(f"{line}行目: 学年「{grade}」は不正です")
            continue

        key = (name, grade)
        if key in existing:
            result.errors.append(f"{line}行目: 「{name}（{grade}）」は既に存在します")
            continue
        if key in seen_in_file:
            result.errors.append(f"{line}行目: 「{name}（{grade}）」はファイル内で重複しています")
            continue
        seen_in_file.add(key)

        for other in _similar_names(name, grade, existing_students):
            result.warnings.append(f"{line}行目: 「{name}」は既存の「{other}（{grade}）」と同一人物の可能性があります")

        result.preview.append({
            "name": name,
            "grade": grade,
            "school": clean_cell(row.get(CSV_SCHOOL)),
            "notes": clean_cell(row.get(CSV_NOTES)),
            "lessons": [],
            "grades": [],
        })

    LOGGER.info(
        "Tabular import preview: %s valid row(s), %s error(s), %s warning(s)",
        len(result.preview), len(result.errors), len(result.warnings),
    )
    return result


def _replace_collection(
    records: List[Dict[str, Any]],
    existing_students: List[Dict[str, Any]],
    store: RecordStore,
    *,
    settle_delay: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    if store.supports_batch:
        LOGGER.info("Replacing %s student(s) with %s in one batch", len(existing_students), len(records))
        store.replace_all(records)
        return

    # every delete finishes before the first create
    LOGGER.info("Deleting %s existing student(s)", len(existing_students))
    for s in existing_students:
        store.delete(s["id"])

    if settle_delay > 0 and not store.strongly_consistent:
        LOGGER.debug("Waiting %.1fs for deletes to settle", settle_delay)
        sleep(settle_delay)

    LOGGER.info("Creating %s student(s)", len(records))
    for r in records:
        store.create(r)


def commit_tabular_import(
    preview: List[Dict[str, Any]],
    mode: str,
    existing_students: List[Dict[str, Any]],
    store: RecordStore,
) -> None:
    """
    append: create every preview row.
    overwrite: delete every existing student first, then create.
    A store failure half way stops the commit and propagates; what was
    already written stays written.
    """
    if mode not in IMPORT_MODES:
        raise ValueError(f"Unknown import mode {mode!r}, expected one of {IMPORT_MODES}")

    if mode == IMPORT_OVERWRITE:
        _replace_collection(preview, existing_students, store)
        return

    LOGGER.info("Appending %s student(s)", len(preview))
    for row in preview:
        store.create(row)


# =========================
# Structured (JSON)
# =========================
def parse_structured_import(raw_text: Any) -> StructuredImport:
    result = StructuredImport()
    try:
        if isinstance(raw_text, (bytes, bytearray)):
            raw_text = bytes(raw_text).decode("utf-8-sig")
        data = json.loads(raw_text)
    except (UnicodeDecodeError, ValueError, TypeError, RecursionError) as e:
        LOGGER.warning("JSON import could not be parsed: %s", e)
        result.errors.append(f"JSONの読み込みに失敗しました: {e}")
        return result

    if isinstance(data, list):
        result.mode = STRUCTURED_ALL
        for i, item in enumerate(data, start=1):
            if not isinstance(item, dict):
                result.errors.append(f"{i}件目: 生徒データの形式ではありません")
                continue
            result.records.append(normalize_student(item))
    elif isinstance(data, dict):
        result.mode = STRUCTURED_SINGLE
        result.records.append(normalize_student(data))
    else:
        result.errors.append("JSONの読み込みに失敗しました: 配列またはオブジェクトではありません")

    return result


def commit_structured_import(
    records: List[Dict[str, Any]],
    mode: str,
    existing_students: List[Dict[str, Any]],
    store: RecordStore,
    *,
    settle_delay: float = DEFAULT_SETTLE_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    all: the collection becomes exactly `records`.
    single: records[0] overwrites the student with the same (name, grade),
    or is added when there is none.
    """
    if mode == STRUCTURED_ALL:
        _replace_collection(records, existing_students, store, settle_delay=settle_delay, sleep=sleep)
        return

    if mode != STRUCTURED_SINGLE:
        raise ValueError(f"Unknown JSON import mode {mode!r}")
    if not records:
        raise ValueError("Single-student import needs one record")

    target = records[0]
    key = student_key(target)
    match = next((s for s in existing_students if student_key(s) == key), None)
    if match is not None:
        LOGGER.info("Overwriting student %s (%s)", match["id"], key)
        store.update(match["id"], target)
    else:
        LOGGER.info("Adding student %s", key)
        store.create(target)
