from __future__ import annotations
from typing import Any, Dict, List, Tuple
from .constants import LESSON_FIELDS
from .utils import as_score, clean_cell, today_iso, try_parse_date

StudentKey = Tuple[str, str]


def _text(e: Dict[str, Any], key: str) -> str:
    v = e.get(key, "")
    return "" if v is None else str(v).strip()


def normalize_grade_entry(e: Dict[str, Any]) -> Dict[str, Any]:
    # Brings one grade row to the stored shape; unknown fields are kept
    if not isinstance(e, dict):
        return {}

    out = dict(e)
    out.update({
        "subject": _text(e, "subject"),
        "test": _text(e, "test"),
        "grade": _text(e, "grade"),
        "score": as_score(e.get("score", 0)),
        "maxScore": as_score(e.get("maxScore", 0)),
        "average": as_score(e.get("average", 0)),
    })
    return out


def normalize_lesson(e: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(e, dict):
        return {}

    out = dict(e)
    for k in LESSON_FIELDS:
        out[k] = _text(e, k)
    # unparsable dates are kept as typed rather than dropped
    if out["date"]:
        out["date"] = try_parse_date(out["date"]) or out["date"]
    return out


def normalize_student(s: Dict[str, Any]) -> Dict[str, Any]:
    """
    Canonical student document (without the store id):
      name, grade, school, notes, lessons[], grades[]
    Lists that are missing or not lists become empty; rows that are not
    mappings are dropped.
    """
    if not isinstance(s, dict):
        return {}

    out = {k: v for k, v in s.items() if k != "id"}

    lessons = s.get("lessons") or []
    grades = s.get("grades") or []
    if not isinstance(lessons, list):
        lessons = []
    if not isinstance(grades, list):
        grades = []

    out.update({
        "name": clean_cell(s.get("name", "")),
        "grade": clean_cell(s.get("grade", "")),
        "school": clean_cell(s.get("school", "")),
        "notes": "" if s.get("notes") is None else str(s.get("notes")),
        "lessons": [normalize_lesson(x) for x in lessons if isinstance(x, dict)],
        "grades": [normalize_grade_entry(x) for x in grades if isinstance(x, dict)],
    })
    return out


def new_student() -> Dict[str, Any]:
    return {"name": "", "grade": "", "school": "", "notes": "", "lessons": [], "grades": []}


def new_lesson() -> Dict[str, Any]:
    lesson = {k: "" for k in LESSON_FIELDS}
    lesson["date"] = today_iso()
    return lesson


def add_lesson(lessons: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # newest first
    return [new_lesson()] + list(lessons or [])


def update_lesson(lessons: List[Dict[str, Any]], index: int, field: str, value: Any) -> List[Dict[str, Any]]:
    out = list(lessons or [])
    if field not in LESSON_FIELDS or not 0 <= index < len(out):
        return out
    out[index] = {**out[index], field: "" if value is None else str(value)}
    return out


def remove_lesson(lessons: List[Dict[str, Any]], index: int) -> List[Dict[str, Any]]:
    return [x for i, x in enumerate(lessons or []) if i != index]


def student_key(s: Dict[str, Any]) -> StudentKey:
    return (str(s.get("name", "") or ""), str(s.get("grade", "") or ""))


def without_id(s: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in s.items() if k != "id"}
