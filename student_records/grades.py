"""
Gradebook logic for one student's flat list of grade entries.

A "grade set" is the block of rows created for one test: one row per
subject plus a synthetic Total row (合計点). While a student is being
edited, the Total row of every (test, grade-level) pair is kept equal to
the sum of its subject rows; the UI never edits Total directly.

All functions here are pure: they take the current list and return a new
one, so callers can keep the previous list as their undo/compare state.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import pandas as pd
from .constants import (
    AGGREGATED_FIELDS,
    OTHER_TEST_LABEL,
    SCORE_FIELDS,
    SUBJECT_MAX_SCORE,
    SUBJECTS,
    TOTAL_MAX_SCORE,
    TOTAL_SUBJECT,
    UNSET_GRADE_LABEL,
)
from .utils import as_score

GradeEntry = Dict[str, Any]


def _k(v: Any) -> str:
    return "" if v is None else str(v)


def _same_test(e: GradeEntry, test_name: Any, grade_level: Any) -> bool:
    return _k(e.get("test")) == _k(test_name) and _k(e.get("grade")) == _k(grade_level)


def is_total(e: GradeEntry) -> bool:
    return e.get("subject") == TOTAL_SUBJECT


# =========================
# Grade sets
# =========================
def create_grade_set(grade_level: str, test_name: str) -> List[GradeEntry]:
    # blank inputs produce nothing; the form is expected to validate first
    grade_level = (grade_level or "").strip()
    test_name = (test_name or "").strip()
    if not grade_level or not test_name:
        return []

    out = [
        {
            "subject": subject,
            "test": test_name,
            "grade": grade_level,
            "score": 0,
            "maxScore": SUBJECT_MAX_SCORE,
            "average": 0,
        }
        for subject in SUBJECTS
    ]
    out.append({
        "subject": TOTAL_SUBJECT,
        "test": test_name,
        "grade": grade_level,
        "score": 0,
        "maxScore": TOTAL_MAX_SCORE,
        "average": 0,
    })
    return out


def add_grade_set(entries: List[GradeEntry], grade_level: str, test_name: str) -> List[GradeEntry]:
    # newest test first
    return create_grade_set(grade_level, test_name) + list(entries or [])


# =========================
# Editing
# =========================
def recompute_total(entries: List[GradeEntry], test_name: str, grade_level: str) -> List[GradeEntry]:
    out = list(entries or [])
    members = [e for e in out if _same_test(e, test_name, grade_level) and not is_total(e)]
    total_score = sum(as_score(e.get("score")) for e in members)
    total_max = sum(as_score(e.get("maxScore")) for e in members)

    for i, e in enumerate(out):
        if is_total(e) and _same_test(e, test_name, grade_level):
            out[i] = {**e, "score": total_score, "maxScore": total_max}
            break
    return out


def find_entry(entries: List[GradeEntry], test_name: str, subject: str, grade_level: str) -> int:
    for i, e in enumerate(entries or []):
        if e.get("subject") == subject and _same_test(e, test_name, grade_level):
            return i
    return -1


def update_entry_field(
    entries: List[GradeEntry],
    test_name: str,
    subject: str,
    field: str,
    raw_value: Any,
    grade_level: str,
) -> List[GradeEntry]:
    """
    Sets score / maxScore / average of one entry from free-form input.

    Unparsable input becomes 0. Unknown fields, unknown entries and edits to
    the Total row's score/maxScore leave the list as it was. Editing a
    subject's score or maxScore refreshes the Total of its test.
    """
    out = list(entries or [])
    if field not in SCORE_FIELDS:
        return out
    if subject == TOTAL_SUBJECT and field in AGGREGATED_FIELDS:
        return out

    idx = find_entry(out, test_name, subject, grade_level)
    if idx == -1:
        return out

    out[idx] = {**out[idx], field: as_score(raw_value)}

    if subject != TOTAL_SUBJECT and field in AGGREGATED_FIELDS:
        out = recompute_total(out, test_name, grade_level)
    return out


def delete_entry(entries: List[GradeEntry], index: int) -> List[GradeEntry]:
    """
    Removes one entry. When the last subject row of a test goes, its Total
    goes with it; otherwise the Total is recomputed from what is left.
    """
    out = list(entries or [])
    if not 0 <= index < len(out):
        return out

    removed = out.pop(index)
    if is_total(removed):
        return out

    test_name, grade_level = removed.get("test"), removed.get("grade")
    siblings = [e for e in out if _same_test(e, test_name, grade_level) and not is_total(e)]
    if not siblings:
        return [e for e in out if not (is_total(e) and _same_test(e, test_name, grade_level))]
    return recompute_total(out, test_name, grade_level)


# =========================
# Display grouping
# =========================
@dataclass(frozen=True)
class GradeGroup:
    grade_label: str
    test_label: str
    entries: Tuple[GradeEntry, ...] = field(default_factory=tuple)
    # positions of the entries in the flat list (for edit/delete)
    indices: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.grade_label, self.test_label)

    @property
    def total(self) -> Optional[GradeEntry]:
        for e in self.entries:
            if is_total(e):
                return e
        return None

    @property
    def subjects(self) -> List[GradeEntry]:
        return [e for e in self.entries if not is_total(e)]


def group_key(e: GradeEntry) -> Tuple[str, str]:
    return (_k(e.get("grade")) or UNSET_GRADE_LABEL, _k(e.get("test")) or OTHER_TEST_LABEL)


def group_for_display(entries: List[GradeEntry]) -> List[GradeGroup]:
    # dict keeps insertion order -> groups come out in first-seen order
    buckets: Dict[Tuple[str, str], List[Tuple[int, GradeEntry]]] = {}
    for i, e in enumerate(entries or []):
        buckets.setdefault(group_key(e), []).append((i, e))

    return [
        GradeGroup(
            grade_label=g,
            test_label=t,
            entries=tuple(e for _, e in members),
            indices=tuple(i for i, _ in members),
        )
        for (g, t), members in buckets.items()
    ]


def group_summary_frame(groups: List[GradeGroup]) -> pd.DataFrame:
    # one row per test; groups without a Total are summed on the fly
    rows = []
    for g in groups:
        total = g.total
        if total is not None:
            score, max_score = as_score(total.get("score")), as_score(total.get("maxScore"))
        else:
            score = sum(as_score(e.get("score")) for e in g.subjects)
            max_score = sum(as_score(e.get("maxScore")) for e in g.subjects)
        rows.append({
            "学年": g.grade_label,
            "テスト": g.test_label,
            "合計": score,
            "満点": max_score,
            "得点率(%)": round(100.0 * score / max_score, 1) if max_score else None,
        })
    return pd.DataFrame(rows, columns=["学年", "テスト", "合計", "満点", "得点率(%)"])
