"""
This package contains:
- the gradebook engine (grade sets, Total upkeep, display grouping)
- CSV/XLSX and JSON import reconciliation
- record store gateways (JSON file, Firestore, in-memory)
- exports (JSON backup, CSV template, Excel report)
- the page state machine and the controller behind the Streamlit app
"""
from .grades import create_grade_set, update_entry_field, group_for_display, delete_entry
from .reconcile import (
    validate_and_preview_tabular,
    commit_tabular_import,
    parse_structured_import,
    commit_structured_import,
)
from .store import build_store, StoreError
from .controller import StudentController

__all__ = [
    "create_grade_set",
    "update_entry_field",
    "group_for_display",
    "delete_entry",
    "validate_and_preview_tabular",
    "commit_tabular_import",
    "parse_structured_import",
    "commit_structured_import",
    "build_store",
    "StoreError",
    "StudentController",
]
