"""
Page state for the Streamlit UI as an explicit state machine.

`UIState` is immutable; `reduce(state, event)` returns the next state and
never touches the store. The page keeps the current state in
``st.session_state`` and feeds it events from widget callbacks.

Import flows (CSV and JSON) move through

    idle -> file_selected -> previewed -> confirmed -> committed | failed

Picking a file always drops the previous preview. Confirm is ignored
unless the preview holds at least one valid record; a failed commit can be
confirmed again from its kept preview.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .constants import IMPORT_APPEND, IMPORT_MODES
from .models import new_student

VIEW_LIST = "list"
VIEW_DETAIL = "detail"
VIEW_ADD = "add"

TAB_INFO = "info"
TAB_LESSONS = "lessons"
TAB_GRADES = "grades"
TABS = (TAB_INFO, TAB_LESSONS, TAB_GRADES)

IDLE = "idle"
FILE_SELECTED = "file_selected"
PREVIEWED = "previewed"
CONFIRMED = "confirmed"
COMMITTED = "committed"
FAILED = "failed"

TABULAR = "tabular"
STRUCTURED = "structured"

# event types
SELECT_STUDENT = "select_student"
BACK_TO_LIST = "back_to_list"
OPEN_ADD = "open_add"
SET_TAB = "set_tab"
START_EDIT = "start_edit"
UPDATE_BUFFER = "update_buffer"
CANCEL_EDIT = "cancel_edit"
SAVED = "saved"
ADDED = "added"
OPEN_GRADE_MODAL = "open_grade_modal"
CLOSE_GRADE_MODAL = "close_grade_modal"
TOGGLE_GROUP = "toggle_group"
SET_FILTER = "set_filter"
REQUEST_DELETE = "request_delete"
CANCEL_DELETE = "cancel_delete"
DELETED = "deleted"
IMPORT_OPEN = "import_open"
IMPORT_CLOSE = "import_close"
IMPORT_FILE_SELECTED = "import_file_selected"
IMPORT_PREVIEWED = "import_previewed"
IMPORT_SET_MODE = "import_set_mode"
IMPORT_CONFIRM = "import_confirm"
IMPORT_COMMITTED = "import_committed"
IMPORT_FAILED = "import_failed"


@dataclass(frozen=True)
class Event:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)


def event(type_: str, **data: Any) -> Event:
    return Event(type_, data)


@dataclass(frozen=True)
class ImportFlow:
    phase: str = IDLE
    is_open: bool = False
    file_name: Optional[str] = None
    # ImportPreview for CSV, StructuredImport for JSON
    result: Any = None
    mode: str = IMPORT_APPEND
    error: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.result is not None and bool(getattr(self.result, "can_confirm", False))

    @property
    def can_confirm(self) -> bool:
        # a failed commit keeps its preview and can be confirmed again
        return self.phase in (PREVIEWED, FAILED) and self.valid


@dataclass(frozen=True)
class UIState:
    view: str = VIEW_LIST
    selected_id: Optional[str] = None
    active_tab: str = TAB_INFO
    edit_mode: bool = False
    edit_buffer: Dict[str, Any] = field(default_factory=new_student)
    grade_modal_open: bool = False
    expanded_groups: FrozenSet[Tuple[str, str]] = frozenset()
    grade_filter: str = ""
    name_query: str = ""
    pending_delete: Optional[str] = None
    tabular: ImportFlow = field(default_factory=ImportFlow)
    structured: ImportFlow = field(default_factory=ImportFlow)

    def flow(self, kind: str) -> ImportFlow:
        return self.tabular if kind == TABULAR else self.structured


def _with_flow(state: UIState, kind: str, flow: ImportFlow) -> UIState:
    if kind == TABULAR:
        return replace(state, tabular=flow)
    return replace(state, structured=flow)


def _reduce_import(state: UIState, ev: Event) -> UIState:
    kind = ev.data.get("kind", TABULAR)
    flow = state.flow(kind)

    if ev.type == IMPORT_OPEN:
        return _with_flow(state, kind, ImportFlow(is_open=True, mode=flow.mode))

    if ev.type == IMPORT_CLOSE:
        return _with_flow(state, kind, ImportFlow(mode=flow.mode))

    if ev.type == IMPORT_FILE_SELECTED:
        return _with_flow(state, kind, ImportFlow(
            phase=FILE_SELECTED,
            is_open=True,
            file_name=ev.data.get("file_name"),
            mode=flow.mode,
        ))

    if ev.type == IMPORT_PREVIEWED:
        if flow.phase != FILE_SELECTED:
            return state
        result = ev.data.get("result")
        mode = flow.mode
        # JSON imports take their mode from the document shape
        if kind == STRUCTURED and getattr(result, "mode", None):
            mode = result.mode
        return _with_flow(state, kind, replace(flow, phase=PREVIEWED, result=result, mode=mode))

    if ev.type == IMPORT_SET_MODE:
        mode = ev.data.get("mode")
        if kind == TABULAR and mode not in IMPORT_MODES:
            return state
        if flow.phase in (CONFIRMED,):
            return state
        return _with_flow(state, kind, replace(flow, mode=mode))

    if ev.type == IMPORT_CONFIRM:
        if not flow.can_confirm:
            return state
        return _with_flow(state, kind, replace(flow, phase=CONFIRMED, error=None))

    if ev.type == IMPORT_COMMITTED:
        if flow.phase != CONFIRMED:
            return state
        # a finished import closes its dialog and forgets the preview
        return _with_flow(state, kind, ImportFlow(phase=COMMITTED, mode=flow.mode))

    if ev.type == IMPORT_FAILED:
        if flow.phase != CONFIRMED:
            return state
        return _with_flow(state, kind, replace(flow, phase=FAILED, error=ev.data.get("message")))

    return state


def reduce(state: UIState, ev: Event) -> UIState:
    t = ev.type

    if t == SELECT_STUDENT:
        return replace(
            state,
            view=VIEW_DETAIL,
            selected_id=ev.data.get("student_id"),
            active_tab=TAB_INFO,
            edit_mode=False,
            edit_buffer=new_student(),
            grade_modal_open=False,
        )

    if t == BACK_TO_LIST:
        return replace(
            state,
            view=VIEW_LIST,
            selected_id=None,
            edit_mode=False,
            edit_buffer=new_student(),
            grade_modal_open=False,
        )

    if t == OPEN_ADD:
        return replace(state, view=VIEW_ADD, selected_id=None, edit_mode=True, edit_buffer=new_student())

    if t == SET_TAB:
        tab = ev.data.get("tab")
        return replace(state, active_tab=tab) if tab in TABS else state

    if t == START_EDIT:
        student = ev.data.get("student") or {}
        return replace(state, edit_mode=True, edit_buffer=copy.deepcopy(dict(student)))

    if t == UPDATE_BUFFER:
        if not state.edit_mode:
            return state
        buf = dict(state.edit_buffer)
        buf[ev.data["field"]] = ev.data.get("value")
        return replace(state, edit_buffer=buf)

    if t in (CANCEL_EDIT, SAVED):
        return replace(state, edit_mode=False, edit_buffer=new_student(), grade_modal_open=False)

    if t == ADDED:
        return replace(state, view=VIEW_LIST, edit_mode=False, edit_buffer=new_student())

    if t == OPEN_GRADE_MODAL:
        return replace(state, grade_modal_open=state.edit_mode)

    if t == CLOSE_GRADE_MODAL:
        return replace(state, grade_modal_open=False)

    if t == TOGGLE_GROUP:
        key = ev.data.get("key")
        groups = set(state.expanded_groups)
        if key in groups:
            groups.discard(key)
        else:
            groups.add(key)
        return replace(state, expanded_groups=frozenset(groups))

    if t == REQUEST_DELETE:
        return replace(state, pending_delete=ev.data.get("student_id"))

    if t == CANCEL_DELETE:
        return replace(state, pending_delete=None)

    if t == DELETED:
        # the deleted student may be the one open in the detail view
        if state.selected_id is not None and state.selected_id == state.pending_delete:
            return replace(
                state,
                view=VIEW_LIST,
                selected_id=None,
                edit_mode=False,
                edit_buffer=new_student(),
                pending_delete=None,
            )
        return replace(state, pending_delete=None)

    if t == SET_FILTER:
        return replace(
            state,
            grade_filter=ev.data.get("grade", state.grade_filter) or "",
            name_query=ev.data.get("query", state.name_query) or "",
        )

    if t.startswith("import_"):
        return _reduce_import(state, ev)

    return state
