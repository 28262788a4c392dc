from __future__ import annotations
import logging
import streamlit as st
import pandas as pd
from student_records import state as S
from student_records.config import load_settings, configure_logging
from student_records.constants import (
    BACKUP_FILE_NAME,
    GRADE_LEVELS,
    IMPORT_APPEND,
    IMPORT_OVERWRITE,
    LESSON_FIELDS,
    REPORT_FILE_NAME,
    STRUCTURED_ALL,
    TEMPLATE_FILE_NAME,
    TOTAL_SUBJECT,
)
from student_records.controller import StudentController
from student_records.grades import add_grade_set, delete_entry, group_for_display, group_summary_frame, update_entry_field
from student_records.models import add_lesson, remove_lesson, update_lesson
from student_records.store import StoreError, build_store

SETTINGS = load_settings()
configure_logging(SETTINGS)
LOGGER = logging.getLogger("student_records.app")

st.set_page_config(page_title="生徒管理", layout="wide")
st.title("生徒管理システム")

TAB_LABELS = {S.TAB_INFO: "基本情報", S.TAB_LESSONS: "授業記録", S.TAB_GRADES: "成績"}
LESSON_LABELS = {
    "date": "日付",
    "subject": "科目",
    "instructor": "講師",
    "content": "授業内容",
    "homework": "宿題",
    "comment": "コメント",
}
ALL_GRADES = "(すべて)"
# =========================

# Session
# =========================
@st.cache_resource
def _store():
    return build_store(SETTINGS)


def _init_session() -> None:
    if "ui" not in st.session_state:
        st.session_state["ui"] = S.UIState()
    if "controller" not in st.session_state:
        ctl = StudentController(_store(), settle_delay=SETTINGS.settle_delay)
        try:
            ctl.refresh()
        except StoreError as e:
            st.error(f"生徒一覧の取得に失敗しました: {e}")
        st.session_state["controller"] = ctl


def ui() -> S.UIState:
    return st.session_state["ui"]


def ctl() -> StudentController:
    return st.session_state["controller"]


def dispatch(type_: str, **data) -> None:
    st.session_state["ui"] = S.reduce(ui(), S.event(type_, **data))


def _run(label: str, fn) -> bool:
    # one failing action is reported and the page keeps going
    try:
        fn()
    except (StoreError, ValueError) as e:
        LOGGER.warning("%s failed: %s", label, e)
        st.error(f"{label}に失敗しました: {e}")
        return False
    return True


def _buffer_setter(field: str, widget_key: str):
    def _cb():
        dispatch(S.UPDATE_BUFFER, field=field, value=st.session_state[widget_key])
    return _cb
# =========================

# Imports
# =========================
def _on_tabular_file() -> None:
    up = st.session_state.get("tabular_file")
    if up is None:
        dispatch(S.IMPORT_OPEN, kind=S.TABULAR)
        return
    dispatch(S.IMPORT_FILE_SELECTED, kind=S.TABULAR, file_name=up.name)
    dispatch(S.IMPORT_PREVIEWED, kind=S.TABULAR, result=ctl().preview_tabular(up.name, up.getvalue()))


def _on_structured_file() -> None:
    up = st.session_state.get("structured_file")
    if up is None:
        dispatch(S.IMPORT_OPEN, kind=S.STRUCTURED)
        return
    dispatch(S.IMPORT_FILE_SELECTED, kind=S.STRUCTURED, file_name=up.name)
    dispatch(S.IMPORT_PREVIEWED, kind=S.STRUCTURED, result=ctl().preview_structured(up.getvalue()))


def _confirm_import(kind: str, commit) -> None:
    dispatch(S.IMPORT_CONFIRM, kind=kind)
    flow = ui().flow(kind)
    if flow.phase != S.CONFIRMED:
        return
    try:
        with st.spinner("取り込み中..."):
            commit(flow)
    except (StoreError, ValueError) as e:
        LOGGER.warning("Import (%s) failed: %s", kind, e)
        dispatch(S.IMPORT_FAILED, kind=kind, message=str(e))
        st.rerun()
    dispatch(S.IMPORT_COMMITTED, kind=kind)
    st.rerun()


def render_tabular_import() -> None:
    flow = ui().tabular
    with st.container(border=True):
        st.subheader("CSVインポート")
        st.file_uploader(
            "生徒一覧 (CSV/XLSX) を選択",
            type=["csv", "xlsx"],
            key="tabular_file",
            on_change=_on_tabular_file,
        )

        result = flow.result
        if flow.phase in (S.PREVIEWED, S.FAILED) and result is not None:
            if result.errors:
                st.error("取り込めない行があります（他の行は取り込めます）:\n\n" + "\n".join(f"- {e}" for e in result.errors))
            if result.warnings:
                st.warning("\n".join(f"- {w}" for w in result.warnings))
            if result.preview:
                st.write(f"取り込み対象: {len(result.preview)}件")
                st.dataframe(
                    pd.DataFrame(result.preview)[["name", "grade", "school", "notes"]].rename(
                        columns={"name": "名前", "grade": "学年", "school": "学校名", "notes": "留意事項"}
                    ),
                    width="stretch",
                    hide_index=True,
                )

        modes = [IMPORT_APPEND, IMPORT_OVERWRITE]
        st.radio(
            "取り込み方法",
            modes,
            index=modes.index(flow.mode) if flow.mode in modes else 0,
            format_func=lambda m: "追加" if m == IMPORT_APPEND else "上書き（既存データを全削除）",
            horizontal=True,
            key="tabular_mode",
            on_change=lambda: dispatch(S.IMPORT_SET_MODE, kind=S.TABULAR, mode=st.session_state["tabular_mode"]),
        )

        if flow.phase == S.FAILED:
            st.error(f"インポート中にエラーが発生しました: {flow.error}")

        c1, c2 = st.columns(2)
        with c1:
            if st.button("取り込む", type="primary", disabled=not flow.can_confirm, key="tabular_confirm"):
                _confirm_import(S.TABULAR, lambda f: ctl().commit_tabular(f.result, f.mode))
        with c2:
            if st.button("閉じる", key="tabular_close"):
                dispatch(S.IMPORT_CLOSE, kind=S.TABULAR)
                st.rerun()


def render_structured_import() -> None:
    flow = ui().structured
    with st.container(border=True):
        st.subheader("JSONインポート")
        st.file_uploader("バックアップ (JSON) を選択", type=["json"], key="structured_file", on_change=_on_structured_file)

        result = flow.result
        if flow.phase in (S.PREVIEWED, S.FAILED) and result is not None:
            for e in result.errors:
                st.error(e)
            if result.records:
                if result.mode == STRUCTURED_ALL:
                    st.warning(f"既存データをすべて削除し、{len(result.records)}件の生徒データで置き換えます。")
                else:
                    target = result.records[0]
                    st.info(f"「{target.get('name', '')}（{target.get('grade', '')}）」を上書き（なければ追加）します。")
                st.dataframe(
                    pd.DataFrame(
                        [
                            {
                                "名前": r.get("name", ""),
                                "学年": r.get("grade", ""),
                                "授業記録": len(r.get("lessons") or []),
                                "成績": len(r.get("grades") or []),
                            }
                            for r in result.records
                        ]
                    ),
                    width="stretch",
                    hide_index=True,
                )

        if flow.phase == S.FAILED:
            st.error(f"インポート中にエラーが発生しました: {flow.error}")

        c1, c2 = st.columns(2)
        with c1:
            if st.button("取り込む", type="primary", disabled=not flow.can_confirm, key="structured_confirm"):
                _confirm_import(S.STRUCTURED, lambda f: ctl().commit_structured(f.result))
        with c2:
            if st.button("閉じる", key="structured_close"):
                dispatch(S.IMPORT_CLOSE, kind=S.STRUCTURED)
                st.rerun()
# =========================

# List view
# =========================
def render_list() -> None:
    state = ui()

    f1, f2 = st.columns(2)
    with f1:
        options = [ALL_GRADES] + GRADE_LEVELS
        gsel = st.selectbox(
            "学年で絞り込み",
            options,
            index=options.index(state.grade_filter) if state.grade_filter in options else 0,
        )
    with f2:
        q = st.text_input("名前で検索", value=state.name_query)
    grade = "" if gsel == ALL_GRADES else gsel
    if grade != state.grade_filter or q != state.name_query:
        dispatch(S.SET_FILTER, grade=grade, query=q)

    b1, b2, b3, b4, b5, b6 = st.columns(6)
    with b1:
        if st.button("生徒を追加", type="primary"):
            dispatch(S.OPEN_ADD)
            st.rerun()
    with b2:
        st.download_button("CSVテンプレート", data=ctl().export_template(), file_name=TEMPLATE_FILE_NAME, mime="text/csv")
    with b3:
        if st.button("CSVインポート"):
            dispatch(S.IMPORT_OPEN, kind=S.TABULAR)
            st.rerun()
    with b4:
        st.download_button(
            "全データをバックアップ",
            data=ctl().export_backup(),
            file_name=BACKUP_FILE_NAME,
            mime="application/json",
        )
    with b5:
        if st.button("JSONインポート"):
            dispatch(S.IMPORT_OPEN, kind=S.STRUCTURED)
            st.rerun()
    with b6:
        st.download_button(
            "Excelレポート",
            data=ctl().export_report(),
            file_name=REPORT_FILE_NAME,
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )

    if state.tabular.phase == S.COMMITTED:
        st.success("CSVインポートが完了しました。")
    if state.structured.phase == S.COMMITTED:
        st.success("JSONインポートが完了しました。")
    if state.tabular.is_open:
        render_tabular_import()
    if state.structured.is_open:
        render_structured_import()

    students = ctl().filter_students(state.grade_filter, state.name_query)
    st.caption(f"{len(students)}名")
    for s in students:
        sid = s["id"]
        with st.container(border=True):
            c1, c2, c3 = st.columns([6, 1, 1])
            with c1:
                st.markdown(f"**{s.get('name', '')}**  \n{s.get('grade', '')}")
            with c2:
                if st.button("詳細", key=f"open_{sid}"):
                    dispatch(S.SELECT_STUDENT, student_id=sid)
                    st.rerun()
            with c3:
                if st.button("削除", key=f"del_{sid}"):
                    dispatch(S.REQUEST_DELETE, student_id=sid)
                    st.rerun()

            if state.pending_delete == sid:
                st.warning("本当に削除しますか？")
                d1, d2 = st.columns(2)
                with d1:
                    if st.button("削除する", key=f"del_yes_{sid}", type="primary"):
                        if _run("削除", lambda: ctl().delete_student(sid)):
                            dispatch(S.DELETED)
                            st.rerun()
                with d2:
                    if st.button("やめる", key=f"del_no_{sid}"):
                        dispatch(S.CANCEL_DELETE)
                        st.rerun()
# =========================

# Add view
# =========================
def render_add() -> None:
    st.subheader("新しい生徒")
    with st.form("add_student_form"):
        name = st.text_input("名前")
        grade = st.selectbox("学年", [""] + GRADE_LEVELS)
        school = st.text_input("学校名")
        notes = st.text_area("留意事項")
        c1, c2 = st.columns(2)
        with c1:
            submitted = st.form_submit_button("追加", type="primary")
        with c2:
            cancelled = st.form_submit_button("キャンセル")

    if cancelled:
        dispatch(S.BACK_TO_LIST)
        st.rerun()
    if submitted:
        data = {"name": name, "grade": grade, "school": school, "notes": notes, "lessons": [], "grades": []}
        if _run("生徒の追加", lambda: ctl().add_student(data)):
            dispatch(S.ADDED)
            st.rerun()
# =========================

# Detail view
# =========================
def render_info(student: dict, editing: bool, kp: str) -> None:
    if not editing:
        st.write(f"**名前**: {student.get('name', '')}")
        st.write(f"**学年**: {student.get('grade', '')}")
        st.write(f"**学校名**: {student.get('school', '')}")
        st.write(f"**留意事項**: {student.get('notes', '')}")
        return

    st.text_input("名前", value=student.get("name", ""), key=f"{kp}__name", on_change=_buffer_setter("name", f"{kp}__name"))
    options = [""] + GRADE_LEVELS
    current = student.get("grade", "")
    st.selectbox(
        "学年",
        options,
        index=options.index(current) if current in options else 0,
        key=f"{kp}__grade",
        on_change=_buffer_setter("grade", f"{kp}__grade"),
    )
    st.text_input("学校名", value=student.get("school", ""), key=f"{kp}__school", on_change=_buffer_setter("school", f"{kp}__school"))
    st.text_area("留意事項", value=student.get("notes", ""), key=f"{kp}__notes", on_change=_buffer_setter("notes", f"{kp}__notes"))


def render_lessons(student: dict, editing: bool, kp: str) -> None:
    lessons = student.get("lessons") or []
    if editing and st.button("授業記録を追加", key=f"{kp}__add_lesson"):
        dispatch(S.UPDATE_BUFFER, field="lessons", value=add_lesson(lessons))
        st.rerun()

    if not lessons:
        st.info("授業記録はまだありません。")
        return

    if not editing:
        df = pd.DataFrame(lessons, columns=LESSON_FIELDS).rename(columns=LESSON_LABELS)
        st.dataframe(df, width="stretch", hide_index=True)
        return

    # keys carry the list length so adding/removing a lesson gives fresh widgets
    n = len(lessons)
    for i, lesson in enumerate(lessons):
        with st.container(border=True):
            cols = st.columns(3)
            for col, fld in zip(cols, ["date", "subject", "instructor"]):
                wk = f"{kp}__l{n}_{i}_{fld}"
                with col:
                    st.text_input(
                        LESSON_LABELS[fld],
                        value=lesson.get(fld, ""),
                        key=wk,
                        on_change=lambda i=i, fld=fld, wk=wk: dispatch(
                            S.UPDATE_BUFFER,
                            field="lessons",
                            value=update_lesson(ui().edit_buffer.get("lessons") or [], i, fld, st.session_state[wk]),
                        ),
                    )
            for fld in ["content", "homework", "comment"]:
                wk = f"{kp}__l{n}_{i}_{fld}"
                st.text_area(
                    LESSON_LABELS[fld],
                    value=lesson.get(fld, ""),
                    key=wk,
                    on_change=lambda i=i, fld=fld, wk=wk: dispatch(
                        S.UPDATE_BUFFER,
                        field="lessons",
                        value=update_lesson(ui().edit_buffer.get("lessons") or [], i, fld, st.session_state[wk]),
                    ),
                )
            if st.button("削除", key=f"{kp}__l{n}_{i}_del"):
                dispatch(S.UPDATE_BUFFER, field="lessons", value=remove_lesson(lessons, i))
                st.rerun()


def _grade_setter(entry: dict, fld: str, wk: str):
    def _cb():
        grades = ui().edit_buffer.get("grades") or []
        new = update_entry_field(grades, entry.get("test"), entry.get("subject"), fld, st.session_state[wk], entry.get("grade"))
        dispatch(S.UPDATE_BUFFER, field="grades", value=new)
    return _cb


def render_grades(student: dict, editing: bool, kp: str) -> None:
    state = ui()
    grades = student.get("grades") or []

    if editing:
        if st.button("新しい成績を追加", key=f"{kp}__add_grade"):
            dispatch(S.OPEN_GRADE_MODAL)
            st.rerun()

        if state.grade_modal_open:
            with st.form(f"{kp}__grade_form"):
                g = st.selectbox("学年", [""] + GRADE_LEVELS)
                t = st.text_input("テスト名", placeholder="例: 1学期中間")
                c1, c2 = st.columns(2)
                with c1:
                    ok = st.form_submit_button("作成", type="primary")
                with c2:
                    cancel = st.form_submit_button("キャンセル")
            if cancel:
                dispatch(S.CLOSE_GRADE_MODAL)
                st.rerun()
            if ok:
                if not g or not t.strip():
                    st.warning("学年とテスト名を入力してください")
                else:
                    dispatch(S.UPDATE_BUFFER, field="grades", value=add_grade_set(grades, g, t))
                    dispatch(S.CLOSE_GRADE_MODAL)
                    st.rerun()

    groups = group_for_display(grades)
    if not groups:
        st.info("成績はまだありません。")
        return

    with st.expander("テスト別の合計", expanded=False):
        st.dataframe(group_summary_frame(groups), width="stretch", hide_index=True)

    n = len(grades)
    for gi, grp in enumerate(groups):
        total = grp.total
        label = f"{grp.grade_label} {grp.test_label}"
        if total is not None:
            label += f"  合計: {total.get('score', 0)}/{total.get('maxScore', 0)}"
        expanded = grp.key in state.expanded_groups
        if st.button(("▼ " if expanded else "▶ ") + label, key=f"{kp}__grp_{gi}"):
            dispatch(S.TOGGLE_GROUP, key=grp.key)
            st.rerun()
        if not expanded:
            continue

        for idx, entry in zip(grp.indices, grp.entries):
            with st.container(border=True):
                c0, c1, c2, c3, c4 = st.columns([2, 2, 2, 2, 1])
                with c0:
                    st.markdown(f"**{entry.get('subject', '')}**  \n{entry.get('grade', '')}")
                editable = editing and entry.get("subject") != TOTAL_SUBJECT
                for col, fld, lbl in zip((c1, c2, c3), ("score", "maxScore", "average"), ("得点", "満点", "平均点")):
                    with col:
                        if editable:
                            wk = f"{kp}__g{n}_{idx}_{fld}"
                            st.text_input(lbl, value=str(entry.get(fld, 0)), key=wk, on_change=_grade_setter(entry, fld, wk))
                        else:
                            st.metric(lbl, entry.get(fld, 0))
                with c4:
                    if editing and st.button("削除", key=f"{kp}__g{n}_{idx}_del"):
                        dispatch(S.UPDATE_BUFFER, field="grades", value=delete_entry(grades, idx))
                        st.rerun()


def render_detail() -> None:
    state = ui()
    stored = ctl().get(state.selected_id)
    if stored is None:
        st.warning("この生徒は見つかりません。")
        if st.button("一覧に戻る"):
            dispatch(S.BACK_TO_LIST)
            st.rerun()
        return

    editing = state.edit_mode
    student = state.edit_buffer if editing else stored
    kp = f"s_{stored['id']}"

    h1, h2, h3 = st.columns([1, 6, 2])
    with h1:
        if st.button("← 一覧"):
            dispatch(S.BACK_TO_LIST)
            st.rerun()
    with h2:
        st.subheader(f"{stored.get('name', '')}（{stored.get('grade', '')}）")
    with h3:
        if not editing:
            if st.button("編集"):
                dispatch(S.START_EDIT, student=stored)
                st.rerun()
        else:
            s1, s2 = st.columns(2)
            with s1:
                if st.button("保存", type="primary"):
                    if _run("保存", lambda: ctl().save_edit(state.edit_buffer)):
                        dispatch(S.SAVED)
                        st.rerun()
            with s2:
                if st.button("キャンセル"):
                    dispatch(S.CANCEL_EDIT)
                    st.rerun()

    tabs = list(TAB_LABELS)
    st.radio(
        "表示",
        tabs,
        index=tabs.index(state.active_tab),
        format_func=lambda t: TAB_LABELS[t],
        horizontal=True,
        label_visibility="collapsed",
        key=f"{kp}__tab",
        on_change=lambda: dispatch(S.SET_TAB, tab=st.session_state[f"{kp}__tab"]),
    )

    if state.active_tab == S.TAB_INFO:
        render_info(student, editing, kp)
    elif state.active_tab == S.TAB_LESSONS:
        render_lessons(student, editing, kp)
    else:
        render_grades(student, editing, kp)
# =========================

# Main
# =========================
_init_session()

view = ui().view
if view == S.VIEW_DETAIL:
    render_detail()
elif view == S.VIEW_ADD:
    render_add()
else:
    render_list()
