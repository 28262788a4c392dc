from __future__ import annotations
import json
import pandas as pd
from io import BytesIO
from typing import Any, Dict, List
from .constants import CSV_COLUMNS, LESSON_FIELDS

STUDENT_SHEET = "生徒一覧"
LESSON_SHEET = "授業記録"
GRADE_SHEET = "成績"


def backup_json_bytes(students: List[Dict[str, Any]]) -> bytes:
    # whole collection, store ids included; ids are dropped again on restore
    return json.dumps(students, ensure_ascii=False, indent=2).encode("utf-8")


def template_csv_bytes() -> bytes:
    return (",".join(CSV_COLUMNS) + "\n").encode("utf-8")


def _frames(students: List[Dict[str, Any]]):
    s_rows, l_rows, g_rows = [], [], []
    for s in students:
        name, grade = s.get("name", ""), s.get("grade", "")
        s_rows.append({
            "名前": name,
            "学年": grade,
            "学校名": s.get("school", ""),
            "留意事項": s.get("notes", ""),
            "授業記録数": len(s.get("lessons") or []),
            "成績件数": len(s.get("grades") or []),
        })
        for lesson in s.get("lessons") or []:
            row = {"名前": name, "学年": grade}
            row.update({k: lesson.get(k, "") for k in LESSON_FIELDS})
            l_rows.append(row)
        for g in s.get("grades") or []:
            g_rows.append({
                "名前": name,
                "学年(生徒)": grade,
                "学年(テスト)": g.get("grade", ""),
                "テスト": g.get("test", ""),
                "科目": g.get("subject", ""),
                "得点": g.get("score", 0),
                "満点": g.get("maxScore", 0),
                "平均点": g.get("average", 0),
            })

    students_df = pd.DataFrame(s_rows, columns=["名前", "学年", "学校名", "留意事項", "授業記録数", "成績件数"])
    lessons_df = pd.DataFrame(l_rows, columns=["名前", "学年"] + LESSON_FIELDS)
    grades_df = pd.DataFrame(
        g_rows, columns=["名前", "学年(生徒)", "学年(テスト)", "テスト", "科目", "得点", "満点", "平均点"]
    )
    return students_df, lessons_df, grades_df


def export_to_excel_bytes(students: List[Dict[str, Any]]) -> bytes:
    students_df, lessons_df, grades_df = _frames(students)
    bio = BytesIO()

    with pd.ExcelWriter(bio, engine="xlsxwriter") as writer:
        students_df.to_excel(writer, index=False, sheet_name=STUDENT_SHEET)
        lessons_df.to_excel(writer, index=False, sheet_name=LESSON_SHEET)
        grades_df.to_excel(writer, index=False, sheet_name=GRADE_SHEET)

        wb = writer.book
        fmt_header = wb.add_format({"bold": True, "bg_color": "#F2F2F2", "border": 1, "valign": "vcenter"})

        def format_df_sheet(sheet_name: str, df: pd.DataFrame, default_width: int = 14, max_width: int = 48):
            ws = writer.sheets.get(sheet_name)
            if ws is None:
                return
            ws.freeze_panes(1, 0)
            ws.autofilter(0, 0, max(1, len(df)), max(0, len(df.columns) - 1))
            for col, name in enumerate(df.columns):
                ws.write(0, col, name, fmt_header)
                w = max(10, min(max_width, int(len(str(name)) * 2) + 6))
                ws.set_column(col, col, max(default_width, w))

        format_df_sheet(STUDENT_SHEET, students_df, default_width=16)
        format_df_sheet(LESSON_SHEET, lessons_df, default_width=18, max_width=60)
        format_df_sheet(GRADE_SHEET, grades_df, default_width=12)

    return bio.getvalue()
