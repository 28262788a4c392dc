from __future__ import annotations

# School years: 6 primary, 3 lower-secondary, 3 upper-secondary, plus a catch-all
GRADE_LEVELS = [
    "小1", "小2", "小3", "小4", "小5", "小6",
    "中1", "中2", "中3",
    "高1", "高2", "高3",
    "その他",
]

SUBJECTS = ["国語", "数学", "英語", "社会", "理科"]
TOTAL_SUBJECT = "合計点"

SUBJECT_MAX_SCORE = 100
TOTAL_MAX_SCORE = SUBJECT_MAX_SCORE * len(SUBJECTS)

# Editable numeric fields of a grade entry. Only score/maxScore feed the Total.
SCORE_FIELDS = ("score", "maxScore", "average")
AGGREGATED_FIELDS = ("score", "maxScore")

# Display-only placeholders for grade entries missing their keys
UNSET_GRADE_LABEL = "未設定"
OTHER_TEST_LABEL = "その他"

# CSV columns: name, grade-level, school name, notes
CSV_NAME = "名前"
CSV_GRADE = "学年"
CSV_SCHOOL = "学校名"
CSV_NOTES = "留意事項"
CSV_COLUMNS = [CSV_NAME, CSV_GRADE, CSV_SCHOOL, CSV_NOTES]
CSV_HEADER_LINES = 1

TEMPLATE_FILE_NAME = "students_template.csv"
BACKUP_FILE_NAME = "students_backup.json"
REPORT_FILE_NAME = "students_report.xlsx"

IMPORT_APPEND = "append"
IMPORT_OVERWRITE = "overwrite"
IMPORT_MODES = (IMPORT_APPEND, IMPORT_OVERWRITE)

STRUCTURED_ALL = "all"
STRUCTURED_SINGLE = "single"

LESSON_FIELDS = ["date", "subject", "instructor", "content", "homework", "comment"]
