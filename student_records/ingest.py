from __future__ import annotations
import csv
import logging
from io import BytesIO, StringIO
from zipfile import BadZipFile
from typing import List, Dict, Any
import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from .utils import clean_cell

LOGGER = logging.getLogger(__name__)

# Excel "CSV (comma delimited)" on Japanese Windows writes cp932
ENCODINGS = ["utf-8-sig", "utf-8", "cp932"]
DELIMITERS = [",", ";", "\t", "|"]
# =========================

# CSV: tolerant read from bytes
# =========================
def _guess_delimiter(sample_text: str) -> str:
    try:
        dialect = csv.Sniffer().sniff(sample_text, delimiters="".join(DELIMITERS))
        if dialect.delimiter:
            return dialect.delimiter
    except csv.Error:
        pass

    # fallback: count per line in the first rows
    lines = [ln for ln in sample_text.splitlines() if ln.strip()][:20]
    if not lines:
        return ","

    scores = {}
    for d in DELIMITERS:
        cnts = [ln.count(d) for ln in lines]
        scores[d] = sum(cnts) / max(1, len(cnts))

    best = max(scores.items(), key=lambda x: x[1])[0]
    return best if scores.get(best, 0) > 0 else ","


def _read_csv_bytes(data: bytes) -> pd.DataFrame:
    # every cell as text; "NA"/"None" are names here, not missing values
    last_err: Exception | None = None

    for enc in ENCODINGS:
        # strict decode so a wrong encoding is rejected before pandas sees it
        try:
            text = data.decode(enc)
        except UnicodeDecodeError as e:
            last_err = e
            continue

        delim = _guess_delimiter(text[:65536])
        try:
            return pd.read_csv(
                StringIO(text),
                header=0,
                sep=delim,
                engine="python",
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
            )
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except pd.errors.ParserError as e:
            LOGGER.debug("CSV read with %s/%r failed: %s", enc, delim, e)
            last_err = e
            continue

    raise ValueError(f"CSVファイルを読み込めませんでした: {last_err}")
# =========================

# Excel: first sheet, first row is the header
# =========================
def _read_xlsx_bytes(data: bytes) -> pd.DataFrame:
    try:
        wb = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except (BadZipFile, InvalidFileException, KeyError) as e:
        raise ValueError(f"Excelファイルを読み込めませんでした: {e}") from e
    try:
        ws = wb.worksheets[0]
        rows = [list(r) for r in ws.iter_rows(values_only=True)]
    finally:
        wb.close()

    if not rows:
        return pd.DataFrame()
    header = [clean_cell(c) for c in rows[0]]
    body = [[clean_cell(c) for c in r] for r in rows[1:]]
    return pd.DataFrame(body, columns=header)
# =========================

# Main: upload -> header-keyed rows
# =========================
def read_tabular_rows(name: str, data: bytes) -> List[Dict[str, Any]]:
    """
    Turns an uploaded student list into a list of rows:
      [{"名前": ..., "学年": ..., "学校名": ..., "留意事項": ...}, ...]

    - `.xlsx` is read from the first sheet, anything else as delimited text
    - header labels and cells are cleaned (BOM, no-break spaces, quotes)
    - rows with no non-empty cell are dropped
    """
    if name.lower().endswith(".xlsx"):
        df = _read_xlsx_bytes(data)
    else:
        df = _read_csv_bytes(data)

    if df.empty:
        return []

    df.columns = [clean_cell(c) for c in df.columns]
    df = df.apply(lambda col: col.map(clean_cell))
    df = df[(df != "").any(axis=1)]

    LOGGER.info("Read %s data row(s) from %s", len(df), name)
    return df.to_dict(orient="records")
