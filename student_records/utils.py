import re
import json
import datetime
from pathlib import Path
from typing import Any, Optional
from dateutil import parser as dtparser

_NBSP_RE = re.compile(r"[\u00A0\u2007\u202F\u3000]")  # NBSP variants + ideographic space
_INT_RE = re.compile(r"^[+-]?\d+")


def load_json(path: Path, default: Any):
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return default


def save_json(path: Path, obj: Any):
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)
    tmp.replace(path)


def clean_cell(s: Any) -> str:
    """
    Cell cleanup for CSV/Excel values, case preserved:
    - None / float NaN -> ""
    - BOM and no-break spaces
    - surrounding quotes
    - surrounding whitespace
    """
    if s is None:
        return ""
    if isinstance(s, float) and s != s:
        return ""

    s = str(s)
    s = s.replace("\ufeff", "")
    s = _NBSP_RE.sub(" ", s)
    s = s.strip()
    if len(s) >= 2 and s[0] == s[-1] and s[0] in ('"', "'"):
        s = s[1:-1].strip()
    return s


def norm_text(s: Any) -> str:
    # comparison key: cleaned, lowercased, whitespace collapsed
    s = clean_cell(s).lower()
    return re.sub(r"\s+", " ", s).strip()


def as_int(x: Any, default: int = 0) -> int:
    """
    Lenient integer parse for score fields: leading integer part of the text,
    anything unparsable -> default. "85点" -> 85, "abc" -> 0, 12.7 -> 12.
    """
    if x is None or isinstance(x, bool):
        return default
    if isinstance(x, int):
        return x
    if isinstance(x, float):
        if x != x:
            return default
        return int(x)
    m = _INT_RE.match(clean_cell(x))
    if not m:
        return default
    return int(m.group(0))


def as_score(x: Any) -> int:
    # score fields are non-negative
    return max(0, as_int(x, 0))


def today_iso() -> str:
    return datetime.date.today().isoformat()


def try_parse_date(s: Any) -> Optional[str]:
    # lesson dates come in as ISO strings, date objects or loose text like 2024/4/1
    if s is None:
        return None

    if hasattr(s, "year") and hasattr(s, "month") and hasattr(s, "day"):
        return f"{int(s.year):04d}-{int(s.month):02d}-{int(s.day):02d}"

    txt = clean_cell(s)
    if not txt:
        return None

    if re.match(r"^\d{4}[./-]\d{1,2}[./-]\d{1,2}$", txt):
        try:
            dt = dtparser.parse(re.sub(r"[./]", "-", txt), dayfirst=False)
            return dt.strftime("%Y-%m-%d")
        except (ValueError, OverflowError):
            return None

    try:
        dt = dtparser.parse(txt, fuzzy=True)
    except (ValueError, OverflowError):
        return None
    return dt.strftime("%Y-%m-%d")
