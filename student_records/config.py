"""
Runtime configuration for the student records app.

Everything is read from environment variables once, at startup:

    STUDENT_RECORDS_BACKEND      json (default) | firestore | memory
    STUDENT_RECORDS_DATA_DIR     where the json backend keeps students.json
    STUDENT_RECORDS_SETTLE_DELAY seconds to wait between delete and create
                                 phases of a full JSON restore (default 1.0)
    STUDENT_RECORDS_LOG_LEVEL    DEBUG / INFO / WARNING ... (default INFO)
    FIRESTORE_PROJECT_ID         required for the firestore backend
    FIRESTORE_API_KEY            optional web API key
    FIRESTORE_COLLECTION         collection name (default "students")
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = BASE_DIR / "data"

BACKENDS = ("json", "firestore", "memory")
DEFAULT_SETTLE_DELAY = 1.0
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    backend: str = "json"
    data_dir: Path = DEFAULT_DATA_DIR
    settle_delay: float = DEFAULT_SETTLE_DELAY
    log_level: str = "INFO"
    firestore_project_id: Optional[str] = None
    firestore_api_key: Optional[str] = None
    firestore_collection: str = "students"


def _default_data_dir(env: Mapping[str, str]) -> Path:
    appdata = env.get("APPDATA")
    if appdata:
        return Path(appdata) / "StudentRecords" / "data"
    return DEFAULT_DATA_DIR


def _as_delay(raw: Optional[str]) -> float:
    if raw is None or not str(raw).strip():
        return DEFAULT_SETTLE_DELAY
    try:
        return max(0.0, float(raw))
    except ValueError:
        raise ValueError(f"STUDENT_RECORDS_SETTLE_DELAY must be a number, got {raw!r}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env

    backend = (env.get("STUDENT_RECORDS_BACKEND") or "json").strip().lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown STUDENT_RECORDS_BACKEND {backend!r}, expected one of {BACKENDS}")

    data_dir_raw = env.get("STUDENT_RECORDS_DATA_DIR")
    data_dir = Path(data_dir_raw) if data_dir_raw else _default_data_dir(env)

    return Settings(
        backend=backend,
        data_dir=data_dir,
        settle_delay=_as_delay(env.get("STUDENT_RECORDS_SETTLE_DELAY")),
        log_level=(env.get("STUDENT_RECORDS_LOG_LEVEL") or "INFO").upper(),
        firestore_project_id=env.get("FIRESTORE_PROJECT_ID") or None,
        firestore_api_key=env.get("FIRESTORE_API_KEY") or None,
        firestore_collection=env.get("FIRESTORE_COLLECTION") or "students",
    )


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
    )
