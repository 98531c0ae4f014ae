from __future__ import annotations

import sqlite3
from pathlib import Path

from sqlstratum.runner import Runner

from tripdesk.schema import SCHEMA_SQL


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def get_runner(db_path: str) -> Runner:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return Runner(_connect(str(path)))


def init_db(db_path: str) -> None:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(str(path))
    try:
        conn.executescript(SCHEMA_SQL)
        conn.commit()
    finally:
        conn.close()
