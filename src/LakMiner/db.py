"""SQLite-backed settings store for LakMiner."""

import os
import sqlite3
from contextlib import contextmanager
from typing import Dict


def db_path() -> str:
    return os.environ.get("LAKMINER_DB", os.path.join(os.getcwd(), "data", "state.db"))


@contextmanager
def get_conn():
    path = db_path()
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    conn = sqlite3.connect(path)
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
                section TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT,
                PRIMARY KEY(section, key)
            )
            """
        )
        yield conn
        conn.commit()
    finally:
        conn.close()


def get_section(section: str) -> Dict[str, str]:
    with get_conn() as conn:
        cur = conn.execute(
            "SELECT key, value FROM settings WHERE section = ?",
            (section,),
        )
        return {key: value for key, value in cur.fetchall() if value not in (None, "")}


def set_values(section: str, values: Dict[str, object]) -> None:
    with get_conn() as conn:
        conn.executemany(
            """
            INSERT INTO settings(section, key, value)
            VALUES(?, ?, ?)
            ON CONFLICT(section, key)
            DO UPDATE SET value = excluded.value
            """,
            [(section, key, str(value)) for key, value in values.items()],
        )
