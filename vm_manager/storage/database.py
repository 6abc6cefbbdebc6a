"""Database connection and initialization."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from ..config import get_settings


def _db_path() -> Path:
    return get_settings().db_path


@contextmanager
def get_connection() -> Generator[sqlite3.Connection, None, None]:
    path = _db_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_db() -> None:
    with get_connection() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                role TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS instance_owners (
                instance_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                password TEXT,
                assigned_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_instance_owners_user
                ON instance_owners(user_id);
        """)
        conn.commit()
