"""User storage operations."""
from __future__ import annotations

import sqlite3
from datetime import datetime

from ..models import User, UserRole
from .database import get_connection


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        role=UserRole(row["role"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def save_user(user: User, password_hash: str) -> None:
    """Insert a user. Raises ValueError if the email is taken."""
    with get_connection() as conn:
        try:
            conn.execute(
                "INSERT INTO users (id, email, password_hash, role, created_at) VALUES (?, ?, ?, ?, ?)",
                (user.id, user.email, password_hash, user.role.value, user.created_at.isoformat()),
            )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Email already registered: {user.email}") from e
        conn.commit()


def count_users() -> int:
    with get_connection() as conn:
        return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]


def get_user(user_id: str) -> User | None:
    with get_connection() as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_user(row) if row else None


def get_user_credentials(email: str) -> tuple[User, str] | None:
    """Return the user and stored password hash for a login attempt."""
    with get_connection() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE email = ?", (email.strip().lower(),)
        ).fetchone()
        if not row:
            return None
        return _row_to_user(row), row["password_hash"]
