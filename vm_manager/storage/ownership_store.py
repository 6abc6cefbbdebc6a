"""Instance ownership: which user may manage which provider instance."""
from __future__ import annotations

from datetime import datetime, timezone

from ..models import Ownership
from .database import get_connection


def assign_instance(instance_id: str, user_id: str, password: str | None = None) -> None:
    """Record `user_id` as owner of `instance_id`, replacing any earlier owner."""
    with get_connection() as conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO instance_owners (instance_id, user_id, password, assigned_at)
            VALUES (?, ?, ?, ?)
            """,
            (instance_id, user_id, password, datetime.now(timezone.utc).isoformat()),
        )
        conn.commit()


def get_ownership(instance_id: str) -> Ownership | None:
    with get_connection() as conn:
        row = conn.execute(
            "SELECT * FROM instance_owners WHERE instance_id = ?", (instance_id,)
        ).fetchone()
        if not row:
            return None
        return Ownership(
            instance_id=row["instance_id"],
            user_id=row["user_id"],
            password=row["password"],
            assigned_at=datetime.fromisoformat(row["assigned_at"]),
        )


def get_instance_owner(instance_id: str) -> str | None:
    ownership = get_ownership(instance_id)
    return ownership.user_id if ownership else None


def get_instance_password(instance_id: str) -> str | None:
    ownership = get_ownership(instance_id)
    return ownership.password if ownership else None


def list_user_instance_ids(user_id: str) -> list[str]:
    with get_connection() as conn:
        rows = conn.execute(
            "SELECT instance_id FROM instance_owners WHERE user_id = ? ORDER BY assigned_at",
            (user_id,),
        ).fetchall()
        return [row["instance_id"] for row in rows]


def remove_instance(instance_id: str) -> bool:
    with get_connection() as conn:
        cursor = conn.execute("DELETE FROM instance_owners WHERE instance_id = ?", (instance_id,))
        conn.commit()
        return cursor.rowcount > 0
