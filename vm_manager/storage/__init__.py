"""Storage operations for persistent data."""
from .database import get_connection, init_db
from .ownership_store import (
    assign_instance,
    get_instance_owner,
    get_instance_password,
    get_ownership,
    list_user_instance_ids,
    remove_instance,
)
from .user_store import count_users, get_user, get_user_credentials, save_user

__all__ = [
    # Database
    "get_connection",
    "init_db",
    # Ownership
    "assign_instance",
    "get_instance_owner",
    "get_instance_password",
    "get_ownership",
    "list_user_instance_ids",
    "remove_instance",
    # Users
    "count_users",
    "get_user",
    "get_user_credentials",
    "save_user",
]
