"""Shared dependencies and helpers for API routes."""
from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Query

from ..auth import verify_token
from ..errors import AuthError, ProviderError
from ..models import User
from ..storage import get_instance_owner
from ..tasks import TaskTracker, get_task_tracker
from ..vultr import VultrClient, get_vultr_client


def get_provider() -> VultrClient:
    return get_vultr_client()


def get_tracker() -> TaskTracker:
    return get_task_tracker()


def get_current_user(
    authorization: str | None = Header(default=None),
    token: str | None = Query(default=None, description="For EventSource clients that cannot set headers"),
) -> User:
    bearer = None
    if authorization and authorization.startswith("Bearer "):
        bearer = authorization[len("Bearer "):]
    bearer = bearer or token
    if not bearer:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        return verify_token(bearer)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))


def require_instance_access(instance_id: str, user: User = Depends(get_current_user)) -> User:
    """Admins may touch anything; users only what they own."""
    if not user.is_admin and get_instance_owner(instance_id) != user.id:
        raise HTTPException(status_code=403, detail="You do not own this instance")
    return user


def provider_http_error(error: ProviderError) -> HTTPException:
    return HTTPException(status_code=error.status_code or 502, detail=str(error))
