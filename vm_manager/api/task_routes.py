"""Server-sent progress stream for background batch tasks."""
from __future__ import annotations

import json
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ..config import get_settings
from ..models import EventKind, User
from ..tasks import TaskTracker, stream_task_events
from .helpers import get_current_user, get_tracker

router = APIRouter(prefix="/api/tasks", tags=["tasks"])


def format_sse(kind: EventKind, payload: dict[str, Any]) -> str:
    return f"event: {kind.value}\ndata: {json.dumps(payload)}\n\n"


@router.get("/{task_id}/progress")
async def task_progress(
    task_id: str,
    tracker: TaskTracker = Depends(get_tracker),
    user: User = Depends(get_current_user),
) -> StreamingResponse:
    task = tracker.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    if task.owner_id and task.owner_id != user.id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Not your task")

    keepalive = get_settings().keepalive_interval_seconds

    async def generate() -> AsyncIterator[str]:
        async for kind, payload in stream_task_events(tracker, task_id, keepalive):
            yield format_sse(kind, payload)

    return StreamingResponse(
        generate(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )
