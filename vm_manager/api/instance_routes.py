"""Instance API routes: batch create, lifecycle actions, RDP and launcher status."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

import requests
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from ..batch import BatchRequest, check_quota, clamp_count, start_batch
from ..config import get_settings
from ..errors import ProviderError, QuotaExceededError
from ..models import (
    BatchDeleteRequest,
    BatchDeleteResponse,
    ConfirmRequest,
    Instance,
    InstanceCreateRequest,
    InstanceCreateResponse,
    InstanceListResponse,
    OSFamily,
    User,
)
from ..storage import get_instance_password, list_user_instance_ids, remove_instance
from ..tasks import TaskTracker
from ..vultr import VultrClient, generate_rdp_content, is_windows_os
from .helpers import (
    get_current_user,
    get_provider,
    get_tracker,
    provider_http_error,
    require_instance_access,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/instances", tags=["instances"])

LAUNCHER_PROBE_TIMEOUT = 5


@router.get("", response_model=InstanceListResponse)
async def list_instances(
    provider: VultrClient = Depends(get_provider),
    user: User = Depends(get_current_user),
) -> InstanceListResponse:
    try:
        instances = await provider.list_instances(tag=get_settings().instance_tag)
    except ProviderError as e:
        raise provider_http_error(e)
    if not user.is_admin:
        owned = set(await asyncio.to_thread(list_user_instance_ids, user.id))
        instances = [i for i in instances if i.id in owned]
    return InstanceListResponse(data=[i.model_copy(update={"default_password": None}) for i in instances])


@router.post("", response_model=InstanceCreateResponse, status_code=202)
async def create_instances(
    request: InstanceCreateRequest,
    provider: VultrClient = Depends(get_provider),
    tracker: TaskTracker = Depends(get_tracker),
    user: User = Depends(get_current_user),
) -> InstanceCreateResponse:
    """Accept a batch and run it in the background. Progress: GET /api/tasks/{id}/progress."""
    settings = get_settings()
    count = clamp_count(request.count, settings.max_batch_size)

    if not user.is_admin:
        try:
            owned = await asyncio.to_thread(list_user_instance_ids, user.id)
            check_quota(len(owned), count, settings.max_instances_per_user)
        except QuotaExceededError as e:
            raise HTTPException(status_code=403, detail=str(e))

    windows = is_windows_os(request.os_id, provider.cached_os_catalog)
    batch = BatchRequest(
        label=request.label,
        region=request.region,
        plan=request.plan,
        os_id=request.os_id,
        os_family=OSFamily.WINDOWS if windows else OSFamily.LINUX,
        user_id=user.id,
        count=count,
        install=request.install,
        admin_password=request.admin_password,
    )
    task = tracker.create_task(str(uuid.uuid4()), owner_id=user.id)
    start_batch(task.id, batch, provider=provider, tracker=tracker, settings=settings)
    logger.info(f"Task {task.id}: accepted batch of {count} x {batch.os_family.value} for {user.email}")
    return InstanceCreateResponse(task_id=task.id, total_steps=batch.total_steps)


@router.delete("", response_model=BatchDeleteResponse)
async def delete_instances(
    request: BatchDeleteRequest,
    provider: VultrClient = Depends(get_provider),
    user: User = Depends(get_current_user),
) -> BatchDeleteResponse:
    if not request.confirm or not request.ids:
        raise HTTPException(status_code=400, detail="ids[] and confirm are required")
    if not user.is_admin:
        owned = set(await asyncio.to_thread(list_user_instance_ids, user.id))
        foreign = [i for i in request.ids if i not in owned]
        if foreign:
            raise HTTPException(status_code=403, detail=f"You do not own: {', '.join(foreign)}")

    outcomes = await asyncio.gather(
        *(provider.delete_instance(i) for i in request.ids), return_exceptions=True
    )
    failed = []
    for instance_id, outcome in zip(request.ids, outcomes):
        if isinstance(outcome, Exception):
            failed.append(str(outcome))
        else:
            await asyncio.to_thread(remove_instance, instance_id)
    return BatchDeleteResponse(
        success=not failed, deleted=len(request.ids) - len(failed), failed=failed
    )


@router.get("/{instance_id}", response_model=Instance)
async def get_instance(
    instance_id: str,
    provider: VultrClient = Depends(get_provider),
    user: User = Depends(require_instance_access),
) -> Instance:
    try:
        instance = await provider.get_instance(instance_id)
    except ProviderError as e:
        raise provider_http_error(e)
    return instance.model_copy(update={"default_password": None})


async def _instance_action(action, instance_id: str, message: str) -> dict[str, Any]:
    try:
        await action(instance_id)
    except ProviderError as e:
        raise provider_http_error(e)
    return {"success": True, "message": message}


@router.post("/{instance_id}/start")
async def start_instance(
    instance_id: str,
    provider: VultrClient = Depends(get_provider),
    user: User = Depends(require_instance_access),
) -> dict[str, Any]:
    return await _instance_action(provider.start_instance, instance_id, "Instance started")


@router.post("/{instance_id}/stop")
async def stop_instance(
    instance_id: str,
    provider: VultrClient = Depends(get_provider),
    user: User = Depends(require_instance_access),
) -> dict[str, Any]:
    return await _instance_action(provider.stop_instance, instance_id, "Instance stopped")


@router.post("/{instance_id}/reboot")
async def reboot_instance(
    instance_id: str,
    provider: VultrClient = Depends(get_provider),
    user: User = Depends(require_instance_access),
) -> dict[str, Any]:
    return await _instance_action(provider.reboot_instance, instance_id, "Instance rebooted")


@router.delete("/{instance_id}")
async def delete_instance(
    instance_id: str,
    request: ConfirmRequest | None = None,
    provider: VultrClient = Depends(get_provider),
    user: User = Depends(require_instance_access),
) -> dict[str, Any]:
    if request is None or not request.confirm:
        raise HTTPException(status_code=400, detail="Confirmation required")
    response = await _instance_action(provider.delete_instance, instance_id, "Instance deleted")
    await asyncio.to_thread(remove_instance, instance_id)
    return response


@router.get("/{instance_id}/password")
def get_password(
    instance_id: str,
    user: User = Depends(require_instance_access),
) -> dict[str, Any]:
    return {"success": True, "password": get_instance_password(instance_id)}


@router.get("/{instance_id}/rdp")
async def download_rdp(
    instance_id: str,
    username: str = Query(default="Administrator"),
    provider: VultrClient = Depends(get_provider),
    user: User = Depends(require_instance_access),
) -> Response:
    try:
        instance = await provider.get_instance(instance_id)
    except ProviderError as e:
        raise provider_http_error(e)
    if not instance.has_ip:
        raise HTTPException(status_code=404, detail="IP not available")
    return Response(
        content=generate_rdp_content(instance.ip, username),
        media_type="application/x-rdp",
        headers={"Content-Disposition": f'attachment; filename="{instance.label or instance.id}.rdp"'},
    )


def _probe_launcher(ip: str, port: int) -> dict[str, Any]:
    try:
        response = requests.get(f"http://{ip}:{port}/api/health", timeout=LAUNCHER_PROBE_TIMEOUT)
    except requests.RequestException as e:
        return {"online": False, "reason": str(e)}
    if not response.ok:
        return {"online": False, "reason": f"HTTP {response.status_code}"}
    try:
        body = response.json()
    except ValueError:
        body = {}
    return {**body, "online": True}


@router.get("/{instance_id}/launcher-status")
async def launcher_status(
    instance_id: str,
    provider: VultrClient = Depends(get_provider),
    user: User = Depends(require_instance_access),
) -> dict[str, Any]:
    try:
        instance = await provider.get_instance(instance_id)
    except ProviderError as e:
        raise provider_http_error(e)
    if not instance.has_ip:
        return {"online": False, "reason": "No IP"}
    return await asyncio.to_thread(_probe_launcher, instance.ip, get_settings().launcher_port)
