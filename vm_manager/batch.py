"""
Background driver for one batch create-and-provision request.

Instances are handled strictly one after another. Each one gets a fixed
slice of the task's global step numbering:

    create, wait-for-ready, [connect, pipeline steps...]

so the progress bar denominator is known before anything runs.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .config import Settings, get_settings
from .errors import InstanceNotReadyError, QuotaExceededError
from .models import (
    ConnectionTarget,
    EventKind,
    Instance,
    InstanceResult,
    OSFamily,
    ProvisionPhase,
    StepResult,
    StepStatus,
    StepUpdate,
)
from .pipeline.windows import SET_PASSWORD_LABEL
from .provisioner import provision, provisioning_step_count
from .storage import assign_instance
from .tasks import TaskTracker
from .vultr import WINDOWS_REMOTE_ENABLE_SCRIPT, VultrClient

logger = logging.getLogger(__name__)

BASE_STEPS_PER_INSTANCE = 2  # create + wait-for-ready

OwnerRecorder = Callable[..., None]
Provisioner = Callable[..., Awaitable[list]]


@dataclass(frozen=True)
class BatchRequest:
    label: str
    region: str
    plan: str
    os_id: int
    os_family: OSFamily
    user_id: str
    count: int = 1
    install: bool = False
    admin_password: str | None = None

    @property
    def is_windows(self) -> bool:
        return self.os_family == OSFamily.WINDOWS

    @property
    def provisioning_steps(self) -> int:
        return provisioning_step_count(self.os_family, self.install, self.admin_password)

    @property
    def steps_per_instance(self) -> int:
        return BASE_STEPS_PER_INSTANCE + self.provisioning_steps

    @property
    def total_steps(self) -> int:
        return self.count * self.steps_per_instance

    def instance_label(self, index: int) -> str:
        return self.label if self.count == 1 else f"{self.label}-{index + 1:02d}"


def clamp_count(count: int | None, maximum: int = 20) -> int:
    return min(max(int(count or 1), 1), maximum)


def check_quota(owned: int, requested: int, limit: int) -> None:
    if owned + requested > limit:
        raise QuotaExceededError(
            f"Instance limit reached: you own {owned}, requested {requested}, limit is {limit}"
        )


def password_changed(steps: list[StepResult]) -> bool:
    """True when the final step was a successful Windows password change."""
    return bool(steps) and steps[-1].label == SET_PASSWORD_LABEL and steps[-1].succeeded


async def wait_for_ready(
    provider: VultrClient,
    instance_id: str,
    on_change: Callable[[Instance], None] | None = None,
    poll_interval: float = 5,
    timeout: float = 600,
) -> Instance:
    """Poll until the instance is active, running and healthy.

    `on_change` only fires when the combined status string changes.

    Raises:
        InstanceNotReadyError: not ready after `timeout` seconds.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    last_status = ""
    while loop.time() < deadline:
        instance = await provider.get_instance(instance_id)
        if instance.combined_status != last_status:
            last_status = instance.combined_status
            if on_change:
                on_change(instance)
        if instance.is_ready:
            return instance
        await asyncio.sleep(poll_interval)
    raise InstanceNotReadyError(f"Timeout waiting for instance {instance_id} to become active")


class BatchRun:
    """Drives one task. Holds the step counter shared by all instances."""

    def __init__(
        self,
        task_id: str,
        request: BatchRequest,
        *,
        provider: VultrClient,
        tracker: TaskTracker,
        settings: Settings,
        record_owner: OwnerRecorder = assign_instance,
        provisioner: Provisioner = provision,
    ):
        self.task_id = task_id
        self.request = request
        self.provider = provider
        self.tracker = tracker
        self.settings = settings
        self.record_owner = record_owner
        self.provisioner = provisioner

    def emit(self, step: int, label: str, status: StepStatus, detail: str) -> None:
        self.tracker.publish(
            self.task_id,
            EventKind.PROGRESS,
            {
                "step": step,
                "total": self.request.total_steps,
                "label": label,
                "status": status.value,
                "detail": detail,
            },
        )

    async def _create(self, label: str, step: int) -> Instance:
        request = self.request
        self.emit(step, f"Create {label}", StepStatus.IN_PROGRESS, f"Creating instance {label}...")

        script_id = None
        if request.is_windows:
            try:
                script_id = await self.provider.create_startup_script(
                    f"winrm-{label}", WINDOWS_REMOTE_ENABLE_SCRIPT
                )
            except Exception as e:
                logger.warning(f"Task {self.task_id}: startup script for {label} not created: {e}")

        try:
            instance = await self.provider.create_instance(
                label=label,
                region=request.region,
                plan=request.plan,
                os_id=request.os_id,
                tag=self.settings.instance_tag,
                script_id=script_id,
            )
        finally:
            if script_id:
                await self._delete_startup_script(script_id)

        logger.info(
            f"Task {self.task_id}: created {label} id={instance.id} "
            f"password={'captured' if instance.default_password else 'not available'}"
        )
        # Owned before provisioning starts so a crash never leaves an orphan.
        await asyncio.to_thread(
            self.record_owner, instance.id, request.user_id, instance.default_password or request.admin_password
        )
        self.emit(step, f"Create {label}", StepStatus.DONE, f"ID: {instance.id}")
        return instance

    async def _delete_startup_script(self, script_id: str) -> None:
        try:
            await self.provider.delete_startup_script(script_id)
        except Exception as e:
            logger.warning(f"Task {self.task_id}: startup script {script_id} not deleted: {e}")

    async def _wait(self, label: str, instance: Instance, step: int) -> Instance:
        title = f"Wait for {label}"
        self.emit(step, title, StepStatus.IN_PROGRESS, "Booting...")

        def on_change(current: Instance) -> None:
            self.emit(
                step,
                title,
                StepStatus.IN_PROGRESS,
                f"{current.status} | {current.power_status} | IP: {current.ip if current.has_ip else '...'}",
            )

        ready = await wait_for_ready(
            self.provider,
            instance.id,
            on_change=on_change,
            poll_interval=self.settings.ready_poll_interval_seconds,
            timeout=self.settings.ready_timeout_seconds,
        )
        self.emit(step, title, StepStatus.DONE, f"Active! IP: {ready.ip}")
        return ready

    async def _provision(self, label: str, ready: Instance, password: str | None, step: int) -> list[StepResult]:
        request = self.request
        title = f"Connect {label}"
        target = ConnectionTarget(
            host=ready.ip,
            password=password or request.admin_password or self.settings.fallback_admin_password,
            os_family=request.os_family,
        )

        def on_status(phase: ProvisionPhase, message: str) -> None:
            if phase == ProvisionPhase.CONNECTING:
                self.emit(step, title, StepStatus.IN_PROGRESS, message)
            elif phase == ProvisionPhase.CONNECTED:
                self.emit(step, title, StepStatus.DONE, message)
            elif phase == ProvisionPhase.CONNECTION_FAILED:
                self.emit(step, title, StepStatus.ERROR, f"Failed: {message}")

        def on_step(update: StepUpdate) -> None:
            self.emit(step + 1 + update.index, update.label, update.status, update.detail)

        return await self.provisioner(
            target,
            admin_password=request.admin_password,
            on_step=on_step,
            on_status=on_status,
            settings=self.settings,
        )

    async def run_instance(self, index: int) -> InstanceResult:
        """Create, wait for and (optionally) provision one instance.

        Failures are recorded on the result; the batch moves on either way.
        """
        request = self.request
        label = request.instance_label(index)
        step = index * request.steps_per_instance + 1

        try:
            instance = await self._create(label, step)
        except Exception as e:
            logger.error(f"Task {self.task_id}: creating {label} failed: {e}")
            self.emit(step, f"Create {label}", StepStatus.ERROR, f"Failed: {e}")
            return InstanceResult(label=label, error=str(e))

        try:
            ready = await self._wait(label, instance, step + 1)
        except Exception as e:
            logger.error(f"Task {self.task_id}: {label} never became ready: {e}")
            self.emit(step + 1, f"Wait for {label}", StepStatus.ERROR, str(e))
            return InstanceResult(label=label, instance=instance, error=str(e))

        ready = ready.model_copy(update={"default_password": instance.default_password or ready.default_password})
        result = InstanceResult(label=label, instance=ready)
        if not request.install:
            return result
        if not ready.has_ip:
            self.emit(step + 2, f"Connect {label}", StepStatus.WARNING, "No IP address, provisioning skipped")
            result.provision_error = "No IP address"
            return result

        try:
            steps = await self._provision(label, ready, instance.default_password, step + 2)
        except Exception as e:
            logger.error(f"Task {self.task_id}: provisioning {label} failed: {e}")
            result.provision_error = str(e)
            return result

        result.steps = [s.model_dump(mode="json") for s in steps]
        if password_changed(steps):
            # The provider password stopped working when this step succeeded.
            await asyncio.to_thread(self.record_owner, instance.id, request.user_id, request.admin_password)
            logger.info(f"Task {self.task_id}: stored the new admin password for {label}")
        return result

    async def run(self) -> None:
        """Run every instance, then mark the task completed (or errored)."""
        request = self.request
        try:
            results = []
            for index in range(request.count):
                results.append(await self.run_instance(index))
            self.tracker.complete(
                self.task_id,
                {
                    "instances": [
                        r.model_dump(mode="json", exclude={"instance": {"default_password"}})
                        for r in results
                    ],
                    "install": request.install,
                    "is_windows": request.is_windows,
                    "has_launcher_web": request.install,
                },
            )
            logger.info(f"Task {self.task_id}: batch of {request.count} finished")
        except Exception as e:
            logger.exception(f"Task {self.task_id}: batch failed")
            self.tracker.fail(self.task_id, str(e) or e.__class__.__name__)


async def run_batch(
    task_id: str,
    request: BatchRequest,
    *,
    provider: VultrClient,
    tracker: TaskTracker,
    settings: Settings | None = None,
    record_owner: OwnerRecorder = assign_instance,
    provisioner: Provisioner = provision,
) -> None:
    await BatchRun(
        task_id,
        request,
        provider=provider,
        tracker=tracker,
        settings=settings or get_settings(),
        record_owner=record_owner,
        provisioner=provisioner,
    ).run()


_background: set[asyncio.Task] = set()


def start_batch(task_id: str, request: BatchRequest, **kwargs: Any) -> asyncio.Task:
    """Fire-and-forget `run_batch`, keeping a reference until it finishes."""
    job = asyncio.create_task(run_batch(task_id, request, **kwargs), name=f"batch-{task_id}")
    _background.add(job)
    job.add_done_callback(_background.discard)
    return job
