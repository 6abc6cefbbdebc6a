"""Connect to one freshly created machine and run its bootstrap pipeline."""
from __future__ import annotations

import logging
from typing import Callable

from .config import Settings, get_settings
from .models import ConnectionTarget, OSFamily, ProvisionPhase, StepResult
from .pipeline import StepCallback, detail_chars_for, run_pipeline, steps_for
from .transport import RemoteConnector, SSHConnector, WinRMConnector

logger = logging.getLogger(__name__)

StatusCallback = Callable[[ProvisionPhase, str], None]


def build_connector(target: ConnectionTarget, settings: Settings | None = None) -> RemoteConnector:
    settings = settings or get_settings()
    if target.os_family == OSFamily.WINDOWS:
        return WinRMConnector(
            target,
            max_attempts=settings.winrm_max_attempts,
            retry_delay=settings.winrm_retry_delay_seconds,
            probe_timeout=settings.winrm_probe_timeout_seconds,
        )
    return SSHConnector(
        target,
        max_attempts=settings.ssh_max_attempts,
        retry_delay=settings.ssh_retry_delay_seconds,
        connect_timeout=settings.ssh_connect_timeout_seconds,
    )


async def provision(
    target: ConnectionTarget,
    *,
    admin_password: str | None = None,
    on_step: StepCallback | None = None,
    on_status: StatusCallback | None = None,
    connector: RemoteConnector | None = None,
    settings: Settings | None = None,
) -> list[StepResult]:
    """Connect to `target` and run the pipeline for its OS family.

    Step failures are reported through `on_step` and never raised. The only
    exceptions that escape are connection failures: an exhausted retry budget
    (RemoteConnectionError) or a rejected credential (RemoteAuthError).
    """
    settings = settings or get_settings()
    connector = connector or build_connector(target, settings)
    transport_name = "WinRM" if target.is_windows else "SSH"

    def status(phase: ProvisionPhase, message: str) -> None:
        logger.info(f"[{target.host}] {phase.value}: {message}")
        if on_status:
            on_status(phase, message)

    def on_attempt(attempt: int, total: int) -> None:
        status(ProvisionPhase.CONNECTING, f"{transport_name} attempt {attempt}/{total} on {target.host}...")

    status(ProvisionPhase.CONNECTING, f"Connecting via {transport_name} to {target.host}...")
    try:
        await connector.connect(on_attempt=on_attempt)
    except Exception as e:
        status(ProvisionPhase.CONNECTION_FAILED, str(e))
        await connector.close()
        raise
    status(ProvisionPhase.CONNECTED, f"{transport_name} connected, starting provisioning...")

    steps = steps_for(
        target.os_family,
        admin_password=admin_password,
        launcher_port=settings.launcher_port,
    )
    try:
        status(ProvisionPhase.RUNNING_STEPS, f"Running {len(steps)} steps")
        results = await run_pipeline(
            connector,
            steps,
            on_step=on_step,
            detail_chars=detail_chars_for(target.os_family),
        )
    finally:
        await connector.close()

    failed = sum(1 for r in results if not r.succeeded)
    status(ProvisionPhase.DONE, f"Provisioning finished ({failed} of {len(results)} steps not clean)")
    return results


def provisioning_step_count(os_family: OSFamily, install: bool, admin_password: str | None = None) -> int:
    """Connect step plus pipeline steps, or 0 when provisioning is skipped."""
    if not install:
        return 0
    return 1 + len(steps_for(os_family, admin_password=admin_password))
