"""Sequential, non-aborting execution of a step list against one target."""
from __future__ import annotations

import logging
import time
from typing import Callable

from ..models import Step, StepResult, StepStatus, StepUpdate
from ..transport import RemoteConnector

logger = logging.getLogger(__name__)

StepCallback = Callable[[StepUpdate], None]

RUNNING_DETAIL = "Running..."


def tail(text: str, limit: int) -> str:
    return text[-limit:] if limit > 0 else text


async def run_pipeline(
    connector: RemoteConnector,
    steps: list[Step],
    on_step: StepCallback | None = None,
    detail_chars: int = 200,
) -> list[StepResult]:
    """Run every step in order and return one result per step.

    A non-zero exit is reported as a warning and a transport failure as an
    error; neither stops the remaining steps.
    """
    total = len(steps)
    results: list[StepResult] = []

    def notify(index: int, step: Step, status: StepStatus, detail: str) -> None:
        if on_step:
            on_step(StepUpdate(index=index, total=total, label=step.label, status=status, detail=detail))

    for index, step in enumerate(steps):
        notify(index, step, StepStatus.IN_PROGRESS, RUNNING_DETAIL)
        started = time.monotonic()
        try:
            result = await connector.execute(step.command, step.effective_timeout)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.warning(f"[{connector.target.host}] step '{step.label}' failed: {message}")
            notify(index, step, StepStatus.ERROR, message)
            results.append(
                StepResult(label=step.label, error=message, elapsed=time.monotonic() - started)
            )
            continue

        output = tail(result.stdout or result.stderr, detail_chars)
        if result.ok:
            notify(index, step, StepStatus.DONE, output or "OK")
        else:
            logger.warning(f"[{connector.target.host}] step '{step.label}' exited {result.exit_code}")
            notify(index, step, StepStatus.WARNING, f"Exit {result.exit_code}: {output}")
        results.append(
            StepResult(label=step.label, result=result, elapsed=time.monotonic() - started)
        )

    return results
