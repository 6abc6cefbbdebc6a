"""Fixed bootstrap step sequences per OS family and the runner that executes them."""
from __future__ import annotations

from ..models import OSFamily, Step
from . import linux, windows
from .linux import linux_steps
from .runner import StepCallback, run_pipeline
from .windows import windows_steps


def steps_for(
    os_family: OSFamily,
    admin_password: str | None = None,
    launcher_port: int = 3001,
) -> list[Step]:
    """Return the step list for `os_family`.

    `admin_password` only matters on Windows, where it appends the final
    password-change step.
    """
    if os_family == OSFamily.WINDOWS:
        return windows_steps(admin_password=admin_password, launcher_port=launcher_port)
    return linux_steps(launcher_port=launcher_port)


def detail_chars_for(os_family: OSFamily) -> int:
    return windows.DETAIL_CHARS if os_family == OSFamily.WINDOWS else linux.DETAIL_CHARS


__all__ = [
    "StepCallback",
    "detail_chars_for",
    "linux_steps",
    "run_pipeline",
    "steps_for",
    "windows_steps",
]
