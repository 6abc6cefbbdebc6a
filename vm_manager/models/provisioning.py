"""Models for remote provisioning: targets, steps and their results."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from .enums import OSFamily, StepStatus

DEFAULT_STEP_TIMEOUT = 120.0


class ConnectionTarget(BaseModel):
    """A freshly created machine we are about to bootstrap."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(..., description="IP address or hostname of the machine")
    password: str = Field(..., description="Initial administrative password", repr=False)
    os_family: OSFamily = Field(..., description="Selects the transport and step pipeline")
    username: str = Field(default="root", description="Login used by the SSH transport")
    port: int = Field(default=22, description="SSH port")

    @property
    def is_windows(self) -> bool:
        return self.os_family == OSFamily.WINDOWS


class Step(BaseModel):
    """One named setup action in a pipeline."""

    model_config = ConfigDict(frozen=True)

    label: str
    command: str = Field(..., description="Shell or PowerShell script body")
    timeout: float | None = Field(default=None, description="Seconds; falls back to 120")

    @property
    def effective_timeout(self) -> float:
        return self.timeout or DEFAULT_STEP_TIMEOUT


class CommandResult(BaseModel):
    """Normalized outcome of one remote command, shared by both transports."""

    model_config = ConfigDict(frozen=True)

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class StepResult(BaseModel):
    """What happened when a step ran. Either `result` or `error` is set."""

    model_config = ConfigDict(frozen=True)

    label: str
    result: CommandResult | None = None
    error: str | None = None
    elapsed: float = Field(default=0.0, description="Wall-clock seconds spent on the step")

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.ok


class StepUpdate(BaseModel):
    """Pipeline-local progress notification handed to `on_step`."""

    index: int = Field(..., description="Zero-based index within the pipeline")
    total: int
    label: str
    status: StepStatus
    detail: str = ""
