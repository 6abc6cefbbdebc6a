"""Instance and catalog models mirrored from the cloud provider."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

UNASSIGNED_IP = "0.0.0.0"


class Instance(BaseModel):
    """Provider-owned machine as we last saw it."""

    id: str
    label: str = ""
    hostname: str = ""
    os: str = ""
    os_id: int | None = None
    plan: str = ""
    region: str = ""
    ip: str = UNASSIGNED_IP
    status: str = ""
    power_status: str = ""
    server_status: str = ""
    ram: int | None = None
    disk: int | None = None
    vcpu_count: int | None = None
    default_password: str | None = Field(default=None, repr=False)
    date_created: str | None = None
    tags: list[str] = Field(default_factory=list)

    @property
    def has_ip(self) -> bool:
        return bool(self.ip) and self.ip != UNASSIGNED_IP

    @property
    def combined_status(self) -> str:
        return f"{self.status}/{self.power_status}/{self.server_status}"

    @property
    def is_ready(self) -> bool:
        return (
            self.status == "active"
            and self.power_status == "running"
            and self.server_status == "ok"
        )


class InstanceResult(BaseModel):
    """Per-instance entry in a finished batch."""

    label: str
    instance: Instance | None = None
    error: str | None = None
    provision_error: str | None = None
    steps: list[dict[str, Any]] = Field(default_factory=list)


class InstanceCreateRequest(BaseModel):
    """Body of POST /api/instances."""

    label: str = Field(..., min_length=1, description="Label, suffixed -01, -02... for batches")
    region: str = Field(..., min_length=1)
    plan: str = Field(..., min_length=1)
    os_id: int = Field(..., description="Provider OS image id")
    count: int = Field(default=1, description="Clamped to 1..20")
    install: bool = Field(default=False, description="Bootstrap the software stack after boot")
    admin_password: str | None = Field(default=None, repr=False)


class InstanceCreateResponse(BaseModel):
    success: bool = True
    task_id: str
    total_steps: int


class InstanceListResponse(BaseModel):
    success: bool = True
    data: list[Instance]


class ConfirmRequest(BaseModel):
    confirm: bool = False


class BatchDeleteRequest(BaseModel):
    ids: list[str] = Field(default_factory=list)
    confirm: bool = False


class BatchDeleteResponse(BaseModel):
    success: bool
    deleted: int
    failed: list[str] = Field(default_factory=list)


class OSImage(BaseModel):
    id: int
    name: str
    arch: str = ""
    family: str = ""


class OSCatalog(BaseModel):
    windows: list[OSImage] = Field(default_factory=list)
    linux: list[OSImage] = Field(default_factory=list)


class Region(BaseModel):
    id: str
    city: str = ""
    country: str = ""
    continent: str = ""
    desc: str = ""


class Plan(BaseModel):
    id: str
    vcpu: int = 0
    ram: int = 0
    disk: int = 0
    bandwidth: int = 0
    monthly_cost: float = 0.0
    type: str = ""
    locations: list[str] = Field(default_factory=list)
    desc: str = ""


class OptionsResponse(BaseModel):
    plans: list[Plan]
    windows_os: list[OSImage]
    linux_os: list[OSImage]
    regions: list[Region]
    launcher_web_available: bool = True
