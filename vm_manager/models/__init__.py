"""Pydantic models for API requests, responses and core records."""
from .auth import LoginRequest, LoginResponse, Ownership, User, UserCreate
from .enums import EventKind, OSFamily, ProvisionPhase, StepStatus, TaskStatus, UserRole
from .instance import (
    UNASSIGNED_IP,
    BatchDeleteRequest,
    BatchDeleteResponse,
    ConfirmRequest,
    Instance,
    InstanceCreateRequest,
    InstanceCreateResponse,
    InstanceListResponse,
    InstanceResult,
    OptionsResponse,
    OSCatalog,
    OSImage,
    Plan,
    Region,
)
from .provisioning import (
    DEFAULT_STEP_TIMEOUT,
    CommandResult,
    ConnectionTarget,
    Step,
    StepResult,
    StepUpdate,
)

__all__ = [
    # Auth
    "LoginRequest",
    "LoginResponse",
    "Ownership",
    "User",
    "UserCreate",
    # Enums
    "EventKind",
    "OSFamily",
    "ProvisionPhase",
    "StepStatus",
    "TaskStatus",
    "UserRole",
    # Instances
    "UNASSIGNED_IP",
    "BatchDeleteRequest",
    "BatchDeleteResponse",
    "ConfirmRequest",
    "Instance",
    "InstanceCreateRequest",
    "InstanceCreateResponse",
    "InstanceListResponse",
    "InstanceResult",
    "OptionsResponse",
    "OSCatalog",
    "OSImage",
    "Plan",
    "Region",
    # Provisioning
    "DEFAULT_STEP_TIMEOUT",
    "CommandResult",
    "ConnectionTarget",
    "Step",
    "StepResult",
    "StepUpdate",
]
