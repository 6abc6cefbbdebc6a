"""Enum types for the application."""
from enum import Enum


class OSFamily(str, Enum):
    WINDOWS = "windows"
    LINUX = "linux"


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    WARNING = "warning"
    ERROR = "error"


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class EventKind(str, Enum):
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"
    KEEPALIVE = "keepalive"


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class ProvisionPhase(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RUNNING_STEPS = "running_steps"
    DONE = "done"
    CONNECTION_FAILED = "connection_failed"
