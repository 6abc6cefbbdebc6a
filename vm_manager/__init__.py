"""
Vultr VM manager: batch-create cloud machines and bootstrap them remotely.

The web control panel lives in `api`, the CLI in `cli.py`.
"""

from .batch import BatchRequest, run_batch
from .provisioner import provision
from .tasks import TaskTracker, get_task_tracker

__all__ = [
    "BatchRequest",
    "TaskTracker",
    "get_task_tracker",
    "provision",
    "run_batch",
]
