"""
itad_batch.tasks -- Task protocol, registry, and the lifecycle task implementations.
"""

from itad_batch.tasks.base import (
    BulkItemInput,
    TaskRegistry,
    TransitionTask,
)
from itad_batch.tasks.lifecycle_tasks import (
    RecycleTask,
    RegisterTask,
    SanitizeTask,
    TransferTask,
    default_task_registry,
)

__all__ = [
    "BulkItemInput",
    "RecycleTask",
    "RegisterTask",
    "SanitizeTask",
    "TaskRegistry",
    "TransferTask",
    "TransitionTask",
    "default_task_registry",
]
