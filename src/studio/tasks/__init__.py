from __future__ import annotations

from .broadcaster import TaskEventBroadcaster
from .cascade import CascadeReport, DependencyCascadeEngine
from .enums import TaskEventType, TaskStatus
from .exceptions import (
    PostProcessingError,
    TaskConflictError,
    TaskError,
    TaskNotFoundError,
    TaskValidationError,
)
from .models import Generation, Task, TaskDependency
from .postprocessing import CompletionPostProcessor, HookRegistry, register_hook
from .runner import BackgroundTaskRunner
from .service import TaskService
from .state_machine import TaskStateMachine, TransitionResult

__all__ = [
    "BackgroundTaskRunner",
    "CascadeReport",
    "CompletionPostProcessor",
    "DependencyCascadeEngine",
    "Generation",
    "HookRegistry",
    "PostProcessingError",
    "Task",
    "TaskConflictError",
    "TaskDependency",
    "TaskError",
    "TaskEventBroadcaster",
    "TaskEventType",
    "TaskNotFoundError",
    "TaskService",
    "TaskStateMachine",
    "TaskStatus",
    "TaskValidationError",
    "TransitionResult",
    "register_hook",
]
