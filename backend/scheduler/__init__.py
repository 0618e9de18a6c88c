"""In-process periodic task runner.

Drives the long-running mission loops (queue processing, status
reconciliation, schedule ticks) inside the Django process.

Usage:
    from scheduler import Every, register

    @register("reconcile_missions", schedule=Every(seconds=10))
    def reconcile_missions() -> None:
        ...
"""

from .registry import ScheduledTask, get_task, get_tasks, register
from .runner import get_scheduler_status, start_scheduler
from .schedules import Every, Schedule

__all__ = [
    "Schedule",
    "Every",
    "register",
    "ScheduledTask",
    "get_tasks",
    "get_task",
    "start_scheduler",
    "get_scheduler_status",
]
