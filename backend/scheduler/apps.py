from __future__ import annotations

import os
import sys

from django.apps import AppConfig
from django.conf import settings

_SERVER_BINARIES = ("daphne", "uvicorn", "gunicorn")
_DEV_COMMANDS = {"runserver", "run"}


def _should_start() -> bool:
    """
    Only long-running server processes drive the mission loops.

    Migrations, shells and one-off commands such as `run_task` or
    `resync_area_slots` must not start a second set of queue/reconcile threads.
    """
    if not getattr(settings, "SCHEDULER_ENABLED", True) or getattr(settings, "IS_TESTING", False):
        return False

    # Servers pass their own flags as argv[1] (`daphne -b ...`), so check the binary first.
    if os.path.basename(sys.argv[0] or "").startswith(_SERVER_BINARIES):
        return True

    return len(sys.argv) > 1 and sys.argv[1] in _DEV_COMMANDS


class SchedulerConfig(AppConfig):
    name = "scheduler"
    verbose_name = "Mission loops"

    def ready(self) -> None:
        if _should_start():
            from .runner import start_scheduler

            start_scheduler()
