"""Task registration for the runner."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from django.conf import settings

from .schedules import Schedule

_tasks: dict[str, "ScheduledTask"] = {}

EnabledWhenPredicate = Callable[[], bool]


@dataclass
class ScheduledTask:
    name: str
    func: Callable[[], object]
    schedule: Schedule
    enabled: bool = True
    description: str | None = None
    enabled_when: EnabledWhenPredicate | None = None
    max_runtime_seconds: int | None = None
    failure_backoff_base_seconds: int = 0
    failure_backoff_max_seconds: int = 0


def _first_doc_line(func: Callable) -> str | None:
    doc = getattr(func, "__doc__", None)
    if not isinstance(doc, str):
        return None
    for line in doc.strip().splitlines():
        if line.strip():
            return line.strip()[:500]
    return None


def register(
    name: str,
    schedule: Schedule,
    enabled: bool = True,
    description: str | None = None,
    enabled_when: EnabledWhenPredicate | None = None,
) -> Callable[[Callable[[], object]], Callable[[], object]]:
    """Decorator registering a periodic task.

    `SCHEDULER_TASK_OVERRIDES[name]` may override `enabled`,
    `max_runtime_seconds` and the failure backoff settings.
    """

    def decorator(func: Callable[[], object]) -> Callable[[], object]:
        overrides = getattr(settings, "SCHEDULER_TASK_OVERRIDES", {}) or {}
        override = overrides.get(name) if isinstance(overrides, dict) else None
        if not isinstance(override, dict):
            override = {}

        max_runtime_seconds = override.get("max_runtime_seconds")
        _tasks[name] = ScheduledTask(
            name=name,
            func=func,
            schedule=schedule,
            enabled=bool(override.get("enabled", enabled)),
            description=description or _first_doc_line(func),
            enabled_when=enabled_when,
            max_runtime_seconds=int(max_runtime_seconds) if max_runtime_seconds is not None else None,
            failure_backoff_base_seconds=int(override.get("failure_backoff_base_seconds") or 0),
            failure_backoff_max_seconds=int(override.get("failure_backoff_max_seconds") or 0),
        )
        return func

    return decorator


def get_tasks() -> dict[str, ScheduledTask]:
    return _tasks.copy()


def get_task(name: str) -> ScheduledTask | None:
    return _tasks.get(name)


def evaluate_task_enabled(task: ScheduledTask) -> tuple[bool, str | None]:
    """
    Return (enabled, reason) where reason is None, "disabled", "gated" or
    "gating_error".
    """
    if not task.enabled:
        return False, "disabled"
    if task.enabled_when is None:
        return True, None
    try:
        return (True, None) if task.enabled_when() else (False, "gated")
    except Exception:
        return False, "gating_error"
