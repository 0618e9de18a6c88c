"""Thread-per-task runner with a watchdog for the mission loops."""

from __future__ import annotations

import logging
import random
import threading
import time
from datetime import datetime, timedelta

from django.db import close_old_connections
from django.utils import timezone

from .registry import ScheduledTask, evaluate_task_enabled, get_tasks
from .schedules import Every, Schedule

logger = logging.getLogger(__name__)

_WATCHDOG_INTERVAL = 60
_lock = threading.Lock()
_threads: dict[str, threading.Thread] = {}
_stop_events: dict[str, threading.Event] = {}
_running: set[str] = set()
_started = False
_task_status: dict[str, dict[str, object]] = {}


def compute_next_run(schedule: Schedule, now: datetime) -> datetime:
    if isinstance(schedule, Every):
        jitter = random.randint(-schedule.jitter, schedule.jitter) if schedule.jitter > 0 else 0
        return now + timedelta(seconds=max(0, schedule.seconds + jitter))
    raise ValueError(f"Unknown schedule type: {type(schedule)}")


def failure_delay_seconds(*, task: ScheduledTask, consecutive_failures: int) -> int:
    """Minimum wait after `consecutive_failures` failed runs (exponential, capped)."""
    if consecutive_failures <= 0 or task.failure_backoff_base_seconds <= 0:
        return 0
    delay = task.failure_backoff_base_seconds * (2 ** (consecutive_failures - 1))
    if task.failure_backoff_max_seconds > 0:
        delay = min(delay, task.failure_backoff_max_seconds)
    return int(delay)


def _update_status(name: str, **values: object) -> None:
    with _lock:
        _task_status.setdefault(name, {}).update(values)


def run_task_once(task: ScheduledTask) -> bool:
    """
    Execute one run of `task` unless a previous run is still going.

    Returns True when the run succeeded. Failures are logged and counted;
    they never escape into the task thread.
    """
    with _lock:
        if task.name in _running:
            logger.warning("Task %s still running, skipping this execution", task.name)
            return False
        _running.add(task.name)
        _task_status.setdefault(task.name, {}).update(
            {"last_started_at": timezone.now().isoformat(), "last_error": None}
        )

    start = time.monotonic()
    try:
        close_old_connections()
        task.func()
    except Exception as exc:
        duration = time.monotonic() - start
        logger.exception("Task %s failed after %.2fs", task.name, duration)
        with _lock:
            status = _task_status.setdefault(task.name, {})
            status["last_finished_at"] = timezone.now().isoformat()
            status["last_duration_seconds"] = round(duration, 6)
            status["last_error"] = str(exc)[:500]
            status["consecutive_failures"] = int(status.get("consecutive_failures") or 0) + 1
        return False
    else:
        duration = time.monotonic() - start
        logger.debug("Task %s completed in %.2fs", task.name, duration)
        _update_status(
            task.name,
            last_finished_at=timezone.now().isoformat(),
            last_duration_seconds=round(duration, 6),
            consecutive_failures=0,
        )
        return True
    finally:
        close_old_connections()
        with _lock:
            _running.discard(task.name)


def _run_task_loop(*, task: ScheduledTask, stop_event: threading.Event) -> None:
    while not stop_event.is_set():
        now = timezone.now()
        next_run = compute_next_run(task.schedule, now)

        with _lock:
            failures = int(_task_status.get(task.name, {}).get("consecutive_failures") or 0)
        delay = failure_delay_seconds(task=task, consecutive_failures=failures)
        if delay:
            next_run = max(next_run, now + timedelta(seconds=delay))

        _update_status(task.name, next_run_at=next_run.isoformat(), backoff_seconds=delay)
        stop_event.wait(timeout=max(0.0, (next_run - now).total_seconds()))
        if stop_event.is_set():
            break
        run_task_once(task)

    logger.info("Task %s stopping (disabled/gated)", task.name)
    _update_status(task.name, next_run_at=None)


def _ensure_thread(name: str, task: ScheduledTask) -> None:
    """Start (or restart) the thread for `task`. Caller holds `_lock`."""
    thread = _threads.get(name)
    if thread is not None and thread.is_alive():
        return
    if thread is not None:
        logger.warning("Task %s thread died, restarting", name)

    stop_event = threading.Event()
    thread = threading.Thread(
        target=_run_task_loop,
        kwargs={"task": task, "stop_event": stop_event},
        name=f"task-{name}",
        daemon=True,
    )
    thread.start()
    _threads[name] = thread
    _stop_events[name] = stop_event
    logger.info("Started task thread: %s", name)


def _check_stuck(name: str, task: ScheduledTask, now: datetime) -> None:
    with _lock:
        status = _task_status.get(name, {})
        started_raw = status.get("last_started_at")
        is_running = name in _running
    if not (is_running and task.max_runtime_seconds and isinstance(started_raw, str)):
        return
    runtime = (now - datetime.fromisoformat(started_raw)).total_seconds()
    if runtime > float(task.max_runtime_seconds):
        _update_status(name, stuck=True, stuck_for_seconds=int(runtime))
        logger.error(
            "Task %s appears stuck (runtime %.0fs > max_runtime_seconds=%s)",
            name,
            runtime,
            task.max_runtime_seconds,
        )


def watchdog_pass() -> None:
    """Stop gated tasks, flag stuck runs and restart dead threads."""
    now = timezone.now()
    for name, task in get_tasks().items():
        enabled, reason = evaluate_task_enabled(task)
        _update_status(name, enabled=enabled, enabled_reason=reason)

        if not enabled:
            with _lock:
                stop = _stop_events.get(name)
                if stop is not None and not stop.is_set():
                    stop.set()
            continue

        _check_stuck(name, task, now)
        with _lock:
            _ensure_thread(name, task)


def _run_watchdog() -> None:
    while True:
        time.sleep(_WATCHDOG_INTERVAL)
        try:
            watchdog_pass()
        except Exception:
            logger.exception("Scheduler watchdog pass failed")


def start_scheduler() -> None:
    """Start all registered tasks and the watchdog (idempotent)."""
    global _started

    with _lock:
        if _started:
            return
        _started = True

        for name, task in get_tasks().items():
            enabled, reason = evaluate_task_enabled(task)
            _task_status.setdefault(name, {}).update({"enabled": enabled, "enabled_reason": reason})
            if enabled:
                _ensure_thread(name, task)

    threading.Thread(target=_run_watchdog, name="task-watchdog", daemon=True).start()
    logger.info("Started task watchdog")


def get_scheduler_status() -> dict:
    """Runner health for the status endpoint."""
    with _lock:
        return {
            "running": _started,
            "tasks": {
                name: {
                    "description": task.description,
                    "interval_seconds": getattr(task.schedule, "seconds", None),
                    "thread_alive": _threads.get(name) is not None and _threads[name].is_alive(),
                    "currently_running": name in _running,
                    "status": dict(_task_status.get(name) or {}),
                }
                for name, task in sorted(get_tasks().items())
            },
        }
