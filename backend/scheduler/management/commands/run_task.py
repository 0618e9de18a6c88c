"""Run one registered periodic task in the foreground."""

from __future__ import annotations

import time

from django.core.management.base import BaseCommand, CommandError

from scheduler import get_task, get_tasks


class Command(BaseCommand):
    help = "Run a registered periodic task once (e.g. reconcile_missions)"

    def add_arguments(self, parser) -> None:
        parser.add_argument("task_name", type=str, help="Name of the task to run")

    def handle(self, *args, **options) -> None:
        task_name = options["task_name"]
        task = get_task(task_name)
        if task is None:
            available = ", ".join(sorted(get_tasks())) or "none"
            raise CommandError(f"Task '{task_name}' not found. Available tasks: {available}")

        self.stdout.write(f"Running task: {task_name}")
        started = time.monotonic()
        try:
            result = task.func()
        except Exception as exc:
            raise CommandError(f"Task failed after {time.monotonic() - started:.2f}s: {exc}") from exc

        self.stdout.write(self.style.SUCCESS(f"Task completed in {time.monotonic() - started:.2f}s"))
        if result is not None:
            self.stdout.write(f"Result: {result}")
