from __future__ import annotations

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from scheduler.registry import evaluate_task_enabled, get_tasks
from scheduler.runner import get_scheduler_status


class SchedulerStatusView(APIView):
    """GET /api/scheduler/status/ - runner state and per-task health."""

    def get(self, request):
        runtime = get_scheduler_status()
        tasks = []
        for name, task in sorted(get_tasks().items()):
            enabled, reason = evaluate_task_enabled(task)
            info = runtime["tasks"].get(name, {})
            task_status = info.get("status") or {}

            if not enabled:
                derived = "disabled" if reason == "disabled" else "gated"
            elif task_status.get("stuck"):
                derived = "stuck"
            elif info.get("currently_running"):
                derived = "running"
            elif int(task_status.get("consecutive_failures") or 0) > 0:
                derived = "failing"
            elif not task_status.get("last_finished_at"):
                derived = "never_ran"
            else:
                derived = "ok"

            tasks.append(
                {
                    "task_name": name,
                    "description": task.description,
                    "enabled": enabled,
                    "enabled_reason": reason,
                    "interval_seconds": info.get("interval_seconds"),
                    "next_run_at": task_status.get("next_run_at"),
                    "last_started_at": task_status.get("last_started_at"),
                    "last_finished_at": task_status.get("last_finished_at"),
                    "last_duration_seconds": task_status.get("last_duration_seconds"),
                    "consecutive_failures": int(task_status.get("consecutive_failures") or 0),
                    "last_error": task_status.get("last_error"),
                    "status": derived,
                }
            )
        return Response({"running": runtime["running"], "tasks": tasks}, status=status.HTTP_200_OK)
