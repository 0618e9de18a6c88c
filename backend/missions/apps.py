from __future__ import annotations

from django.apps import AppConfig


class MissionsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "missions"
    verbose_name = "Missions"

    def ready(self) -> None:
        """Wire realtime receivers and register the queue/reconciliation tasks."""
        from . import ws_signals  # noqa: F401
        from . import tasks  # noqa: F401
