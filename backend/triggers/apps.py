from __future__ import annotations

from django.apps import AppConfig


class TriggersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "triggers"
    verbose_name = "Mission triggers"

    def ready(self) -> None:
        """Register the schedule tick with the in-process scheduler."""
        from . import tasks  # noqa: F401
