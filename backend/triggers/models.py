from __future__ import annotations

from django.db import models

from missions.models import MissionQueueItem, MissionTemplate


class TriggerType(models.TextChoices):
    ONCE = "once", "Once"
    RECURRING = "recurring", "Recurring"


class RunStatus(models.TextChoices):
    QUEUED = "queued", "Queued"
    FAILED = "failed", "Failed"
    SKIPPED = "skipped", "Skipped"


class ScheduleDefinition(models.Model):
    """
    Cron or one-time trigger for a mission template.

    `claim_token` is set only while one process is executing a due occurrence.
    """

    name = models.CharField(max_length=150)
    template = models.ForeignKey(MissionTemplate, on_delete=models.CASCADE, related_name="schedules")
    trigger_type = models.CharField(max_length=16, choices=TriggerType.choices, default=TriggerType.RECURRING)
    cron_expression = models.CharField(max_length=120, blank=True)
    run_at = models.DateTimeField(null=True, blank=True)
    timezone = models.CharField(max_length=64, default="UTC")
    enabled = models.BooleanField(default=True)
    skip_if_running = models.BooleanField(default=False)

    last_run_at = models.DateTimeField(null=True, blank=True)
    last_status = models.CharField(max_length=16, choices=RunStatus.choices, blank=True)
    last_error = models.TextField(blank=True)
    next_run_at = models.DateTimeField(null=True, blank=True)

    claim_token = models.UUIDField(null=True, blank=True)
    claimed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "id"]
        indexes = [
            models.Index(fields=["enabled", "next_run_at"], name="triggers_schedule_due_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.name} ({self.trigger_type})"


class ScheduleRunLog(models.Model):
    """Append-only record of one attempted occurrence."""

    schedule = models.ForeignKey(ScheduleDefinition, on_delete=models.CASCADE, related_name="run_logs")
    scheduled_for = models.DateTimeField()
    enqueued_at = models.DateTimeField(auto_now_add=True)
    status = models.CharField(max_length=16, choices=RunStatus.choices)
    queue_item = models.ForeignKey(
        MissionQueueItem,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="schedule_run_logs",
    )
    mission_code = models.CharField(max_length=64, blank=True)
    error_message = models.TextField(blank=True)

    class Meta:
        ordering = ["-scheduled_for", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["schedule", "scheduled_for"],
                name="triggers_run_log_unique_occurrence",
            )
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.schedule_id}@{self.scheduled_for.isoformat()}:{self.status}"
