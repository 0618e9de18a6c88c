from __future__ import annotations

from django.db import models
from django.db.models import Q


class QueueStatus(models.TextChoices):
    WAITING = "waiting", "Waiting"
    EXECUTING = "executing", "Executing"
    COMPLETE = "complete", "Complete"
    ERROR = "error", "Error"
    CANCELLED = "cancelled", "Cancelled"


TERMINAL_STATUSES = frozenset({QueueStatus.COMPLETE, QueueStatus.ERROR, QueueStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({QueueStatus.WAITING, QueueStatus.EXECUTING})


class TriggerSource(models.TextChoices):
    MANUAL = "manual", "Manual"
    SCHEDULED = "scheduled", "Scheduled"
    API = "api", "API"


class RemoteStatus(models.TextChoices):
    """Vendor-neutral job status reported by the AMR controller."""

    CREATED = "created", "Created"
    EXECUTING = "executing", "Executing"
    WAITING = "waiting", "Waiting"
    CANCELLING = "cancelling", "Cancelling"
    COMPLETE = "complete", "Complete"
    CANCELLED = "cancelled", "Cancelled"
    MANUAL_COMPLETE = "manual_complete", "Manual complete"
    WARNING = "warning", "Warning"
    STARTUP_ERROR = "startup_error", "Startup error"
    UNKNOWN = "unknown", "Unknown"


class AreaConcurrencyConfig(models.Model):
    """
    Admission rules for one area (map code).

    `active_count` is the concurrency-slot counter; it is only changed through
    single conditional UPDATE statements in `missions.slots`.
    """

    area_key = models.CharField(max_length=64, unique=True)
    max_concurrent_robots = models.PositiveIntegerField(default=10)
    queueing_enabled = models.BooleanField(default=True)
    default_priority = models.IntegerField(default=5)
    max_consecutive_opportunistic = models.PositiveIntegerField(default=1)

    active_count = models.PositiveIntegerField(default=0)
    total_dispatched = models.PositiveIntegerField(default=0)
    opportunistic_dispatched = models.PositiveIntegerField(default=0)

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["area_key"]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.area_key} ({self.active_count}/{self.max_concurrent_robots})"


class Zone(models.Model):
    """Named map zone; steps may target a zone instead of a single node."""

    code = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=150, blank=True)
    area_key = models.CharField(max_length=64, blank=True)
    node_codes = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ["code"]

    def __str__(self) -> str:  # pragma: no cover
        return self.code


class MissionTemplate(models.Model):
    """A saved mission definition that can be enqueued on demand or by a schedule."""

    name = models.CharField(max_length=150, unique=True)
    description = models.TextField(blank=True)
    area_key = models.CharField(max_length=64)
    priority = models.IntegerField(null=True, blank=True)
    steps = models.JSONField(default=list)
    robot_models = models.JSONField(default=list, blank=True)
    robot_ids = models.JSONField(default=list, blank=True)
    container_code = models.CharField(max_length=64, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:  # pragma: no cover
        return self.name


class MissionQueueItem(models.Model):
    template = models.ForeignKey(
        MissionTemplate,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="queue_items",
    )
    mission_code = models.CharField(max_length=64)
    mission_name = models.CharField(max_length=150, blank=True)
    area_key = models.CharField(max_length=64)
    priority = models.IntegerField(default=5)
    status = models.CharField(max_length=16, choices=QueueStatus.choices, default=QueueStatus.WAITING)
    trigger_source = models.CharField(max_length=16, choices=TriggerSource.choices, default=TriggerSource.API)
    steps = models.JSONField(default=list)
    request_payload = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(blank=True)

    submitted_to_remote = models.BooleanField(default=False)
    submitted_at = models.DateTimeField(null=True, blank=True)
    submit_error = models.TextField(blank=True)

    assigned_robot_id = models.CharField(max_length=64, blank=True)
    is_opportunistic = models.BooleanField(default=False)

    remote_status = models.CharField(max_length=24, choices=RemoteStatus.choices, blank=True)
    last_polled_at = models.DateTimeField(null=True, blank=True)
    robot_node_code = models.CharField(max_length=64, blank=True)
    robot_battery_level = models.FloatField(null=True, blank=True)
    robot_status = models.CharField(max_length=32, blank=True)
    current_step_index = models.IntegerField(null=True, blank=True)
    progress_percentage = models.FloatField(default=0.0)

    waiting_for_resume = models.BooleanField(default=False)
    current_waypoint = models.CharField(max_length=64, blank=True)
    visited_waypoints = models.JSONField(default=list, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["mission_code"],
                condition=Q(status__in=["waiting", "executing"]),
                name="missions_queue_item_unique_active_code",
            )
        ]
        indexes = [
            models.Index(fields=["area_key", "status", "-priority", "created_at"], name="missions_queue_serving_idx"),
            models.Index(fields=["status"], name="missions_queue_status_idx"),
            models.Index(fields=["mission_code"], name="missions_queue_code_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.mission_code}:{self.status}"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class MissionHistory(models.Model):
    """Write-once archive row for a mission that reached a terminal status."""

    queue_item = models.OneToOneField(
        MissionQueueItem,
        null=True,
        on_delete=models.SET_NULL,
        related_name="history",
    )
    mission_code = models.CharField(max_length=64)
    mission_name = models.CharField(max_length=150, blank=True)
    area_key = models.CharField(max_length=64, blank=True)
    template_id = models.BigIntegerField(null=True, blank=True)
    trigger_source = models.CharField(max_length=16, choices=TriggerSource.choices)
    status = models.CharField(max_length=16, choices=QueueStatus.choices)
    assigned_robot_id = models.CharField(max_length=64, blank=True)
    error_message = models.TextField(blank=True)

    created_at = models.DateTimeField()
    processed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField()
    archived_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-completed_at"]
        indexes = [
            models.Index(fields=["mission_code"], name="missions_history_code_idx"),
            models.Index(fields=["status", "-completed_at"], name="missions_history_status_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.mission_code}:{self.status}"


class ManualPauseRecord(models.Model):
    robot_id = models.CharField(max_length=64)
    mission_code = models.CharField(max_length=64)
    waypoint_code = models.CharField(max_length=64)
    reason = models.CharField(max_length=200, blank=True)
    pause_start = models.DateTimeField()
    pause_end = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["mission_code"],
                condition=Q(pause_end__isnull=True),
                name="missions_manual_pause_one_open_per_mission",
            )
        ]
        indexes = [
            models.Index(fields=["robot_id", "-pause_start"], name="missions_pause_robot_idx"),
            models.Index(fields=["mission_code"], name="missions_pause_code_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.mission_code}@{self.waypoint_code}"


class RobotOpportunityState(models.Model):
    """Per-robot count of consecutive opportunistic picks (fairness bound)."""

    robot_id = models.CharField(max_length=64, unique=True)
    area_key = models.CharField(max_length=64, blank=True)
    consecutive_opportunistic = models.PositiveIntegerField(default=0)
    last_mission_code = models.CharField(max_length=64, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.robot_id}:{self.consecutive_opportunistic}"
