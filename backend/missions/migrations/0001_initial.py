from __future__ import annotations

import django.db.models.deletion
from django.db import migrations, models

QUEUE_STATUS_CHOICES = [
    ("waiting", "Waiting"),
    ("executing", "Executing"),
    ("complete", "Complete"),
    ("error", "Error"),
    ("cancelled", "Cancelled"),
]
TRIGGER_SOURCE_CHOICES = [("manual", "Manual"), ("scheduled", "Scheduled"), ("api", "API")]
REMOTE_STATUS_CHOICES = [
    ("created", "Created"),
    ("executing", "Executing"),
    ("waiting", "Waiting"),
    ("cancelling", "Cancelling"),
    ("complete", "Complete"),
    ("cancelled", "Cancelled"),
    ("manual_complete", "Manual complete"),
    ("warning", "Warning"),
    ("startup_error", "Startup error"),
    ("unknown", "Unknown"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="AreaConcurrencyConfig",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("area_key", models.CharField(max_length=64, unique=True)),
                ("max_concurrent_robots", models.PositiveIntegerField(default=10)),
                ("queueing_enabled", models.BooleanField(default=True)),
                ("default_priority", models.IntegerField(default=5)),
                ("max_consecutive_opportunistic", models.PositiveIntegerField(default=1)),
                ("active_count", models.PositiveIntegerField(default=0)),
                ("total_dispatched", models.PositiveIntegerField(default=0)),
                ("opportunistic_dispatched", models.PositiveIntegerField(default=0)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["area_key"]},
        ),
        migrations.CreateModel(
            name="Zone",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=64, unique=True)),
                ("name", models.CharField(blank=True, max_length=150)),
                ("area_key", models.CharField(blank=True, max_length=64)),
                ("node_codes", models.JSONField(blank=True, default=list)),
            ],
            options={"ordering": ["code"]},
        ),
        migrations.CreateModel(
            name="MissionTemplate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=150, unique=True)),
                ("description", models.TextField(blank=True)),
                ("area_key", models.CharField(max_length=64)),
                ("priority", models.IntegerField(blank=True, null=True)),
                ("steps", models.JSONField(default=list)),
                ("robot_models", models.JSONField(blank=True, default=list)),
                ("robot_ids", models.JSONField(blank=True, default=list)),
                ("container_code", models.CharField(blank=True, max_length=64)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["name"]},
        ),
        migrations.CreateModel(
            name="MissionQueueItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("mission_code", models.CharField(max_length=64)),
                ("mission_name", models.CharField(blank=True, max_length=150)),
                ("area_key", models.CharField(max_length=64)),
                ("priority", models.IntegerField(default=5)),
                ("status", models.CharField(choices=QUEUE_STATUS_CHOICES, default="waiting", max_length=16)),
                ("trigger_source", models.CharField(choices=TRIGGER_SOURCE_CHOICES, default="api", max_length=16)),
                ("steps", models.JSONField(default=list)),
                ("request_payload", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("error_message", models.TextField(blank=True)),
                ("submitted_to_remote", models.BooleanField(default=False)),
                ("submitted_at", models.DateTimeField(blank=True, null=True)),
                ("submit_error", models.TextField(blank=True)),
                ("assigned_robot_id", models.CharField(blank=True, max_length=64)),
                ("is_opportunistic", models.BooleanField(default=False)),
                ("remote_status", models.CharField(blank=True, choices=REMOTE_STATUS_CHOICES, max_length=24)),
                ("last_polled_at", models.DateTimeField(blank=True, null=True)),
                ("robot_node_code", models.CharField(blank=True, max_length=64)),
                ("robot_battery_level", models.FloatField(blank=True, null=True)),
                ("robot_status", models.CharField(blank=True, max_length=32)),
                ("current_step_index", models.IntegerField(blank=True, null=True)),
                ("progress_percentage", models.FloatField(default=0.0)),
                ("waiting_for_resume", models.BooleanField(default=False)),
                ("current_waypoint", models.CharField(blank=True, max_length=64)),
                ("visited_waypoints", models.JSONField(blank=True, default=list)),
                (
                    "template",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="queue_items",
                        to="missions.missiontemplate",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(
                        fields=["area_key", "status", "-priority", "created_at"],
                        name="missions_queue_serving_idx",
                    ),
                    models.Index(fields=["status"], name="missions_queue_status_idx"),
                    models.Index(fields=["mission_code"], name="missions_queue_code_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status__in", ["waiting", "executing"])),
                        fields=("mission_code",),
                        name="missions_queue_item_unique_active_code",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="MissionHistory",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("mission_code", models.CharField(max_length=64)),
                ("mission_name", models.CharField(blank=True, max_length=150)),
                ("area_key", models.CharField(blank=True, max_length=64)),
                ("template_id", models.BigIntegerField(blank=True, null=True)),
                ("trigger_source", models.CharField(choices=TRIGGER_SOURCE_CHOICES, max_length=16)),
                ("status", models.CharField(choices=QUEUE_STATUS_CHOICES, max_length=16)),
                ("assigned_robot_id", models.CharField(blank=True, max_length=64)),
                ("error_message", models.TextField(blank=True)),
                ("created_at", models.DateTimeField()),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
                ("completed_at", models.DateTimeField()),
                ("archived_at", models.DateTimeField(auto_now_add=True)),
                (
                    "queue_item",
                    models.OneToOneField(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="history",
                        to="missions.missionqueueitem",
                    ),
                ),
            ],
            options={
                "ordering": ["-completed_at"],
                "indexes": [
                    models.Index(fields=["mission_code"], name="missions_history_code_idx"),
                    models.Index(fields=["status", "-completed_at"], name="missions_history_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ManualPauseRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("robot_id", models.CharField(max_length=64)),
                ("mission_code", models.CharField(max_length=64)),
                ("waypoint_code", models.CharField(max_length=64)),
                ("reason", models.CharField(blank=True, max_length=200)),
                ("pause_start", models.DateTimeField()),
                ("pause_end", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["robot_id", "-pause_start"], name="missions_pause_robot_idx"),
                    models.Index(fields=["mission_code"], name="missions_pause_code_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("pause_end__isnull", True)),
                        fields=("mission_code",),
                        name="missions_manual_pause_one_open_per_mission",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="RobotOpportunityState",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("robot_id", models.CharField(max_length=64, unique=True)),
                ("area_key", models.CharField(blank=True, max_length=64)),
                ("consecutive_opportunistic", models.PositiveIntegerField(default=0)),
                ("last_mission_code", models.CharField(blank=True, max_length=64)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
    ]
