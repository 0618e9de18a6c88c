from __future__ import annotations

import django.db.models.deletion
from django.db import migrations, models

RUN_STATUS_CHOICES = [("queued", "Queued"), ("failed", "Failed"), ("skipped", "Skipped")]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("missions", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="ScheduleDefinition",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=150)),
                (
                    "trigger_type",
                    models.CharField(
                        choices=[("once", "Once"), ("recurring", "Recurring")],
                        default="recurring",
                        max_length=16,
                    ),
                ),
                ("cron_expression", models.CharField(blank=True, max_length=120)),
                ("run_at", models.DateTimeField(blank=True, null=True)),
                ("timezone", models.CharField(default="UTC", max_length=64)),
                ("enabled", models.BooleanField(default=True)),
                ("skip_if_running", models.BooleanField(default=False)),
                ("last_run_at", models.DateTimeField(blank=True, null=True)),
                ("last_status", models.CharField(blank=True, choices=RUN_STATUS_CHOICES, max_length=16)),
                ("last_error", models.TextField(blank=True)),
                ("next_run_at", models.DateTimeField(blank=True, null=True)),
                ("claim_token", models.UUIDField(blank=True, null=True)),
                ("claimed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "template",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="schedules",
                        to="missions.missiontemplate",
                    ),
                ),
            ],
            options={
                "ordering": ["name", "id"],
                "indexes": [
                    models.Index(fields=["enabled", "next_run_at"], name="triggers_schedule_due_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="ScheduleRunLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("scheduled_for", models.DateTimeField()),
                ("enqueued_at", models.DateTimeField(auto_now_add=True)),
                ("status", models.CharField(choices=RUN_STATUS_CHOICES, max_length=16)),
                ("mission_code", models.CharField(blank=True, max_length=64)),
                ("error_message", models.TextField(blank=True)),
                (
                    "queue_item",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="schedule_run_logs",
                        to="missions.missionqueueitem",
                    ),
                ),
                (
                    "schedule",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="run_logs",
                        to="triggers.scheduledefinition",
                    ),
                ),
            ],
            options={
                "ordering": ["-scheduled_for", "-id"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("schedule", "scheduled_for"),
                        name="triggers_run_log_unique_occurrence",
                    )
                ],
            },
        ),
    ]
