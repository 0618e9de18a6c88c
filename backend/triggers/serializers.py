from __future__ import annotations

from rest_framework import serializers

from missions.models import MissionTemplate
from triggers.models import ScheduleDefinition, ScheduleRunLog, TriggerType
from triggers.use_cases.engine import validate_definition


class ScheduleDefinitionSerializer(serializers.ModelSerializer):
    template = serializers.PrimaryKeyRelatedField(queryset=MissionTemplate.objects.all())

    class Meta:
        model = ScheduleDefinition
        fields = (
            "id",
            "name",
            "template",
            "trigger_type",
            "cron_expression",
            "run_at",
            "timezone",
            "enabled",
            "skip_if_running",
            "last_run_at",
            "last_status",
            "last_error",
            "next_run_at",
            "created_at",
            "updated_at",
        )
        read_only_fields = (
            "id",
            "last_run_at",
            "last_status",
            "last_error",
            "next_run_at",
            "created_at",
            "updated_at",
        )

    def validate(self, attrs):
        instance = self.instance

        def current(name, default=None):
            if name in attrs:
                return attrs[name]
            return getattr(instance, name, default) if instance is not None else default

        cleaned = validate_definition(
            trigger_type=current("trigger_type", TriggerType.RECURRING),
            cron_expression=current("cron_expression", "") or "",
            run_at=current("run_at"),
            tz_name=current("timezone", "") or "",
        )
        attrs.update(cleaned)
        return attrs


class ScheduleRunLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = ScheduleRunLog
        fields = (
            "id",
            "schedule",
            "scheduled_for",
            "enqueued_at",
            "status",
            "queue_item",
            "mission_code",
            "error_message",
        )
        read_only_fields = fields
