from __future__ import annotations

from rest_framework import serializers

from missions.models import MissionHistory, MissionQueueItem, QueueStatus, TriggerSource


class MissionStepSerializer(serializers.Serializer):
    sequence = serializers.IntegerField(required=False, min_value=0)
    position = serializers.CharField(max_length=64)
    type = serializers.CharField(required=False, default="NODE_POINT")
    put_down = serializers.BooleanField(required=False, default=False)
    pass_strategy = serializers.CharField(required=False, default="AUTO")
    waiting_millis = serializers.IntegerField(required=False, default=0, min_value=0)


class MissionQueueItemSerializer(serializers.ModelSerializer):
    queue_position = serializers.SerializerMethodField()

    class Meta:
        model = MissionQueueItem
        fields = (
            "id",
            "mission_code",
            "mission_name",
            "template",
            "area_key",
            "priority",
            "status",
            "trigger_source",
            "steps",
            "request_payload",
            "created_at",
            "processed_at",
            "completed_at",
            "error_message",
            "submitted_to_remote",
            "submitted_at",
            "submit_error",
            "assigned_robot_id",
            "is_opportunistic",
            "remote_status",
            "last_polled_at",
            "robot_node_code",
            "robot_battery_level",
            "robot_status",
            "current_step_index",
            "progress_percentage",
            "waiting_for_resume",
            "current_waypoint",
            "visited_waypoints",
            "queue_position",
        )
        read_only_fields = fields

    def get_queue_position(self, obj: MissionQueueItem) -> int | None:
        if obj.status != QueueStatus.WAITING:
            return None
        from missions.use_cases.admission import get_queue_position

        return get_queue_position(obj)


class EnqueueSerializer(serializers.Serializer):
    mission_code = serializers.CharField(required=False, allow_blank=True, max_length=64)
    mission_name = serializers.CharField(required=False, allow_blank=True, max_length=150)
    area_key = serializers.CharField(required=False, allow_blank=True, max_length=64)
    priority = serializers.IntegerField(required=False, allow_null=True)
    steps = MissionStepSerializer(many=True, required=False)
    template_id = serializers.IntegerField(required=False, allow_null=True)
    trigger_source = serializers.ChoiceField(choices=TriggerSource.choices, required=False, default=TriggerSource.API)
    robot_ids = serializers.ListField(child=serializers.CharField(), required=False, allow_empty=True)
    robot_models = serializers.ListField(child=serializers.CharField(), required=False, allow_empty=True)
    container_code = serializers.CharField(required=False, allow_blank=True, max_length=64)
    require_immediate = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if not attrs.get("template_id") and not attrs.get("area_key"):
            raise serializers.ValidationError({"area_key": ["This field is required without a template."]})
        if not attrs.get("template_id") and not attrs.get("steps"):
            raise serializers.ValidationError({"steps": ["At least one step is required without a template."]})
        return attrs


class QueueItemUpdateSerializer(serializers.Serializer):
    priority = serializers.IntegerField(required=False)
    steps = MissionStepSerializer(many=True, required=False)


class CancelSerializer(serializers.Serializer):
    mode = serializers.ChoiceField(choices=("FORCE", "NORMAL"), required=False, default="FORCE")
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=200)


class MissionHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = MissionHistory
        fields = (
            "id",
            "queue_item",
            "mission_code",
            "mission_name",
            "area_key",
            "template_id",
            "trigger_source",
            "status",
            "assigned_robot_id",
            "error_message",
            "created_at",
            "processed_at",
            "completed_at",
            "archived_at",
        )
        read_only_fields = fields
