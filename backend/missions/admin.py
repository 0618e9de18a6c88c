"""
Django admin configuration for missions.
"""

from django.contrib import admin

from .models import (
    AreaConcurrencyConfig,
    ManualPauseRecord,
    MissionHistory,
    MissionQueueItem,
    MissionTemplate,
    Zone,
)


@admin.register(AreaConcurrencyConfig)
class AreaConcurrencyConfigAdmin(admin.ModelAdmin):
    list_display = [
        "area_key",
        "max_concurrent_robots",
        "active_count",
        "queueing_enabled",
        "default_priority",
        "max_consecutive_opportunistic",
    ]
    list_filter = ["queueing_enabled"]
    search_fields = ["area_key"]
    readonly_fields = ["active_count", "total_dispatched", "opportunistic_dispatched", "updated_at"]


@admin.register(Zone)
class ZoneAdmin(admin.ModelAdmin):
    list_display = ["code", "name", "area_key"]
    search_fields = ["code", "name"]


@admin.register(MissionTemplate)
class MissionTemplateAdmin(admin.ModelAdmin):
    list_display = ["name", "area_key", "priority", "updated_at"]
    search_fields = ["name"]
    readonly_fields = ["created_at", "updated_at"]


@admin.register(MissionQueueItem)
class MissionQueueItemAdmin(admin.ModelAdmin):
    """Read-mostly view; status changes go through the queue use cases."""

    list_display = [
        "mission_code",
        "area_key",
        "priority",
        "status",
        "assigned_robot_id",
        "remote_status",
        "progress_percentage",
        "created_at",
    ]
    list_filter = ["status", "area_key", "trigger_source", "waiting_for_resume"]
    search_fields = ["mission_code", "mission_name", "assigned_robot_id"]
    readonly_fields = [
        "status",
        "created_at",
        "processed_at",
        "completed_at",
        "submitted_to_remote",
        "submitted_at",
        "remote_status",
        "last_polled_at",
    ]
    ordering = ["-created_at"]


@admin.register(MissionHistory)
class MissionHistoryAdmin(admin.ModelAdmin):
    list_display = ["mission_code", "area_key", "status", "completed_at"]
    list_filter = ["status", "area_key"]
    search_fields = ["mission_code"]

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(ManualPauseRecord)
class ManualPauseRecordAdmin(admin.ModelAdmin):
    list_display = ["mission_code", "robot_id", "waypoint_code", "pause_start", "pause_end"]
    search_fields = ["mission_code", "robot_id"]
