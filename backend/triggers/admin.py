"""
Django admin configuration for mission schedules.
"""

from django.contrib import admin

from .models import ScheduleDefinition, ScheduleRunLog


@admin.register(ScheduleDefinition)
class ScheduleDefinitionAdmin(admin.ModelAdmin):
    list_display = ["name", "template", "trigger_type", "cron_expression", "enabled", "next_run_at", "last_status"]
    list_filter = ["trigger_type", "enabled", "last_status"]
    search_fields = ["name"]
    readonly_fields = ["last_run_at", "last_status", "last_error", "claim_token", "claimed_at", "created_at", "updated_at"]


@admin.register(ScheduleRunLog)
class ScheduleRunLogAdmin(admin.ModelAdmin):
    list_display = ["schedule", "scheduled_for", "status", "mission_code", "enqueued_at"]
    list_filter = ["status"]
    search_fields = ["mission_code"]
