from __future__ import annotations

from django.urls import path

from . import views

urlpatterns = [
    path("schedules/", views.SchedulesView.as_view(), name="triggers-schedules"),
    path("schedules/<int:schedule_id>/", views.ScheduleDetailView.as_view(), name="triggers-schedule-detail"),
    path("schedules/<int:schedule_id>/run/", views.ScheduleRunView.as_view(), name="triggers-schedule-run"),
    path("schedules/<int:schedule_id>/logs/", views.ScheduleRunLogsView.as_view(), name="triggers-schedule-logs"),
]
