from __future__ import annotations

from django.urls import path

from . import views

urlpatterns = [
    path("queue/", views.QueueView.as_view(), name="missions-queue"),
    path("queue/process/", views.QueueProcessView.as_view(), name="missions-queue-process"),
    path("queue/<int:queue_id>/", views.QueueItemDetailView.as_view(), name="missions-queue-item"),
    path("queue/<int:queue_id>/cancel/", views.QueueItemCancelView.as_view(), name="missions-queue-item-cancel"),
    path(
        "queue/<int:queue_id>/progress/",
        views.QueueItemProgressView.as_view(),
        name="missions-queue-item-progress",
    ),
    path("stats/", views.QueueStatsView.as_view(), name="missions-stats"),
    path("history/", views.MissionHistoryView.as_view(), name="missions-history"),
    path("waiting-for-resume/", views.WaitingForResumeView.as_view(), name="missions-waiting-for-resume"),
    path("<str:mission_code>/resume/", views.MissionResumeView.as_view(), name="missions-resume"),
]
