from __future__ import annotations

from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/missions/", include("missions.urls")),
    path("api/triggers/", include("triggers.urls")),
    path("api/scheduler/", include("scheduler.urls")),
]
