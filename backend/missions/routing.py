from __future__ import annotations

from django.urls import path

from missions.consumers import MissionsConsumer

websocket_urlpatterns = [
    path("ws/missions/", MissionsConsumer.as_asgi()),
]
