from __future__ import annotations

from django.dispatch import receiver

from missions.signals import mission_status_changed, queue_updated, statistics_updated
from missions.websocket import broadcast


@receiver(mission_status_changed)
def _on_mission_status_changed(sender, *, mission_id: int, mission_code: str, status: str, area_key: str, **kwargs) -> None:
    broadcast(
        message_type="mission_status_changed",
        payload={
            "mission_id": mission_id,
            "mission_code": mission_code,
            "status": status,
            "area_key": area_key,
        },
    )


@receiver(queue_updated)
def _on_queue_updated(sender, *, area_key: str | None = None, **kwargs) -> None:
    broadcast(message_type="queue_updated", payload={"area_key": area_key})


@receiver(statistics_updated)
def _on_statistics_updated(sender, *, area_key: str | None = None, **kwargs) -> None:
    from missions.use_cases.admission import get_stats

    broadcast(message_type="statistics_updated", payload=get_stats())
