"""Schedule realtime notifications to fire after the surrounding transaction commits."""

from __future__ import annotations

import logging

from django.db import transaction

from missions.models import MissionQueueItem
from missions.signals import mission_status_changed, queue_updated, statistics_updated

logger = logging.getLogger(__name__)


def _send(signal, **kwargs) -> None:
    try:
        signal.send(sender=None, **kwargs)
    except Exception:
        logger.exception("Mission notification failed (%s)", kwargs)


def notify_status_changed(item: MissionQueueItem) -> None:
    mission_id, mission_code, status, area_key = item.pk, item.mission_code, item.status, item.area_key
    transaction.on_commit(
        lambda: _send(
            mission_status_changed,
            mission_id=mission_id,
            mission_code=mission_code,
            status=status,
            area_key=area_key,
        )
    )
    notify_queue_changed(area_key)


def notify_queue_changed(area_key: str | None = None) -> None:
    transaction.on_commit(lambda: _send(queue_updated, area_key=area_key))
    transaction.on_commit(lambda: _send(statistics_updated, area_key=area_key))
