from __future__ import annotations

import logging

from django.db import transaction
from django.utils import timezone

from missions.models import TERMINAL_STATUSES, ManualPauseRecord, MissionHistory, MissionQueueItem, QueueStatus
from missions.notifications import notify_status_changed
from missions.slots import release_slot
from missions.state_machine import transition

logger = logging.getLogger(__name__)


def finalize(
    item: MissionQueueItem,
    *,
    status: str,
    error_message: str = "",
    now=None,
) -> bool:
    """
    Move an item to a terminal status and archive it.

    History, slot release and notification only happen for the caller that
    wins the status compare-and-set, so finalizing the same item twice is a
    no-op the second time. Returns True when this call did the work.
    """
    if item.status in TERMINAL_STATUSES:
        return False

    now = now or timezone.now()
    held_slot = item.status == QueueStatus.EXECUTING

    with transaction.atomic():
        fields = {"waiting_for_resume": False}
        if error_message:
            fields["error_message"] = error_message
        if not transition(item, state_to=status, now=now, **fields):
            return False

        MissionHistory.objects.create(
            queue_item=item,
            mission_code=item.mission_code,
            mission_name=item.mission_name,
            area_key=item.area_key,
            template_id=item.template_id,
            trigger_source=item.trigger_source,
            status=status,
            assigned_robot_id=item.assigned_robot_id,
            error_message=error_message,
            created_at=item.created_at,
            processed_at=item.processed_at,
            completed_at=now,
        )
        ManualPauseRecord.objects.filter(mission_code=item.mission_code, pause_end__isnull=True).update(
            pause_end=now,
        )
        if held_slot:
            release_slot(item.area_key)
        notify_status_changed(item)

    if error_message:
        logger.warning("Mission %s finished as %s: %s", item.mission_code, status, error_message)
    return True
