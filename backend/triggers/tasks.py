"""Background tasks for the triggers app."""

from __future__ import annotations

import logging

from django.conf import settings

from scheduler import Every, register

logger = logging.getLogger(__name__)


def _tick_interval() -> int:
    trigger_settings = getattr(settings, "MISSION_TRIGGERS", {}) or {}
    return max(1, int(trigger_settings.get("TICK_INTERVAL_SECONDS", 30)))


@register(
    "mission_schedule_tick",
    schedule=Every(seconds=_tick_interval(), jitter=2),
    description="Enqueues missions for due cron and one-time schedules.",
)
def mission_schedule_tick() -> int:
    from triggers.use_cases.engine import tick

    outcomes = tick()
    if outcomes:
        logger.info(
            "Schedule tick ran %d schedule(s): %s",
            len(outcomes),
            ", ".join(f"{o.schedule_id}={o.status}" for o in outcomes),
        )
    return len(outcomes)
