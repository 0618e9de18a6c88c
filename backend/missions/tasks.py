"""Background tasks for the missions app."""

from __future__ import annotations

import logging

from django.conf import settings

from scheduler import Every, register

logger = logging.getLogger(__name__)


def _interval(key: str, default: int) -> int:
    queue_settings = getattr(settings, "MISSION_QUEUE", {}) or {}
    return max(1, int(queue_settings.get(key, default)))


def _controller_configured() -> bool:
    """Gate remote polling on a configured controller URL (no network IO)."""
    controller = getattr(settings, "AMR_CONTROLLER", {}) or {}
    return bool(str(controller.get("BASE_URL") or "").strip())


@register(
    "process_mission_queue",
    schedule=Every(seconds=_interval("PROCESS_INTERVAL_SECONDS", 5)),
    description="Dispatches waiting missions into free area slots.",
    enabled_when=_controller_configured,
)
def process_mission_queue() -> int:
    from missions.use_cases.admission import process_queue

    dispatched = process_queue()
    if dispatched:
        logger.info("Queue pass dispatched %d mission(s)", dispatched)
    return dispatched


@register(
    "reconcile_missions",
    schedule=Every(seconds=_interval("RECONCILE_INTERVAL_SECONDS", 10)),
    description="Polls the AMR controller and syncs executing missions.",
    enabled_when=_controller_configured,
)
def reconcile_missions() -> dict:
    from missions.use_cases.reconciliation import reconcile

    return reconcile().as_dict()
