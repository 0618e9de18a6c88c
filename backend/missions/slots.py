"""Per-area concurrency slots backed by `AreaConcurrencyConfig.active_count`."""

from __future__ import annotations

import logging

from django.conf import settings
from django.db import IntegrityError
from django.db.models import F

from missions.models import AreaConcurrencyConfig, MissionQueueItem, QueueStatus

logger = logging.getLogger(__name__)


def _queue_settings() -> dict:
    return getattr(settings, "MISSION_QUEUE", {}) or {}


def get_area_config(area_key: str) -> AreaConcurrencyConfig:
    """Return the area's config row, creating it from settings defaults when missing."""
    config = AreaConcurrencyConfig.objects.filter(area_key=area_key).first()
    if config is not None:
        return config

    defaults = _queue_settings()
    try:
        config, _ = AreaConcurrencyConfig.objects.get_or_create(
            area_key=area_key,
            defaults={
                "max_concurrent_robots": int(defaults.get("DEFAULT_MAX_CONCURRENT_ROBOTS", 10)),
                "default_priority": int(defaults.get("DEFAULT_PRIORITY", 5)),
                "max_consecutive_opportunistic": int(defaults.get("DEFAULT_MAX_CONSECUTIVE_OPPORTUNISTIC", 1)),
            },
        )
    except IntegrityError:
        config = AreaConcurrencyConfig.objects.get(area_key=area_key)
    return config


def try_acquire_slot(area_key: str, *, bypass_limit: bool = False, opportunistic: bool = False) -> bool:
    """
    Take one slot in `area_key`.

    A single conditional UPDATE both checks and increments the counter, so
    concurrent callers can never push it past `max_concurrent_robots`.
    `bypass_limit` is used for areas with queueing disabled.
    """
    get_area_config(area_key)
    qs = AreaConcurrencyConfig.objects.filter(area_key=area_key)
    if not bypass_limit:
        qs = qs.filter(active_count__lt=F("max_concurrent_robots"))

    updates = {
        "active_count": F("active_count") + 1,
        "total_dispatched": F("total_dispatched") + 1,
    }
    if opportunistic:
        updates["opportunistic_dispatched"] = F("opportunistic_dispatched") + 1

    acquired = bool(qs.update(**updates))
    if not acquired:
        logger.debug("No free slot in area %s", area_key)
    return acquired


def release_slot(area_key: str) -> bool:
    released = bool(
        AreaConcurrencyConfig.objects.filter(area_key=area_key, active_count__gt=0).update(
            active_count=F("active_count") - 1
        )
    )
    if not released:
        logger.warning("Slot release for area %s found the counter already at zero", area_key)
    return released


def available_slots(config: AreaConcurrencyConfig) -> int:
    return max(0, int(config.max_concurrent_robots) - int(config.active_count))


def resync_area_slots() -> dict[str, tuple[int, int]]:
    """
    Recompute every area's counter from its Executing items.

    Returns {area_key: (previous, current)} for areas whose counter changed.
    """
    executing: dict[str, int] = {}
    for area_key in MissionQueueItem.objects.filter(status=QueueStatus.EXECUTING).values_list("area_key", flat=True):
        executing[area_key] = executing.get(area_key, 0) + 1

    for area_key in executing:
        get_area_config(area_key)

    changed: dict[str, tuple[int, int]] = {}
    for config in AreaConcurrencyConfig.objects.all():
        actual = executing.get(config.area_key, 0)
        if config.active_count == actual:
            continue
        AreaConcurrencyConfig.objects.filter(pk=config.pk).update(active_count=actual)
        changed[config.area_key] = (config.active_count, actual)
        logger.warning(
            "Resynced area %s slot counter: %d -> %d",
            config.area_key,
            config.active_count,
            actual,
        )
    return changed
