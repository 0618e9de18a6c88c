"""Timezone-aware cron evaluation for schedule definitions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone as dt_timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import CroniterBadCronError, croniter

from config.domain_exceptions import ValidationError

logger = logging.getLogger(__name__)

ALIASES = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}


def normalize_expression(expression: str) -> str:
    value = " ".join((expression or "").split())
    return ALIASES.get(value.lower(), value)


def validate_cron_expression(expression: str) -> str:
    """Return the normalized 5-field expression or raise ValidationError."""
    normalized = normalize_expression(expression)
    if not normalized:
        raise ValidationError("cron_expression is required for recurring schedules.")
    if len(normalized.split(" ")) != 5 or not croniter.is_valid(normalized):
        raise ValidationError(f"Invalid cron expression '{expression}'.")
    return normalized


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Unknown timezone names fall back to UTC."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown schedule timezone %r; using UTC", name)
        return ZoneInfo("UTC")


def is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def next_occurrence(expression: str, *, after: datetime, tz_name: str | None = "UTC") -> datetime:
    """
    First occurrence strictly after `after`, evaluated in `tz_name` wall-clock
    time and returned in UTC.
    """
    tz = resolve_timezone(tz_name)
    local_after = after.astimezone(tz)
    try:
        it = croniter(normalize_expression(expression), local_after)
    except (CroniterBadCronError, ValueError, KeyError) as exc:
        raise ValidationError(f"Invalid cron expression '{expression}'.") from exc
    return it.get_next(datetime).astimezone(dt_timezone.utc)
