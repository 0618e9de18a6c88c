"""
Schedule trigger engine.

Each tick scans enabled schedules whose `next_run_at` has passed, claims each
one with a compare-and-set on `claim_token`, enqueues the template's mission,
records a run log and advances `next_run_at`. A schedule that is far overdue
runs once and then moves to its next future occurrence; missed intervals are
not backfilled.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from config.domain_exceptions import DomainError, NotFoundError, ValidationError
from missions.errors import ScheduleClaimConflict
from missions.models import ACTIVE_STATUSES, MissionQueueItem, TriggerSource
from missions.use_cases import admission
from triggers.cron import is_valid_timezone, next_occurrence, validate_cron_expression
from triggers.models import RunStatus, ScheduleDefinition, ScheduleRunLog, TriggerType

logger = logging.getLogger(__name__)


def _trigger_settings() -> dict[str, Any]:
    return getattr(settings, "MISSION_TRIGGERS", {}) or {}


@dataclass(frozen=True)
class RunOutcome:
    schedule_id: int
    status: str
    scheduled_for: datetime
    queue_id: int | None = None
    mission_code: str = ""
    error: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "status": self.status,
            "scheduled_for": self.scheduled_for.isoformat(),
            "queue_id": self.queue_id,
            "mission_code": self.mission_code,
            "error": self.error,
        }


def compute_next_run(schedule: ScheduleDefinition, *, after: datetime) -> datetime | None:
    if schedule.trigger_type == TriggerType.ONCE:
        run_at = schedule.run_at
        if run_at is None:
            return None
        # Still pending: in the future, or due and not yet run since it was set.
        if run_at > after or schedule.last_run_at is None or schedule.last_run_at < run_at:
            return run_at
        return None
    return next_occurrence(schedule.cron_expression, after=after, tz_name=schedule.timezone)


def validate_definition(
    *,
    trigger_type: str,
    cron_expression: str = "",
    run_at: datetime | None = None,
    tz_name: str = "",
) -> dict[str, Any]:
    """Check a schedule definition; returns the normalized fields."""
    cleaned: dict[str, Any] = {}
    if trigger_type == TriggerType.RECURRING:
        cleaned["cron_expression"] = validate_cron_expression(cron_expression)
    elif trigger_type == TriggerType.ONCE:
        if run_at is None:
            raise ValidationError("run_at is required for one-time schedules.")
    else:
        raise ValidationError(f"Unknown trigger_type '{trigger_type}'.")

    if tz_name and not is_valid_timezone(tz_name):
        logger.warning("Schedule timezone %r is unknown; occurrences will be evaluated in UTC", tz_name)
    return cleaned


def refresh_next_run(schedule: ScheduleDefinition, *, now: datetime | None = None) -> ScheduleDefinition:
    """Recompute `next_run_at` after a definition was created or edited."""
    now = now or timezone.now()
    schedule.next_run_at = compute_next_run(schedule, after=now) if schedule.enabled else None
    if schedule.enabled and schedule.next_run_at is None:
        logger.info("Schedule %s has no pending occurrence; set a future run_at to run it again", schedule.pk)
    schedule.save(update_fields=["next_run_at", "updated_at"])
    return schedule


def _claim_timeout() -> timedelta:
    return timedelta(seconds=int(_trigger_settings().get("CLAIM_TIMEOUT_SECONDS", 300)))


def claim(schedule: ScheduleDefinition, *, now: datetime, due_only: bool = True) -> uuid.UUID:
    """
    Take the exclusive claim on `schedule`.

    With `due_only` the claim also requires the schedule to still be enabled
    and pointing at the occurrence the caller saw, so a second process that
    read the same due row cannot run it again. Raises ScheduleClaimConflict
    when another process won.
    """
    token = uuid.uuid4()
    qs = ScheduleDefinition.objects.filter(pk=schedule.pk).filter(
        Q(claim_token__isnull=True) | Q(claimed_at__lt=now - _claim_timeout())
    )
    if due_only:
        qs = qs.filter(enabled=True, next_run_at=schedule.next_run_at)
    if not qs.update(claim_token=token, claimed_at=now):
        raise ScheduleClaimConflict(f"Schedule {schedule.pk} is claimed by another process.")
    schedule.claim_token = token
    schedule.claimed_at = now
    return token


def release(schedule: ScheduleDefinition, token: uuid.UUID) -> None:
    ScheduleDefinition.objects.filter(pk=schedule.pk, claim_token=token).update(claim_token=None, claimed_at=None)
    schedule.claim_token = None
    schedule.claimed_at = None


def _has_running_mission(schedule: ScheduleDefinition) -> bool:
    return MissionQueueItem.objects.filter(template_id=schedule.template_id, status__in=ACTIVE_STATUSES).exists()


def _enqueue(schedule: ScheduleDefinition) -> admission.EnqueueResult:
    return admission.enqueue(
        {
            "template_id": schedule.template_id,
            "trigger_source": TriggerSource.SCHEDULED,
            "mission_name": schedule.template.name,
        }
    )


def _fire(schedule: ScheduleDefinition, *, scheduled_for: datetime) -> RunOutcome:
    if schedule.skip_if_running and _has_running_mission(schedule):
        logger.info("Schedule %s skipped: a mission from its template is still active", schedule.pk)
        return RunOutcome(
            schedule_id=schedule.pk,
            status=RunStatus.SKIPPED,
            scheduled_for=scheduled_for,
            error="A mission from this template is still waiting or executing.",
        )

    try:
        result = _enqueue(schedule)
    except DomainError as exc:
        logger.warning("Schedule %s failed to enqueue: %s", schedule.pk, exc)
        return RunOutcome(schedule_id=schedule.pk, status=RunStatus.FAILED, scheduled_for=scheduled_for, error=str(exc))
    except Exception as exc:
        logger.exception("Schedule %s raised while enqueueing", schedule.pk)
        return RunOutcome(schedule_id=schedule.pk, status=RunStatus.FAILED, scheduled_for=scheduled_for, error=str(exc))

    if not result.success:
        logger.warning("Schedule %s mission %s was not submitted: %s", schedule.pk, result.mission_code, result.message)
        return RunOutcome(
            schedule_id=schedule.pk,
            status=RunStatus.FAILED,
            scheduled_for=scheduled_for,
            queue_id=result.queue_id,
            mission_code=result.mission_code,
            error=result.message,
        )

    return RunOutcome(
        schedule_id=schedule.pk,
        status=RunStatus.QUEUED,
        scheduled_for=scheduled_for,
        queue_id=result.queue_id,
        mission_code=result.mission_code,
    )


def _record(schedule: ScheduleDefinition, outcome: RunOutcome) -> None:
    try:
        with transaction.atomic():
            ScheduleRunLog.objects.create(
                schedule=schedule,
                scheduled_for=outcome.scheduled_for,
                status=outcome.status,
                queue_item_id=outcome.queue_id,
                mission_code=outcome.mission_code,
                error_message=outcome.error,
            )
    except IntegrityError:
        logger.warning("Run log for schedule %s at %s already exists", schedule.pk, outcome.scheduled_for)


def _execute(schedule: ScheduleDefinition, *, token: uuid.UUID, now: datetime, scheduled_for: datetime, advance: bool):
    try:
        outcome = _fire(schedule, scheduled_for=scheduled_for)
        _record(schedule, outcome)

        updates: dict[str, Any] = {
            "last_run_at": now,
            "last_status": outcome.status,
            "last_error": outcome.error if outcome.status == RunStatus.FAILED else "",
        }
        if advance:
            if schedule.trigger_type == TriggerType.ONCE:
                updates["next_run_at"] = None
                updates["enabled"] = False
            else:
                try:
                    updates["next_run_at"] = next_occurrence(
                        schedule.cron_expression, after=now, tz_name=schedule.timezone
                    )
                except ValidationError as exc:
                    logger.warning("Schedule %s has an invalid cron expression; disabling: %s", schedule.pk, exc)
                    updates["next_run_at"] = None
                    updates["enabled"] = False
        ScheduleDefinition.objects.filter(pk=schedule.pk, claim_token=token).update(**updates)
        for key, value in updates.items():
            setattr(schedule, key, value)
        return outcome
    finally:
        release(schedule, token)


def run_due_schedule(schedule: ScheduleDefinition, *, now: datetime | None = None) -> RunOutcome | None:
    """Claim and run one due schedule. Returns None when another process holds it."""
    now = now or timezone.now()
    scheduled_for = schedule.next_run_at
    if scheduled_for is None:
        return None
    try:
        token = claim(schedule, now=now)
    except ScheduleClaimConflict as exc:
        logger.debug("%s", exc)
        return None
    return _execute(schedule, token=token, now=now, scheduled_for=scheduled_for, advance=True)


def run_now(schedule_id: int) -> RunOutcome:
    """Trigger a schedule immediately without changing its next occurrence."""
    schedule = ScheduleDefinition.objects.select_related("template").filter(pk=schedule_id).first()
    if schedule is None:
        raise NotFoundError(f"Schedule {schedule_id} not found.")
    now = timezone.now()
    token = claim(schedule, now=now, due_only=False)
    return _execute(schedule, token=token, now=now, scheduled_for=now, advance=False)


def tick(*, now: datetime | None = None) -> list[RunOutcome]:
    """Run every due schedule once. Schedules claimed elsewhere are skipped."""
    now = now or timezone.now()
    limit = max(1, int(_trigger_settings().get("MAX_DUE_PER_TICK", 50)))
    due = list(
        ScheduleDefinition.objects.select_related("template")
        .filter(enabled=True, next_run_at__isnull=False, next_run_at__lte=now)
        .order_by("next_run_at", "pk")[:limit]
    )

    outcomes: list[RunOutcome] = []
    for schedule in due:
        outcome = run_due_schedule(schedule, now=now)
        if outcome is not None:
            outcomes.append(outcome)
    return outcomes
