"""
Queue admission: decide between immediate dispatch and queueing, and serve
each area's Waiting items as slots free up.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Q
from django.utils import timezone

from config.domain_exceptions import NotFoundError, ValidationError
from missions.correlator import ZoneInfo
from missions.errors import AdmissionConflict, DuplicateMissionCode, TransitionError
from missions.gateways.amr_controller import AmrControllerError, AmrControllerGateway, MissionSpec
from missions.models import (
    ACTIVE_STATUSES,
    AreaConcurrencyConfig,
    MissionQueueItem,
    MissionTemplate,
    QueueStatus,
    RobotOpportunityState,
    TriggerSource,
)
from missions.notifications import notify_queue_changed, notify_status_changed
from missions.slots import available_slots, get_area_config, release_slot, try_acquire_slot
from missions.state_machine import transition
from missions.steps import MissionStep, load_steps, parse_steps
from missions.use_cases.lifecycle import finalize
from missions.zones import load_zones

logger = logging.getLogger(__name__)

_CANDIDATE_WINDOW = 50


def _gateway(gateway: AmrControllerGateway | None) -> AmrControllerGateway:
    if gateway is not None:
        return gateway
    from missions.gateways.amr_controller import default_amr_controller_gateway

    return default_amr_controller_gateway


def generate_mission_code(now=None) -> str:
    prefix = str((getattr(settings, "MISSION_QUEUE", {}) or {}).get("MISSION_CODE_PREFIX") or "mission")
    now = now or timezone.now()
    return f"{prefix}{now:%Y%m%d%H%M%S}{uuid.uuid4().hex[:6]}"


def _string_list(value: Any, *, name: str) -> list[str]:
    if value in (None, ""):
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{name} must be a list.")
    return [str(v).strip() for v in value if str(v).strip()]


@dataclass
class MissionRequest:
    area_key: str
    steps: list[MissionStep]
    priority: int | None = None
    mission_code: str = ""
    mission_name: str = ""
    template_id: int | None = None
    trigger_source: str = TriggerSource.API
    robot_ids: list[str] = field(default_factory=list)
    robot_models: list[str] = field(default_factory=list)
    container_code: str = ""
    require_immediate: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "MissionRequest":
        """Validate an inbound descriptor; template fields fill anything not given."""
        if not isinstance(data, Mapping):
            raise ValidationError("Mission request must be an object.")

        template = None
        template_id = data.get("template_id")
        if template_id not in (None, ""):
            template = MissionTemplate.objects.filter(pk=template_id).first()
            if template is None:
                raise NotFoundError(f"Mission template {template_id} not found.")

        area_key = str(data.get("area_key") or (template.area_key if template else "") or "").strip()
        if not area_key:
            raise ValidationError("area_key is required.")

        raw_steps = data.get("steps")
        if raw_steps in (None, []) and template is not None:
            raw_steps = template.steps
        steps = parse_steps(raw_steps)

        priority = data.get("priority")
        if priority in (None, "") and template is not None:
            priority = template.priority
        if priority not in (None, ""):
            try:
                priority = int(priority)
            except (TypeError, ValueError) as exc:
                raise ValidationError("priority must be an integer.") from exc
        else:
            priority = None

        trigger_source = str(data.get("trigger_source") or TriggerSource.API)
        if trigger_source not in TriggerSource.values:
            raise ValidationError(f"Unknown trigger_source '{trigger_source}'.")

        mission_code = str(data.get("mission_code") or "").strip()
        if len(mission_code) > 64:
            raise ValidationError("mission_code must be at most 64 characters.")

        return cls(
            area_key=area_key,
            steps=steps,
            priority=priority,
            mission_code=mission_code,
            mission_name=str(data.get("mission_name") or (template.name if template else "")).strip(),
            template_id=template.pk if template else None,
            trigger_source=trigger_source,
            robot_ids=_string_list(data.get("robot_ids") or (template.robot_ids if template else None), name="robot_ids"),
            robot_models=_string_list(
                data.get("robot_models") or (template.robot_models if template else None), name="robot_models"
            ),
            container_code=str(data.get("container_code") or (template.container_code if template else "") or ""),
            require_immediate=bool(data.get("require_immediate", False)),
        )


@dataclass(frozen=True)
class EnqueueResult:
    queue_id: int
    mission_code: str
    execute_immediately: bool
    queue_position: int | None = None
    success: bool = True
    message: str = ""
    status: str = QueueStatus.WAITING

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status,
            "execute_immediately": self.execute_immediately,
            "queue_position": self.queue_position,
            "queue_id": self.queue_id,
            "mission_code": self.mission_code,
            "message": self.message,
        }


def get_queue_position(item: MissionQueueItem) -> int | None:
    """1-based rank of a Waiting item within its area."""
    if item.status != QueueStatus.WAITING:
        return None
    ahead = MissionQueueItem.objects.filter(area_key=item.area_key, status=QueueStatus.WAITING).filter(
        Q(priority__gt=item.priority)
        | Q(priority=item.priority, created_at__lt=item.created_at)
        | Q(priority=item.priority, created_at=item.created_at, pk__lt=item.pk)
    )
    return ahead.count() + 1


def enqueue(request: MissionRequest | Mapping[str, Any], *, gateway: AmrControllerGateway | None = None) -> EnqueueResult:
    if not isinstance(request, MissionRequest):
        request = MissionRequest.from_mapping(request)

    mission_code = request.mission_code or generate_mission_code()
    now = timezone.now()

    with transaction.atomic():
        config = get_area_config(request.area_key)
        priority = request.priority if request.priority is not None else int(config.default_priority)

        if MissionQueueItem.objects.filter(mission_code=mission_code, status__in=ACTIVE_STATUSES).exists():
            raise DuplicateMissionCode(mission_code)

        if not config.queueing_enabled:
            execute_now = try_acquire_slot(request.area_key, bypass_limit=True)
        else:
            blocked = MissionQueueItem.objects.filter(
                area_key=request.area_key,
                status=QueueStatus.WAITING,
                priority__gte=priority,
            ).exists()
            execute_now = not blocked and try_acquire_slot(request.area_key)

        if request.require_immediate and not execute_now:
            raise AdmissionConflict(f"No capacity available in area '{request.area_key}' for immediate execution.")

        try:
            with transaction.atomic():
                item = MissionQueueItem.objects.create(
                    template_id=request.template_id,
                    mission_code=mission_code,
                    mission_name=request.mission_name,
                    area_key=request.area_key,
                    priority=priority,
                    status=QueueStatus.EXECUTING if execute_now else QueueStatus.WAITING,
                    processed_at=now if execute_now else None,
                    trigger_source=request.trigger_source,
                    steps=[step.as_dict() for step in request.steps],
                    request_payload={
                        "robot_ids": request.robot_ids,
                        "robot_models": request.robot_models,
                        "container_code": request.container_code,
                    },
                )
        except IntegrityError as exc:
            raise DuplicateMissionCode(mission_code) from exc

        if execute_now:
            notify_status_changed(item)
        else:
            notify_queue_changed(item.area_key)

    if execute_now:
        logger.info("Mission %s admitted for immediate execution in %s", mission_code, request.area_key)
        if not dispatch(item, gateway=gateway):
            return EnqueueResult(
                queue_id=item.pk,
                mission_code=mission_code,
                execute_immediately=True,
                success=False,
                message=f"Submission failed: {item.submit_error}",
                status=QueueStatus.ERROR,
            )
        return EnqueueResult(
            queue_id=item.pk,
            mission_code=mission_code,
            execute_immediately=True,
            message="Mission submitted for execution.",
            status=QueueStatus.EXECUTING,
        )

    position = get_queue_position(item)
    logger.info("Mission %s queued in %s at position %s (priority %s)", mission_code, request.area_key, position, priority)
    return EnqueueResult(
        queue_id=item.pk,
        mission_code=mission_code,
        execute_immediately=False,
        queue_position=position,
        message=f"Mission queued at position {position}.",
    )


def build_mission_spec(item: MissionQueueItem) -> MissionSpec:
    payload = item.request_payload or {}
    template_code = ""
    if item.template_id:
        template_code = f"template-{item.template_id}"
    return MissionSpec(
        mission_code=item.mission_code,
        area_key=item.area_key,
        priority=item.priority,
        steps=[step.as_remote_payload() for step in load_steps(item.steps)],
        robot_models=list(payload.get("robot_models") or []),
        robot_ids=list(payload.get("robot_ids") or []),
        container_code=str(payload.get("container_code") or ""),
        template_code=template_code,
    )


def _record_submission(item: MissionQueueItem, error: AmrControllerError | None) -> bool:
    if error is not None:
        MissionQueueItem.objects.filter(pk=item.pk).update(submit_error=str(error))
        item.submit_error = str(error)
        finalize(item, status=QueueStatus.ERROR, error_message=f"Submission failed: {error}")
        return False

    now = timezone.now()
    MissionQueueItem.objects.filter(pk=item.pk).update(submitted_to_remote=True, submitted_at=now, submit_error="")
    item.submitted_to_remote = True
    item.submitted_at = now
    item.submit_error = ""
    return True


def _submit(gateway: AmrControllerGateway, spec: MissionSpec) -> AmrControllerError | None:
    try:
        gateway.submit(spec)
    except AmrControllerError as exc:
        return exc
    return None


def dispatch(item: MissionQueueItem, *, gateway: AmrControllerGateway | None = None) -> bool:
    """
    Submit an Executing item to the controller.

    A failed submission moves the item to Error and frees its slot; it is not
    retried automatically.
    """
    return _record_submission(item, _submit(_gateway(gateway), build_mission_spec(item)))


def dispatch_many(items: list[MissionQueueItem], *, gateway: AmrControllerGateway | None = None) -> dict[int, bool]:
    """
    Submit several Executing items at once.

    Controller calls run in a thread pool so one slow submission does not hold
    up the others; results are written back in the calling thread.
    """
    if len(items) <= 1:
        return {item.pk: dispatch(item, gateway=gateway) for item in items}

    gateway = _gateway(gateway)
    max_workers = max(1, int((getattr(settings, "MISSION_QUEUE", {}) or {}).get("DISPATCH_MAX_WORKERS", 8)))
    specs = [(item, build_mission_spec(item)) for item in items]
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items)), thread_name_prefix="dispatch") as pool:
        futures = [(item, pool.submit(_submit, gateway, spec)) for item, spec in specs]
        errors = [(item, future.result()) for item, future in futures]
    return {item.pk: _record_submission(item, error) for item, error in errors}


def _is_near(item: MissionQueueItem, node_code: str, zones: list[ZoneInfo]) -> bool:
    """True when the item's first step is the robot's node or shares a zone with it."""
    steps = load_steps(item.steps)
    if not steps or not node_code:
        return False
    first = steps[0].position
    if first.lower() == node_code.lower():
        return True
    for zone in zones:
        if not zone.contains(node_code):
            continue
        if first.lower() == zone.code.lower() or zone.contains(first):
            return True
    return False


def _pick_order(
    candidates: list[MissionQueueItem],
    *,
    config: AreaConcurrencyConfig,
    robot_id: str | None,
    robot_node_code: str | None,
) -> tuple[list[MissionQueueItem], int | None]:
    """
    Return (candidates in attempt order, pk of the opportunistic pick or None).

    An opportunistic pick jumps the strict (priority, age) order only while the
    robot's consecutive opportunistic count is below the area bound.
    """
    if not robot_id or not robot_node_code or not candidates:
        return candidates, None

    zones = load_zones(config.area_key)
    near = next((c for c in candidates if _is_near(c, robot_node_code, zones)), None)
    if near is None or near.pk == candidates[0].pk:
        return candidates, None

    state, _ = RobotOpportunityState.objects.get_or_create(robot_id=robot_id)
    if state.consecutive_opportunistic >= int(config.max_consecutive_opportunistic):
        logger.info(
            "Robot %s reached %d consecutive opportunistic picks; serving strict order in %s",
            robot_id,
            state.consecutive_opportunistic,
            config.area_key,
        )
        return candidates, None

    return [near] + [c for c in candidates if c.pk != near.pk], near.pk


def _record_robot_pick(*, robot_id: str, area_key: str, mission_code: str, opportunistic: bool) -> None:
    state, _ = RobotOpportunityState.objects.get_or_create(robot_id=robot_id)
    RobotOpportunityState.objects.filter(pk=state.pk).update(
        area_key=area_key,
        last_mission_code=mission_code,
        consecutive_opportunistic=F("consecutive_opportunistic") + 1 if opportunistic else 0,
    )


def pick_next(
    area_key: str,
    *,
    robot_id: str | None = None,
    robot_node_code: str | None = None,
) -> MissionQueueItem | None:
    """
    Move the next Waiting item in `area_key` to Executing if a slot is free.

    Only touches the database; the caller submits the picked item.
    `robot_id`/`robot_node_code` describe a robot that just freed up; they enable
    opportunistic chaining towards work near that robot.
    """
    config = get_area_config(area_key)
    if not MissionQueueItem.objects.filter(area_key=area_key, status=QueueStatus.WAITING).exists():
        return None

    picked: MissionQueueItem | None = None
    with transaction.atomic():
        if not try_acquire_slot(area_key, bypass_limit=not config.queueing_enabled):
            return None

        candidates = list(
            MissionQueueItem.objects.filter(area_key=area_key, status=QueueStatus.WAITING).order_by(
                "-priority", "created_at", "pk"
            )[:_CANDIDATE_WINDOW]
        )
        ordered, opportunistic_pk = _pick_order(
            candidates,
            config=config,
            robot_id=robot_id,
            robot_node_code=robot_node_code,
        )

        for candidate in ordered:
            opportunistic = candidate.pk == opportunistic_pk
            fields: dict[str, Any] = {"is_opportunistic": opportunistic}
            if opportunistic:
                payload = dict(candidate.request_payload or {})
                payload["robot_ids"] = [robot_id]
                fields["request_payload"] = payload
                fields["assigned_robot_id"] = robot_id
            if transition(candidate, state_to=QueueStatus.EXECUTING, **fields):
                picked = candidate
                break

        if picked is None:
            release_slot(area_key)
            return None

        if opportunistic_pk is not None and picked.pk == opportunistic_pk:
            AreaConcurrencyConfig.objects.filter(area_key=area_key).update(
                opportunistic_dispatched=F("opportunistic_dispatched") + 1
            )
        if robot_id:
            _record_robot_pick(
                robot_id=robot_id,
                area_key=area_key,
                mission_code=picked.mission_code,
                opportunistic=picked.is_opportunistic,
            )
        notify_status_changed(picked)

    logger.info(
        "Dispatching %s from %s queue%s",
        picked.mission_code,
        area_key,
        f" (opportunistic for robot {robot_id})" if picked.is_opportunistic else "",
    )
    return picked


def process_next(
    area_key: str,
    *,
    robot_id: str | None = None,
    robot_node_code: str | None = None,
    gateway: AmrControllerGateway | None = None,
) -> MissionQueueItem | None:
    """Serve the next Waiting item in `area_key` if a slot is free, and submit it."""
    picked = pick_next(area_key, robot_id=robot_id, robot_node_code=robot_node_code)
    if picked is not None:
        dispatch(picked, gateway=gateway)
    return picked


def _areas_with_waiting() -> list[str]:
    return list(
        MissionQueueItem.objects.filter(status=QueueStatus.WAITING)
        .values_list("area_key", flat=True)
        .distinct()
        .order_by("area_key")
    )


def serve_areas(
    area_keys: list[str],
    *,
    freed_robots: Mapping[str, list[tuple[str, str]]] | None = None,
    gateway: AmrControllerGateway | None = None,
) -> int:
    """
    Fill free slots in `area_keys`. Returns the number of items picked.

    Picks run one after another in this thread; the picked items are then
    submitted together. Failed submissions free their slot, so areas are
    served again until nothing more can be picked.
    `freed_robots` maps an area to the (robot id, node code) pairs of robots
    that just finished there; each pick in that area offers the next robot
    for opportunistic chaining.
    """
    pending_robots = {key: list(robots) for key, robots in (freed_robots or {}).items()}
    picked_total = 0
    while True:
        picked: list[MissionQueueItem] = []
        for area_key in area_keys:
            robots = pending_robots.pop(area_key, [])
            while True:
                robot_id, node_code = robots.pop(0) if robots else (None, None)
                item = pick_next(area_key, robot_id=robot_id, robot_node_code=node_code)
                if item is None:
                    break
                picked.append(item)
        if not picked:
            return picked_total
        picked_total += len(picked)
        results = dispatch_many(picked, gateway=gateway)
        if all(results.values()):
            return picked_total


def process_queue(*, gateway: AmrControllerGateway | None = None) -> int:
    """Fill free slots in every area that has Waiting items. Returns the number dispatched."""
    return serve_areas(_areas_with_waiting(), gateway=gateway)


def get_item(queue_id: int) -> MissionQueueItem:
    item = MissionQueueItem.objects.filter(pk=queue_id).first()
    if item is None:
        raise NotFoundError(f"Queue item {queue_id} not found.")
    return item


def cancel(
    queue_id: int,
    *,
    mode: str = "FORCE",
    reason: str = "",
    gateway: AmrControllerGateway | None = None,
) -> MissionQueueItem:
    """
    Cancel a queue item.

    Waiting items are cancelled locally without contacting the controller.
    Executing items are cancelled only after the controller acknowledges; a
    failed remote cancel propagates and leaves the item Executing.
    """
    item = get_item(queue_id)

    if item.status == QueueStatus.WAITING:
        if not finalize(item, status=QueueStatus.CANCELLED, error_message=reason):
            raise TransitionError(f"Mission {item.mission_code} changed state while cancelling; retry.")
        return item

    if item.status == QueueStatus.EXECUTING:
        _gateway(gateway).cancel(item.mission_code, mode=mode, reason=reason)
        if not finalize(item, status=QueueStatus.CANCELLED, error_message=reason):
            item.refresh_from_db()
            logger.info("Mission %s already %s when cancel was acknowledged", item.mission_code, item.status)
            return item
        process_next(item.area_key, gateway=gateway)
        return item

    raise TransitionError(f"Mission {item.mission_code} is already {item.status}.")


def cancel_mission(
    mission_code: str,
    *,
    mode: str = "FORCE",
    reason: str = "",
    gateway: AmrControllerGateway | None = None,
) -> MissionQueueItem:
    item = (
        MissionQueueItem.objects.filter(mission_code=mission_code, status__in=ACTIVE_STATUSES)
        .order_by("-created_at")
        .first()
    )
    if item is None:
        raise NotFoundError(f"No active mission with code '{mission_code}'.")
    return cancel(item.pk, mode=mode, reason=reason, gateway=gateway)


def update_waiting(queue_id: int, *, priority: int | None = None, steps: Any = None) -> MissionQueueItem:
    """Edit a Waiting item. Executing and finished items are immutable."""
    parsed_steps = parse_steps(steps) if steps is not None else None
    with transaction.atomic():
        item = MissionQueueItem.objects.select_for_update().filter(pk=queue_id).first()
        if item is None:
            raise NotFoundError(f"Queue item {queue_id} not found.")
        if item.status != QueueStatus.WAITING:
            raise TransitionError(f"Mission {item.mission_code} is {item.status}; only waiting missions can be edited.")

        update_fields = []
        if priority is not None:
            item.priority = int(priority)
            update_fields.append("priority")
        if parsed_steps is not None:
            item.steps = [step.as_dict() for step in parsed_steps]
            update_fields.append("steps")
        if update_fields:
            item.save(update_fields=update_fields)
            notify_queue_changed(item.area_key)
    return item


def get_stats(area_key: str | None = None) -> dict[str, Any]:
    items = MissionQueueItem.objects.all()
    configs = AreaConcurrencyConfig.objects.filter(queueing_enabled=True)
    if area_key:
        items = items.filter(area_key=area_key)
        configs = configs.filter(area_key=area_key)

    counts = {row["status"]: row["n"] for row in items.values("status").annotate(n=Count("id"))}
    total_slots = 0
    free_slots = 0
    for config in configs:
        total_slots += int(config.max_concurrent_robots)
        free_slots += available_slots(config)

    return {
        "queued_count": counts.get(QueueStatus.WAITING, 0),
        "processing_count": counts.get(QueueStatus.EXECUTING, 0),
        "available_slots": free_slots,
        "total_slots": total_slots,
        "completed_count": counts.get(QueueStatus.COMPLETE, 0),
        "failed_count": counts.get(QueueStatus.ERROR, 0),
        "cancelled_count": counts.get(QueueStatus.CANCELLED, 0),
    }
