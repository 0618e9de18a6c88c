from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from django.db import IntegrityError, transaction
from django.utils import timezone

from config.domain_exceptions import NotFoundError
from missions.gateways.amr_controller import AmrControllerGateway
from missions.models import ACTIVE_STATUSES, ManualPauseRecord, MissionQueueItem, QueueStatus, Zone
from missions.notifications import notify_status_changed
from missions.steps import load_steps

logger = logging.getLogger(__name__)


class WaypointState(str, Enum):
    NOT_WAITING = "not_waiting"
    WAITING_FOR_RESUME = "waiting_for_resume"
    RESUMED = "resumed"


@dataclass(frozen=True)
class ResumeResult:
    mission_code: str
    state: WaypointState
    waypoint: str = ""
    message: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "mission_code": self.mission_code,
            "state": self.state.value,
            "waypoint": self.waypoint,
            "message": self.message,
        }


def _gateway(gateway: AmrControllerGateway | None) -> AmrControllerGateway:
    if gateway is not None:
        return gateway
    from missions.gateways.amr_controller import default_amr_controller_gateway

    return default_amr_controller_gateway


def manual_waypoints(item: MissionQueueItem) -> list[str]:
    """MANUAL step positions in step order, de-duplicated case-insensitively."""
    seen: set[str] = set()
    out: list[str] = []
    for step in load_steps(item.steps):
        if not step.is_manual:
            continue
        key = step.position.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(step.position)
    return out


def _waypoint_nodes(waypoint: str) -> set[str]:
    nodes = {waypoint.lower()}
    zone = Zone.objects.filter(code__iexact=waypoint).first()
    if zone is not None:
        nodes.update(str(n).lower() for n in (zone.node_codes or []))
    return nodes


def match_waypoint(item: MissionQueueItem, node_code: str) -> str | None:
    """Return the unvisited manual waypoint the robot is standing on, if any."""
    if not node_code:
        return None
    visited = {str(v).lower() for v in (item.visited_waypoints or [])}
    node = node_code.lower()
    for waypoint in manual_waypoints(item):
        if waypoint.lower() in visited:
            continue
        if node in _waypoint_nodes(waypoint):
            return waypoint
    return None


def evaluate(item: MissionQueueItem, *, node_code: str, robot_id: str = "") -> WaypointState:
    """
    Called when the controller reports the job as waiting.

    Marks the item as waiting for an operator when the robot is at one of its
    unvisited manual waypoints and opens a pause record for it.
    """
    if item.waiting_for_resume:
        return WaypointState.WAITING_FOR_RESUME

    waypoint = match_waypoint(item, node_code)
    if waypoint is None:
        return WaypointState.NOT_WAITING

    now = timezone.now()
    robot_id = robot_id or item.assigned_robot_id
    with transaction.atomic():
        updated = MissionQueueItem.objects.filter(
            pk=item.pk, status=QueueStatus.EXECUTING, waiting_for_resume=False
        ).update(waiting_for_resume=True, current_waypoint=waypoint)
        if not updated:
            return WaypointState.NOT_WAITING
        item.waiting_for_resume = True
        item.current_waypoint = waypoint

        if not ManualPauseRecord.objects.filter(mission_code=item.mission_code, pause_end__isnull=True).exists():
            try:
                with transaction.atomic():
                    ManualPauseRecord.objects.create(
                        robot_id=robot_id or "",
                        mission_code=item.mission_code,
                        waypoint_code=waypoint,
                        reason="Manual waypoint",
                        pause_start=now,
                    )
            except IntegrityError:
                logger.debug("Pause for %s already open", item.mission_code)
        notify_status_changed(item)

    logger.info("Mission %s waiting for operator at %s (robot %s)", item.mission_code, waypoint, robot_id or "?")
    return WaypointState.WAITING_FOR_RESUME


def _active_item(mission_code: str) -> MissionQueueItem:
    item = (
        MissionQueueItem.objects.filter(mission_code=mission_code, status__in=ACTIVE_STATUSES)
        .order_by("-created_at")
        .first()
    )
    if item is None:
        raise NotFoundError(f"No active mission with code '{mission_code}'.")
    return item


def mark_resumed(item: MissionQueueItem, *, waypoint: str | None = None) -> bool:
    """
    Close the item's pause: record the waypoint as visited, clear the waiting
    flag and end the open pause record. Returns False when it was not paused.
    """
    waypoint = item.current_waypoint if waypoint is None else waypoint
    now = timezone.now()
    with transaction.atomic():
        locked = MissionQueueItem.objects.select_for_update().get(pk=item.pk)
        if not locked.waiting_for_resume:
            return False
        visited = list(locked.visited_waypoints or [])
        if waypoint and waypoint.lower() not in {str(v).lower() for v in visited}:
            visited.append(waypoint)
        locked.visited_waypoints = visited
        locked.waiting_for_resume = False
        locked.current_waypoint = ""
        locked.save(update_fields=["visited_waypoints", "waiting_for_resume", "current_waypoint"])
        ManualPauseRecord.objects.filter(mission_code=item.mission_code, pause_end__isnull=True).update(pause_end=now)
        notify_status_changed(locked)

    item.visited_waypoints = visited
    item.waiting_for_resume = False
    item.current_waypoint = ""
    return True


def resume(mission_code: str, *, gateway: AmrControllerGateway | None = None) -> ResumeResult:
    """
    Let a paused mission continue past its manual waypoint.

    Resuming a mission that is not waiting is a no-op. The local state only
    changes after the controller accepted the resume.
    """
    item = _active_item(mission_code)
    if not item.waiting_for_resume:
        return ResumeResult(
            mission_code=mission_code,
            state=WaypointState.NOT_WAITING,
            message="Mission is not waiting for resume.",
        )

    waypoint = item.current_waypoint
    container_code = str((item.request_payload or {}).get("container_code") or "")
    _gateway(gateway).resume_manual_waypoint(mission_code, position=waypoint, container_code=container_code)

    if not mark_resumed(item, waypoint=waypoint):
        return ResumeResult(
            mission_code=mission_code,
            state=WaypointState.NOT_WAITING,
            message="Mission was already resumed.",
        )

    logger.info("Mission %s resumed from %s", mission_code, waypoint or "?")
    return ResumeResult(mission_code=mission_code, state=WaypointState.RESUMED, waypoint=waypoint)


def list_waiting_for_resume(*, gateway: AmrControllerGateway | None = None) -> list[dict[str, Any]]:
    """Controller's waiting list joined with local queue state."""
    remote = _gateway(gateway).query_waiting_for_resume()
    codes = [row.mission_code for row in remote]
    local = {
        item.mission_code: item
        for item in MissionQueueItem.objects.filter(mission_code__in=codes, status__in=ACTIVE_STATUSES)
    }

    out: list[dict[str, Any]] = []
    for row in remote:
        item = local.get(row.mission_code)
        out.append(
            {
                "mission_code": row.mission_code,
                "robot_id": row.robot_id or (item.assigned_robot_id if item else ""),
                "current_position": row.current_position,
                "battery_level": row.battery_level,
                "waiting_since": row.waiting_since,
                "queue_id": item.pk if item else None,
                "mission_name": item.mission_name if item else "",
                "current_waypoint": item.current_waypoint if item else "",
                "visited_waypoints": list(item.visited_waypoints or []) if item else [],
                "manual_waypoints": manual_waypoints(item) if item else [],
            }
        )
    return out
