"""
Status reconciliation: poll the controller for every Executing item, refresh
telemetry and progress, and finalize items the controller reports as done.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta

from django.conf import settings
from django.utils import timezone

from missions.correlator import ZoneInfo, correlate
from missions.errors import RECONCILIATION_STALE_PREFIX
from missions.gateways.amr_controller import (
    AmrControllerError,
    AmrControllerGateway,
    RemoteJob,
    RobotTelemetry,
)
from missions.models import MissionQueueItem, QueueStatus, RemoteStatus
from missions.notifications import notify_queue_changed
from missions.use_cases import manual_waypoints
from missions.use_cases.admission import serve_areas
from missions.use_cases.lifecycle import finalize
from missions.zones import load_zones

logger = logging.getLogger(__name__)

_LOCAL_STATUS = {
    RemoteStatus.COMPLETE: QueueStatus.COMPLETE,
    RemoteStatus.MANUAL_COMPLETE: QueueStatus.COMPLETE,
    RemoteStatus.CANCELLED: QueueStatus.CANCELLED,
    RemoteStatus.STARTUP_ERROR: QueueStatus.ERROR,
}


def _queue_settings() -> dict:
    return getattr(settings, "MISSION_QUEUE", {}) or {}


def _gateway(gateway: AmrControllerGateway | None) -> AmrControllerGateway:
    if gateway is not None:
        return gateway
    from missions.gateways.amr_controller import default_amr_controller_gateway

    return default_amr_controller_gateway


@dataclass
class _Observation:
    job: RemoteJob | None = None
    robot: RobotTelemetry | None = None
    error: str = ""


@dataclass
class ReconcileSummary:
    checked: int = 0
    updated: int = 0
    finalized: int = 0
    stale: int = 0
    dispatched: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "checked": self.checked,
            "updated": self.updated,
            "finalized": self.finalized,
            "stale": self.stale,
            "dispatched": self.dispatched,
            "errors": list(self.errors),
        }


def _observe(gateway: AmrControllerGateway, mission_code: str, robot_hint: str) -> _Observation:
    obs = _Observation()
    try:
        obs.job = gateway.poll(mission_code)
    except AmrControllerError as exc:
        obs.error = str(exc)
        return obs

    robot_id = (obs.job.robot_id if obs.job else "") or robot_hint
    if robot_id:
        try:
            obs.robot = gateway.query_robot(robot_id)
        except AmrControllerError as exc:
            logger.debug("Robot query for %s failed: %s", robot_id, exc)
    return obs


def _is_stale(item: MissionQueueItem, now) -> bool:
    grace = int(_queue_settings().get("RECONCILE_STALE_GRACE_SECONDS", 300))
    started = item.submitted_at or item.processed_at
    return started is not None and now - started > timedelta(seconds=grace)


def reconcile_item(
    item: MissionQueueItem,
    observation: _Observation,
    *,
    zones: list[ZoneInfo] | None = None,
) -> str:
    """
    Apply one poll result to one item. Returns what happened:
    "skipped", "error", "stale", "updated", "finalized" or "unchanged".

    Serving the slot a finished item freed is left to the caller.
    """
    if item.status != QueueStatus.EXECUTING:
        return "skipped"
    if observation.error:
        return "error"

    now = timezone.now()
    job = observation.job
    if job is None:
        if _is_stale(item, now):
            finalize(
                item,
                status=QueueStatus.ERROR,
                error_message=f"{RECONCILIATION_STALE_PREFIX}: controller has no job for {item.mission_code}",
                now=now,
            )
            return "stale"
        MissionQueueItem.objects.filter(pk=item.pk).update(last_polled_at=now)
        return "unchanged"

    updates: dict = {"last_polled_at": now, "remote_status": job.status}
    robot_id = job.robot_id or item.assigned_robot_id
    if robot_id:
        updates["assigned_robot_id"] = robot_id

    robot = observation.robot
    if robot is not None:
        updates["robot_node_code"] = robot.node_code
        updates["robot_battery_level"] = robot.battery_level
        updates["robot_status"] = robot.status
        if robot.node_code:
            match = correlate(robot.node_code, item.steps, zones if zones is not None else load_zones(item.area_key))
            if match.current_step_index is not None:
                updates["current_step_index"] = match.current_step_index
                updates["progress_percentage"] = match.progress_percentage

    changed = any(getattr(item, key) != value for key, value in updates.items() if key != "last_polled_at")
    MissionQueueItem.objects.filter(pk=item.pk, status=QueueStatus.EXECUTING).update(**updates)
    for key, value in updates.items():
        setattr(item, key, value)

    if job.is_terminal:
        local_status = _LOCAL_STATUS[job.status]
        error_message = ""
        if local_status == QueueStatus.ERROR:
            error_message = f"Controller reported {job.status}" + (f" ({job.warn_code})" if job.warn_code else "")
        if not finalize(item, status=local_status, error_message=error_message, now=now):
            return "unchanged"
        return "finalized"

    if job.status == RemoteStatus.WAITING:
        if not item.waiting_for_resume:
            node_code = item.robot_node_code or job.target_cell_code
            manual_waypoints.evaluate(item, node_code=node_code, robot_id=robot_id)
    elif item.waiting_for_resume and job.status != RemoteStatus.UNKNOWN:
        # Resumed from the controller's own console.
        if manual_waypoints.mark_resumed(item):
            logger.info("Mission %s left its manual waypoint on the controller side", item.mission_code)
            changed = True

    if changed:
        notify_queue_changed(item.area_key)
        return "updated"
    return "unchanged"


def reconcile(*, gateway: AmrControllerGateway | None = None) -> ReconcileSummary:
    """
    One reconciliation pass over all Executing items.

    Controller calls run concurrently; database writes happen in the calling
    thread. Slots freed by finished items are served after the pass. Running a
    pass twice over the same controller state changes nothing the second time.
    """
    gateway = _gateway(gateway)
    items = list(MissionQueueItem.objects.filter(status=QueueStatus.EXECUTING).order_by("processed_at", "pk"))
    summary = ReconcileSummary(checked=len(items))
    if not items:
        return summary

    max_workers = max(1, int(_queue_settings().get("RECONCILE_MAX_WORKERS", 8)))
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items)), thread_name_prefix="reconcile") as pool:
        futures = {
            item.pk: pool.submit(_observe, gateway, item.mission_code, item.assigned_robot_id) for item in items
        }
        observations = {pk: future.result() for pk, future in futures.items()}

    zones_by_area: dict[str, list[ZoneInfo]] = {}
    freed_areas: list[str] = []
    freed_robots: dict[str, list[tuple[str, str]]] = {}
    for item in items:
        observation = observations[item.pk]
        if item.area_key not in zones_by_area:
            zones_by_area[item.area_key] = load_zones(item.area_key)
        try:
            outcome = reconcile_item(item, observation, zones=zones_by_area[item.area_key])
        except AmrControllerError as exc:
            outcome = "error"
            observation.error = str(exc)
        if outcome == "error":
            summary.errors.append(f"{item.mission_code}: {observation.error}")
            logger.warning("Reconcile poll failed for %s: %s", item.mission_code, observation.error)
        elif outcome == "updated":
            summary.updated += 1
        elif outcome in ("finalized", "stale"):
            if outcome == "finalized":
                summary.finalized += 1
            else:
                summary.stale += 1
            if item.area_key not in freed_areas:
                freed_areas.append(item.area_key)
            if item.status == QueueStatus.COMPLETE and item.assigned_robot_id and item.robot_node_code:
                freed_robots.setdefault(item.area_key, []).append((item.assigned_robot_id, item.robot_node_code))

    if freed_areas:
        summary.dispatched = serve_areas(freed_areas, freed_robots=freed_robots, gateway=gateway)

    if summary.finalized or summary.stale or summary.errors:
        logger.info(
            "Reconcile pass: checked=%d updated=%d finalized=%d stale=%d dispatched=%d errors=%d",
            summary.checked,
            summary.updated,
            summary.finalized,
            summary.stale,
            summary.dispatched,
            len(summary.errors),
        )
    return summary
