from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from django.conf import settings

from config.domain_exceptions import GatewayError
from missions.models import RemoteStatus

logger = logging.getLogger(__name__)

GATEWAY_NAME = "AMR controller"


class AmrControllerError(GatewayError):
    gateway_name = GATEWAY_NAME

    def __init__(self, message: str, *, operation: str | None = None, error: str | None = None):
        self.operation = operation
        self.error = error
        super().__init__(message)


class AmrControllerNotConfigured(AmrControllerError):
    not_configured = True


class AmrControllerNotReachable(AmrControllerError):
    """Transport failure or 5xx: the controller could not be asked."""

    not_reachable = True


class AmrControllerRejected(AmrControllerError):
    """The controller answered and refused the request."""

    def __init__(self, message: str, *, operation: str | None = None, code: str | None = None):
        self.code = code
        super().__init__(message, operation=operation, error=code)


RemoteUnavailable = AmrControllerNotReachable
RemoteRejected = AmrControllerRejected


@dataclass(frozen=True)
class MissionSpec:
    mission_code: str
    area_key: str
    priority: int
    steps: list[dict[str, Any]]
    mission_type: str = "RACK_MOVE"
    robot_models: list[str] = field(default_factory=list)
    robot_ids: list[str] = field(default_factory=list)
    container_code: str = ""
    template_code: str = ""

    def as_payload(self, *, org_id: str, request_id: str) -> dict[str, Any]:
        return {
            "orgId": org_id,
            "requestId": request_id,
            "missionCode": self.mission_code,
            "missionType": self.mission_type,
            "robotModels": list(self.robot_models),
            "robotIds": list(self.robot_ids),
            "priority": self.priority,
            "containerCode": self.container_code,
            "templateCode": self.template_code,
            "missionData": list(self.steps),
        }


@dataclass(frozen=True)
class RemoteJob:
    job_code: str
    status: RemoteStatus
    status_code: int | None = None
    robot_id: str = ""
    map_code: str = ""
    target_cell_code: str = ""
    warn_code: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status in REMOTE_TERMINAL_STATUSES


@dataclass(frozen=True)
class RobotTelemetry:
    robot_id: str
    node_code: str = ""
    battery_level: float | None = None
    status: str = ""
    mission_code: str = ""
    map_code: str = ""


@dataclass(frozen=True)
class WaitingMission:
    mission_code: str
    current_position: str = ""
    robot_id: str = ""
    battery_level: float | None = None
    waiting_since: str | None = None


REMOTE_TERMINAL_STATUSES = frozenset(
    {
        RemoteStatus.COMPLETE,
        RemoteStatus.MANUAL_COMPLETE,
        RemoteStatus.CANCELLED,
        RemoteStatus.STARTUP_ERROR,
    }
)


def _controller_settings() -> dict[str, Any]:
    return getattr(settings, "AMR_CONTROLLER", {}) or {}


def status_table() -> dict[int, RemoteStatus]:
    """Vendor status code table from settings, keyed by int code."""
    raw = _controller_settings().get("STATUS_CODES") or {}
    table: dict[int, RemoteStatus] = {}
    for code, name in raw.items():
        try:
            table[int(code)] = RemoteStatus(str(name))
        except ValueError:
            logger.warning("Ignoring invalid AMR status mapping %r -> %r", code, name)
    return table


def map_remote_status(code: Any, table: dict[int, RemoteStatus] | None = None) -> RemoteStatus:
    """Translate a vendor status code; unknown codes become UNKNOWN (never terminal)."""
    if table is None:
        table = status_table()
    try:
        return table.get(int(code), RemoteStatus.UNKNOWN)
    except (TypeError, ValueError):
        return RemoteStatus.UNKNOWN


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class AmrControllerGateway(Protocol):
    def submit(self, spec: MissionSpec) -> dict[str, Any]:
        """Submit a mission; return the controller acknowledgment payload."""

        ...

    def query_jobs(self, job_code: str, *, limit: int = 10) -> list[RemoteJob]:
        ...

    def poll(self, mission_code: str) -> RemoteJob | None:
        """Return the latest job for `mission_code`, or None when the controller has none."""

        ...

    def cancel(self, mission_code: str, *, mode: str = "FORCE", reason: str = "") -> None:
        """Request remote cancellation; returns only when the controller acknowledged it."""

        ...

    def query_robot(self, robot_id: str) -> RobotTelemetry | None:
        ...

    def query_waiting_for_resume(self) -> list[WaitingMission]:
        ...

    def resume_manual_waypoint(self, mission_code: str, *, position: str = "", container_code: str = "") -> None:
        ...


class HttpAmrControllerGateway:
    """JSON-over-HTTP client for the fleet controller (`{success, code, message, data}` envelope)."""

    def __init__(self, *, base_url: str | None = None, timeout_seconds: float | None = None):
        self._base_url = base_url
        self._timeout_seconds = timeout_seconds

    def _config(self) -> dict[str, Any]:
        return _controller_settings()

    def _url(self, path_key: str) -> str:
        config = self._config()
        base_url = (self._base_url if self._base_url is not None else config.get("BASE_URL") or "").strip()
        if not base_url:
            raise AmrControllerNotConfigured("AMR controller base URL is not configured.")
        path = str(config.get(path_key) or "")
        return base_url.rstrip("/") + "/" + path.lstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        token = str(self._config().get("API_TOKEN") or "").strip()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _post(self, path_key: str, payload: dict[str, Any], *, operation: str) -> Any:
        url = self._url(path_key)
        timeout = self._timeout_seconds or float(self._config().get("TIMEOUT_SECONDS") or 10.0)
        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(url, json=payload, headers=self._headers())
        except httpx.TimeoutException as exc:
            logger.warning("AMR controller %s timed out after %.1fs", operation, timeout)
            raise AmrControllerNotReachable(
                "AMR controller is not reachable (timeout).", operation=operation, error=str(exc)
            ) from exc
        except httpx.RequestError as exc:
            logger.warning("AMR controller %s network error: %s", operation, exc)
            raise AmrControllerNotReachable(
                "AMR controller is not reachable.", operation=operation, error=str(exc)
            ) from exc

        if response.status_code >= 500:
            raise AmrControllerNotReachable(
                f"AMR controller returned {response.status_code}.",
                operation=operation,
                error=response.text[:500],
            )
        if response.status_code >= 400:
            raise AmrControllerRejected(
                f"AMR controller rejected {operation} ({response.status_code}).",
                operation=operation,
                code=str(response.status_code),
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise AmrControllerError(
                "AMR controller returned a non-JSON response.", operation=operation, error=response.text[:500]
            ) from exc

        if not isinstance(body, dict):
            raise AmrControllerError("AMR controller returned an unexpected payload.", operation=operation)
        if not body.get("success", False):
            code = body.get("code")
            message = body.get("message") or "request was rejected"
            raise AmrControllerRejected(
                f"AMR controller rejected {operation}: {message}",
                operation=operation,
                code=str(code) if code is not None else None,
            )
        return body.get("data")

    def submit(self, spec: MissionSpec) -> dict[str, Any]:
        payload = spec.as_payload(org_id=str(self._config().get("ORG_ID") or ""), request_id=uuid.uuid4().hex)
        data = self._post("SUBMIT_PATH", payload, operation="submit")
        logger.info("AMR controller accepted mission %s", spec.mission_code)
        return data if isinstance(data, dict) else {"mission_code": spec.mission_code}

    def query_jobs(self, job_code: str, *, limit: int = 10) -> list[RemoteJob]:
        data = self._post("JOB_QUERY_PATH", {"jobCode": job_code, "limit": limit}, operation="query_jobs")
        if not isinstance(data, list):
            return []
        table = status_table()
        jobs: list[RemoteJob] = []
        for row in data:
            if not isinstance(row, dict):
                continue
            raw_status = row.get("status")
            jobs.append(
                RemoteJob(
                    job_code=str(row.get("jobCode") or ""),
                    status=map_remote_status(raw_status, table),
                    status_code=int(raw_status) if str(raw_status or "").lstrip("-").isdigit() else None,
                    robot_id=str(row.get("robotId") or ""),
                    map_code=str(row.get("mapCode") or ""),
                    target_cell_code=str(row.get("targetCellCode") or ""),
                    warn_code=str(row.get("warnCode") or ""),
                )
            )
        return jobs

    def poll(self, mission_code: str) -> RemoteJob | None:
        for job in self.query_jobs(mission_code, limit=1):
            if job.job_code == mission_code or not job.job_code:
                return job
        return None

    def cancel(self, mission_code: str, *, mode: str = "FORCE", reason: str = "") -> None:
        payload = {
            "requestId": uuid.uuid4().hex,
            "missionCode": mission_code,
            "containerCode": "",
            "position": "",
            "cancelMode": mode,
            "reason": reason,
        }
        self._post("CANCEL_PATH", payload, operation="cancel")
        logger.info("AMR controller acknowledged cancel of %s (mode=%s)", mission_code, mode)

    def query_robot(self, robot_id: str) -> RobotTelemetry | None:
        data = self._post("ROBOT_QUERY_PATH", {"robotId": robot_id}, operation="query_robot")
        rows = data if isinstance(data, list) else [data] if isinstance(data, dict) else []
        for row in rows:
            if not isinstance(row, dict):
                continue
            if row.get("robotId") and str(row.get("robotId")) != robot_id:
                continue
            return RobotTelemetry(
                robot_id=robot_id,
                node_code=str(row.get("nodeCode") or ""),
                battery_level=_to_float(row.get("batteryLevel")),
                status=str(row.get("status") if row.get("status") is not None else ""),
                mission_code=str(row.get("missionCode") or ""),
                map_code=str(row.get("mapCode") or ""),
            )
        return None

    def query_waiting_for_resume(self) -> list[WaitingMission]:
        data = self._post("WAITING_QUERY_PATH", {}, operation="query_waiting_for_resume")
        if not isinstance(data, list):
            return []
        return [
            WaitingMission(
                mission_code=str(row.get("missionCode") or ""),
                current_position=str(row.get("currentPosition") or ""),
                robot_id=str(row.get("robotId") or ""),
                battery_level=_to_float(row.get("batteryLevel")),
                waiting_since=row.get("waitingSince"),
            )
            for row in data
            if isinstance(row, dict) and row.get("missionCode")
        ]

    def resume_manual_waypoint(self, mission_code: str, *, position: str = "", container_code: str = "") -> None:
        payload = {
            "requestId": uuid.uuid4().hex,
            "missionCode": mission_code,
            "containerCode": container_code,
            "position": position,
        }
        self._post("OPERATION_FEEDBACK_PATH", payload, operation="resume_manual_waypoint")
        logger.info("AMR controller acknowledged resume of %s at %s", mission_code, position or "?")


default_amr_controller_gateway = HttpAmrControllerGateway()
