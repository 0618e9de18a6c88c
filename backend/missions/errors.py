from __future__ import annotations

from config.domain_exceptions import ConflictError


class TransitionError(ConflictError):
    """A queue item status change that the state machine does not allow."""


class AdmissionConflict(ConflictError):
    pass


class DuplicateMissionCode(AdmissionConflict):
    def __init__(self, mission_code: str):
        self.mission_code = mission_code
        super().__init__(f"Mission code '{mission_code}' is already queued or executing.")


class ScheduleClaimConflict(ConflictError):
    """Another process holds (or already ran) this schedule occurrence."""


RECONCILIATION_STALE_PREFIX = "ReconciliationStale"
