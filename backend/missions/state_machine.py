"""
Queue item status transitions.

Every status change goes through `transition()`, which rejects moves that are
not in the table and applies the change as a compare-and-set UPDATE on the
status column, so only one process wins a given transition.
"""

from __future__ import annotations

import logging
from typing import Any

from django.utils import timezone

from missions.errors import TransitionError
from missions.models import TERMINAL_STATUSES, MissionQueueItem, QueueStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    QueueStatus.WAITING: frozenset({QueueStatus.EXECUTING, QueueStatus.CANCELLED, QueueStatus.ERROR}),
    QueueStatus.EXECUTING: frozenset({QueueStatus.COMPLETE, QueueStatus.ERROR, QueueStatus.CANCELLED}),
    QueueStatus.COMPLETE: frozenset(),
    QueueStatus.ERROR: frozenset(),
    QueueStatus.CANCELLED: frozenset(),
}


def can_transition(state_from: str, state_to: str) -> bool:
    return state_to in ALLOWED_TRANSITIONS.get(state_from, frozenset())


def ensure_transition(state_from: str, state_to: str) -> None:
    if not can_transition(state_from, state_to):
        raise TransitionError(f"Cannot move mission from {state_from} to {state_to}.")


def transition(
    item: MissionQueueItem,
    *,
    state_to: str,
    now=None,
    **fields: Any,
) -> bool:
    """
    Move `item` from its current (in-memory) status to `state_to`.

    Returns False when another writer changed the status first; the item is
    left untouched in that case. Raises `TransitionError` for moves the table
    does not allow.
    """
    state_from = item.status
    ensure_transition(state_from, state_to)

    now = now or timezone.now()
    updates: dict[str, Any] = dict(fields)
    updates["status"] = state_to
    if state_to in TERMINAL_STATUSES:
        updates.setdefault("completed_at", now)
    if state_to == QueueStatus.EXECUTING:
        updates.setdefault("processed_at", now)

    updated = MissionQueueItem.objects.filter(pk=item.pk, status=state_from).update(**updates)
    if not updated:
        logger.debug(
            "Lost status race for %s (%s -> %s)",
            item.mission_code,
            state_from,
            state_to,
        )
        return False

    for key, value in updates.items():
        setattr(item, key, value)
    logger.info("Mission %s: %s -> %s", item.mission_code, state_from, state_to)
    return True
