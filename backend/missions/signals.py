from __future__ import annotations

from django.dispatch import Signal

# Sent after a queue item's status change is committed.
# Args: mission_id (int), mission_code (str), status (str), area_key (str)
mission_status_changed = Signal()

# Sent after items are added to, removed from or reordered in a queue.
# Args: area_key (str | None)
queue_updated = Signal()

# Sent after slot usage or queue counts change.
# Args: area_key (str | None)
statistics_updated = Signal()
