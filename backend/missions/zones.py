from __future__ import annotations

from missions.correlator import ZoneInfo
from missions.models import Zone


def load_zones(area_key: str | None = None) -> list[ZoneInfo]:
    """Zone table for the correlator and waypoint matching."""
    qs = Zone.objects.all()
    if area_key:
        qs = qs.filter(area_key__in=[area_key, ""])
    return [ZoneInfo(code=zone.code, node_codes=tuple(str(n) for n in (zone.node_codes or []))) for zone in qs]
