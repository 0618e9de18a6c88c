"""Management command to rebuild per-area slot counters from Executing missions."""

from __future__ import annotations

from django.core.management.base import BaseCommand

from missions.slots import resync_area_slots


class Command(BaseCommand):
    help = "Recompute each area's active slot count from its executing missions"

    def handle(self, *args, **options) -> None:
        changed = resync_area_slots()
        if not changed:
            self.stdout.write(self.style.SUCCESS("All area slot counters are consistent."))
            return
        for area_key, (previous, current) in sorted(changed.items()):
            self.stdout.write(f"{area_key}: {previous} -> {current}")
        self.stdout.write(self.style.SUCCESS(f"Resynced {len(changed)} area(s)."))
