from __future__ import annotations

from io import StringIO

from django.core.management import call_command
from django.test import SimpleTestCase, TestCase

from missions.errors import TransitionError
from missions.models import AreaConcurrencyConfig, MissionQueueItem, QueueStatus
from missions.slots import release_slot, resync_area_slots, try_acquire_slot
from missions.state_machine import can_transition, ensure_transition, transition
from missions.tests.fakes import make_area, make_item


class TransitionTableTests(SimpleTestCase):
    def test_waiting_can_start_or_be_cancelled(self):
        self.assertTrue(can_transition(QueueStatus.WAITING, QueueStatus.EXECUTING))
        self.assertTrue(can_transition(QueueStatus.WAITING, QueueStatus.CANCELLED))
        self.assertFalse(can_transition(QueueStatus.WAITING, QueueStatus.COMPLETE))

    def test_terminal_statuses_have_no_exits(self):
        for terminal in (QueueStatus.COMPLETE, QueueStatus.ERROR, QueueStatus.CANCELLED):
            for target in QueueStatus.values:
                self.assertFalse(can_transition(terminal, target), f"{terminal} -> {target}")

    def test_ensure_transition_raises(self):
        with self.assertRaises(TransitionError):
            ensure_transition(QueueStatus.COMPLETE, QueueStatus.EXECUTING)


class TransitionCompareAndSetTests(TestCase):
    def test_second_writer_loses(self):
        item = make_item("M-1", status=QueueStatus.WAITING)
        stale_copy = MissionQueueItem.objects.get(pk=item.pk)

        self.assertTrue(transition(item, state_to=QueueStatus.EXECUTING))
        self.assertFalse(transition(stale_copy, state_to=QueueStatus.CANCELLED))

        item.refresh_from_db()
        self.assertEqual(item.status, QueueStatus.EXECUTING)
        self.assertIsNotNone(item.processed_at)
        self.assertEqual(stale_copy.status, QueueStatus.WAITING)

    def test_terminal_transition_sets_completed_at(self):
        item = make_item("M-2")
        self.assertTrue(transition(item, state_to=QueueStatus.COMPLETE))
        item.refresh_from_db()
        self.assertIsNotNone(item.completed_at)


class SlotTests(TestCase):
    def setUp(self):
        make_area("A", max_concurrent_robots=2)

    def test_acquire_stops_at_limit(self):
        self.assertTrue(try_acquire_slot("A"))
        self.assertTrue(try_acquire_slot("A"))
        self.assertFalse(try_acquire_slot("A"))
        self.assertEqual(AreaConcurrencyConfig.objects.get(area_key="A").active_count, 2)

    def test_bypass_limit_still_counts(self):
        try_acquire_slot("A")
        try_acquire_slot("A")
        self.assertTrue(try_acquire_slot("A", bypass_limit=True))
        config = AreaConcurrencyConfig.objects.get(area_key="A")
        self.assertEqual(config.active_count, 3)
        self.assertEqual(config.total_dispatched, 3)

    def test_release_never_goes_negative(self):
        self.assertFalse(release_slot("A"))
        self.assertEqual(AreaConcurrencyConfig.objects.get(area_key="A").active_count, 0)

    def test_unknown_area_is_created_from_defaults(self):
        with self.settings(MISSION_QUEUE={"DEFAULT_MAX_CONCURRENT_ROBOTS": 1, "DEFAULT_PRIORITY": 3}):
            self.assertTrue(try_acquire_slot("NEW"))
            self.assertFalse(try_acquire_slot("NEW"))
        config = AreaConcurrencyConfig.objects.get(area_key="NEW")
        self.assertEqual(config.default_priority, 3)

    def test_resync_counts_executing_items(self):
        AreaConcurrencyConfig.objects.filter(area_key="A").update(active_count=2)
        make_item("M-1")
        make_item("M-2", status=QueueStatus.COMPLETE)
        make_item("M-3", area_key="B")

        changed = resync_area_slots()

        self.assertEqual(changed, {"A": (2, 1), "B": (0, 1)})
        self.assertEqual(resync_area_slots(), {})


class ResyncCommandTests(TestCase):
    def test_reports_consistent_counters(self):
        make_area("A")
        out = StringIO()
        call_command("resync_area_slots", stdout=out)
        self.assertIn("All area slot counters are consistent.", out.getvalue())

    def test_reports_changed_areas(self):
        make_area("A", active_count=3)
        out = StringIO()
        call_command("resync_area_slots", stdout=out)
        self.assertIn("A: 3 -> 0", out.getvalue())
        self.assertIn("Resynced 1 area(s).", out.getvalue())
