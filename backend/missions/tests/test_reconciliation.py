from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

from django.test import TestCase
from django.utils import timezone

from missions.gateways.amr_controller import AmrControllerNotReachable, RobotTelemetry
from missions.models import (
    AreaConcurrencyConfig,
    ManualPauseRecord,
    MissionHistory,
    MissionQueueItem,
    QueueStatus,
    RemoteStatus,
    Zone,
)
from missions.signals import mission_status_changed
from missions.tests.fakes import FakeAmrGateway, RendezvousAmrGateway, make_area, node_steps
from missions.use_cases import admission
from missions.use_cases.reconciliation import reconcile


class ReconcileTests(TestCase):
    def setUp(self):
        self.gateway = FakeAmrGateway()
        make_area("A", max_concurrent_robots=1)
        admission.enqueue(
            {"mission_code": "M1", "area_key": "A", "steps": node_steps("N1", "N2", "N3", manual=("N2",))},
            gateway=self.gateway,
        )

    def _item(self, code: str = "M1") -> MissionQueueItem:
        return MissionQueueItem.objects.get(mission_code=code)

    def test_completion_is_applied_once(self):
        handler = MagicMock()
        mission_status_changed.connect(handler, weak=False)
        self.addCleanup(mission_status_changed.disconnect, handler)
        self.gateway.set_job("M1", RemoteStatus.COMPLETE, robot_id="R1")

        with self.captureOnCommitCallbacks(execute=True):
            first = reconcile(gateway=self.gateway)
        with self.captureOnCommitCallbacks(execute=True):
            second = reconcile(gateway=self.gateway)

        self.assertEqual(first.finalized, 1)
        self.assertEqual(second.checked, 0)
        item = self._item()
        self.assertEqual(item.status, QueueStatus.COMPLETE)
        self.assertEqual(item.assigned_robot_id, "R1")
        self.assertEqual(MissionHistory.objects.filter(mission_code="M1").count(), 1)
        completes = [c for c in handler.call_args_list if c.kwargs.get("status") == QueueStatus.COMPLETE]
        self.assertEqual(len(completes), 1)
        self.assertEqual(AreaConcurrencyConfig.objects.get(area_key="A").active_count, 0)

    def test_startup_error_moves_item_to_error(self):
        self.gateway.set_job("M1", RemoteStatus.STARTUP_ERROR, warn_code="W12")

        summary = reconcile(gateway=self.gateway)

        self.assertEqual(summary.finalized, 1)
        item = self._item()
        self.assertEqual(item.status, QueueStatus.ERROR)
        self.assertIn("startup_error", item.error_message)
        self.assertIn("W12", item.error_message)

    def test_remote_cancel_is_mirrored(self):
        self.gateway.set_job("M1", RemoteStatus.CANCELLED)
        reconcile(gateway=self.gateway)
        self.assertEqual(self._item().status, QueueStatus.CANCELLED)

    def test_completion_dispatches_next_waiting_item(self):
        admission.enqueue({"mission_code": "M2", "area_key": "A", "steps": node_steps("N1")}, gateway=self.gateway)
        self.gateway.set_job("M1", RemoteStatus.COMPLETE, robot_id="R1")

        reconcile(gateway=self.gateway)

        self.assertEqual(self._item("M2").status, QueueStatus.EXECUTING)
        self.assertEqual([spec.mission_code for spec in self.gateway.submitted], ["M1", "M2"])
        self.assertEqual(AreaConcurrencyConfig.objects.get(area_key="A").active_count, 1)

    def test_missing_job_within_grace_is_left_alone(self):
        summary = reconcile(gateway=self.gateway)

        self.assertEqual(summary.stale, 0)
        item = self._item()
        self.assertEqual(item.status, QueueStatus.EXECUTING)
        self.assertIsNotNone(item.last_polled_at)

    def test_missing_job_after_grace_is_stale(self):
        MissionQueueItem.objects.filter(mission_code="M1").update(submitted_at=timezone.now() - timedelta(seconds=400))

        summary = reconcile(gateway=self.gateway)

        self.assertEqual(summary.stale, 1)
        item = self._item()
        self.assertEqual(item.status, QueueStatus.ERROR)
        self.assertTrue(item.error_message.startswith("ReconciliationStale"))
        self.assertEqual(AreaConcurrencyConfig.objects.get(area_key="A").active_count, 0)

    def test_poll_failure_keeps_item_executing(self):
        self.gateway.poll_error = AmrControllerNotReachable("timeout", operation="query_jobs")

        summary = reconcile(gateway=self.gateway)

        self.assertEqual(len(summary.errors), 1)
        self.assertIn("M1", summary.errors[0])
        self.assertEqual(self._item().status, QueueStatus.EXECUTING)

    def test_progress_from_robot_position(self):
        self.gateway.set_job("M1", RemoteStatus.EXECUTING, robot_id="R1")
        self.gateway.robots["R1"] = RobotTelemetry(robot_id="R1", node_code="N3", battery_level=81.5, status="busy")

        first = reconcile(gateway=self.gateway)
        second = reconcile(gateway=self.gateway)

        self.assertEqual(first.updated, 1)
        self.assertEqual(second.updated, 0)
        item = self._item()
        self.assertEqual(item.remote_status, RemoteStatus.EXECUTING)
        self.assertEqual(item.robot_node_code, "N3")
        self.assertEqual(item.robot_battery_level, 81.5)
        self.assertEqual(item.current_step_index, 2)
        self.assertEqual(item.progress_percentage, 66.7)

    def test_waiting_at_manual_waypoint_pauses_mission(self):
        self.gateway.set_job("M1", RemoteStatus.WAITING, robot_id="R1")
        self.gateway.robots["R1"] = RobotTelemetry(robot_id="R1", node_code="N2")

        reconcile(gateway=self.gateway)
        reconcile(gateway=self.gateway)

        item = self._item()
        self.assertEqual(item.status, QueueStatus.EXECUTING)
        self.assertTrue(item.waiting_for_resume)
        self.assertEqual(item.current_waypoint, "N2")
        self.assertEqual(ManualPauseRecord.objects.filter(mission_code="M1", pause_end__isnull=True).count(), 1)

    def test_unknown_remote_status_is_not_terminal(self):
        self.gateway.set_job("M1", RemoteStatus.UNKNOWN)
        summary = reconcile(gateway=self.gateway)
        self.assertEqual(summary.finalized, 0)
        self.assertEqual(self._item().status, QueueStatus.EXECUTING)

    def test_resume_on_controller_console_closes_pause(self):
        self.gateway.set_job("M1", RemoteStatus.WAITING, robot_id="R1")
        self.gateway.robots["R1"] = RobotTelemetry(robot_id="R1", node_code="N2")
        reconcile(gateway=self.gateway)
        self.assertTrue(self._item().waiting_for_resume)

        self.gateway.set_job("M1", RemoteStatus.EXECUTING, robot_id="R1")
        self.gateway.robots["R1"] = RobotTelemetry(robot_id="R1", node_code="N3")
        summary = reconcile(gateway=self.gateway)

        self.assertEqual(summary.updated, 1)
        item = self._item()
        self.assertFalse(item.waiting_for_resume)
        self.assertEqual(item.current_waypoint, "")
        self.assertIn("N2", item.visited_waypoints)
        self.assertFalse(ManualPauseRecord.objects.filter(mission_code="M1", pause_end__isnull=True).exists())
        self.assertEqual(self.gateway.resumed, [])

    def test_unknown_status_keeps_pause_open(self):
        self.gateway.set_job("M1", RemoteStatus.WAITING, robot_id="R1")
        self.gateway.robots["R1"] = RobotTelemetry(robot_id="R1", node_code="N2")
        reconcile(gateway=self.gateway)

        self.gateway.set_job("M1", RemoteStatus.UNKNOWN, robot_id="R1")
        reconcile(gateway=self.gateway)

        self.assertTrue(self._item().waiting_for_resume)
        self.assertEqual(ManualPauseRecord.objects.filter(mission_code="M1", pause_end__isnull=True).count(), 1)

    def test_zone_lookup_is_limited_to_the_item_area(self):
        MissionQueueItem.objects.filter(mission_code="M1").update(steps=node_steps("N1", "PICK", "N3"))
        Zone.objects.create(code="PICK", area_key="B", node_codes=["X77"])
        self.gateway.set_job("M1", RemoteStatus.EXECUTING, robot_id="R1")
        self.gateway.robots["R1"] = RobotTelemetry(robot_id="R1", node_code="X77")

        reconcile(gateway=self.gateway)
        self.assertIsNone(self._item().current_step_index)

        Zone.objects.filter(code="PICK").update(area_key="A")
        reconcile(gateway=self.gateway)
        self.assertEqual(self._item().current_step_index, 1)

    def test_freed_slots_are_served_concurrently_after_the_pass(self):
        make_area("B", max_concurrent_robots=1)
        admission.enqueue({"mission_code": "M3", "area_key": "B", "steps": node_steps("N5")}, gateway=self.gateway)
        admission.enqueue({"mission_code": "M2", "area_key": "A", "steps": node_steps("N1")}, gateway=self.gateway)
        admission.enqueue({"mission_code": "M4", "area_key": "B", "steps": node_steps("N6")}, gateway=self.gateway)
        self.assertEqual(self._item("M2").status, QueueStatus.WAITING)
        self.assertEqual(self._item("M4").status, QueueStatus.WAITING)
        self.gateway.set_job("M1", RemoteStatus.COMPLETE, robot_id="R1")
        self.gateway.set_job("M3", RemoteStatus.COMPLETE, robot_id="R2")
        rendezvous = RendezvousAmrGateway(parties=2)
        rendezvous.jobs = dict(self.gateway.jobs)

        summary = reconcile(gateway=rendezvous)

        self.assertEqual(summary.finalized, 2)
        self.assertEqual(summary.dispatched, 2)
        self.assertEqual(summary.as_dict()["dispatched"], 2)
        self.assertCountEqual([spec.mission_code for spec in rendezvous.submitted], ["M2", "M4"])
        self.assertEqual(self._item("M2").status, QueueStatus.EXECUTING)
        self.assertEqual(self._item("M4").status, QueueStatus.EXECUTING)
