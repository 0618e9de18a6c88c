from __future__ import annotations

from django.test import TestCase

from config.domain_exceptions import NotFoundError, ValidationError
from missions.errors import AdmissionConflict, DuplicateMissionCode, TransitionError
from missions.gateways.amr_controller import AmrControllerNotReachable, AmrControllerRejected
from missions.models import (
    AreaConcurrencyConfig,
    MissionHistory,
    MissionQueueItem,
    MissionTemplate,
    QueueStatus,
    RobotOpportunityState,
    TriggerSource,
)
from missions.tests.fakes import FakeAmrGateway, RendezvousAmrGateway, make_area, make_item, node_steps
from missions.use_cases import admission
from missions.use_cases.lifecycle import finalize


class AdmissionTestBase(TestCase):
    def setUp(self):
        self.gateway = FakeAmrGateway()
        self.area = make_area("A", max_concurrent_robots=1)

    def _enqueue(self, code: str, *, priority: int | None = 5, positions=("N1", "N2"), **extra):
        data = {"mission_code": code, "area_key": "A", "steps": node_steps(*positions), **extra}
        if priority is not None:
            data["priority"] = priority
        return admission.enqueue(data, gateway=self.gateway)

    def _item(self, code: str) -> MissionQueueItem:
        return MissionQueueItem.objects.get(mission_code=code)

    def _complete(self, code: str, **kwargs):
        item = self._item(code)
        self.assertTrue(finalize(item, status=QueueStatus.COMPLETE))
        return admission.process_next(item.area_key, gateway=self.gateway, **kwargs)

    def _active_count(self) -> int:
        return AreaConcurrencyConfig.objects.get(area_key="A").active_count


class EnqueueTests(AdmissionTestBase):
    def test_free_slot_dispatches_immediately(self):
        result = self._enqueue("X")

        self.assertTrue(result.execute_immediately)
        self.assertTrue(result.success)
        self.assertEqual(result.status, QueueStatus.EXECUTING)
        self.assertIsNone(result.queue_position)
        item = self._item("X")
        self.assertEqual(item.status, QueueStatus.EXECUTING)
        self.assertTrue(item.submitted_to_remote)
        self.assertEqual([spec.mission_code for spec in self.gateway.submitted], ["X"])
        self.assertEqual(self.gateway.submitted[0].steps[0]["position"], "N1")
        self.assertEqual(self._active_count(), 1)

    def test_full_area_queues_with_position(self):
        self._enqueue("X")
        first = self._enqueue("A1")
        second = self._enqueue("A2")

        self.assertFalse(first.execute_immediately)
        self.assertEqual(first.queue_position, 1)
        self.assertEqual(second.queue_position, 2)
        self.assertEqual(len(self.gateway.submitted), 1)

    def test_serving_order_is_priority_then_age(self):
        self._enqueue("X")
        self._enqueue("A", priority=5)
        self._enqueue("B", priority=8)
        self._enqueue("C", priority=8)

        served = []
        current = "X"
        for _ in range(3):
            picked = self._complete(current)
            served.append(picked.mission_code)
            current = picked.mission_code

        self.assertEqual(served, ["B", "C", "A"])
        self.assertEqual(self._active_count(), 1)

    def test_waiting_item_of_equal_priority_blocks_immediate_dispatch(self):
        self._enqueue("X")
        self._enqueue("A", priority=5)
        finalize(self._item("X"), status=QueueStatus.COMPLETE)
        self.assertEqual(self._active_count(), 0)

        same = self._enqueue("D", priority=5)
        self.assertFalse(same.execute_immediately)
        self.assertEqual(same.queue_position, 2)

        higher = self._enqueue("E", priority=9)
        self.assertTrue(higher.execute_immediately)

    def test_concurrency_limit_is_never_exceeded(self):
        AreaConcurrencyConfig.objects.filter(area_key="A").update(max_concurrent_robots=2)
        for index in range(5):
            self._enqueue(f"M{index}")

        self.assertEqual(MissionQueueItem.objects.filter(status=QueueStatus.EXECUTING).count(), 2)
        self.assertEqual(self._active_count(), 2)
        self.assertEqual(admission.process_queue(gateway=self.gateway), 0)

    def test_process_queue_fills_freed_slots(self):
        self._enqueue("X")
        self._enqueue("Y")
        finalize(self._item("X"), status=QueueStatus.COMPLETE)

        self.assertEqual(admission.process_queue(gateway=self.gateway), 1)
        self.assertEqual(self._item("Y").status, QueueStatus.EXECUTING)

    def test_queueing_disabled_bypasses_limit(self):
        make_area("FREE", max_concurrent_robots=1, queueing_enabled=False)
        for index in range(3):
            result = admission.enqueue(
                {"mission_code": f"F{index}", "area_key": "FREE", "steps": node_steps("N1")},
                gateway=self.gateway,
            )
            self.assertTrue(result.execute_immediately)
        self.assertEqual(AreaConcurrencyConfig.objects.get(area_key="FREE").active_count, 3)

    def test_default_priority_comes_from_area(self):
        AreaConcurrencyConfig.objects.filter(area_key="A").update(default_priority=7)
        self._enqueue("X", priority=None)
        self.assertEqual(self._item("X").priority, 7)

    def test_generated_mission_code(self):
        result = admission.enqueue({"area_key": "A", "steps": node_steps("N1")}, gateway=self.gateway)
        self.assertTrue(result.mission_code.startswith("mission"))
        self.assertTrue(MissionQueueItem.objects.filter(mission_code=result.mission_code).exists())

    def test_duplicate_active_code_is_rejected(self):
        self._enqueue("X")
        with self.assertRaises(DuplicateMissionCode):
            self._enqueue("X")
        self.assertEqual(MissionQueueItem.objects.filter(mission_code="X").count(), 1)

    def test_code_can_be_reused_after_terminal_status(self):
        self._enqueue("X")
        finalize(self._item("X"), status=QueueStatus.COMPLETE)
        result = self._enqueue("X")
        self.assertTrue(result.execute_immediately)
        self.assertEqual(MissionQueueItem.objects.filter(mission_code="X").count(), 2)

    def test_require_immediate_without_capacity(self):
        self._enqueue("X")
        with self.assertRaises(AdmissionConflict):
            self._enqueue("Y", require_immediate=True)
        self.assertFalse(MissionQueueItem.objects.filter(mission_code="Y").exists())

    def test_submit_failure_moves_item_to_error_and_frees_slot(self):
        self.gateway.submit_error = AmrControllerNotReachable("controller down", operation="submit")

        result = self._enqueue("X")

        self.assertTrue(result.execute_immediately)
        self.assertFalse(result.success)
        self.assertEqual(result.status, QueueStatus.ERROR)
        self.assertIn("controller down", result.message)
        self.assertFalse(result.as_dict()["success"])
        item = self._item("X")
        self.assertEqual(item.status, QueueStatus.ERROR)
        self.assertTrue(item.error_message.startswith("Submission failed"))
        self.assertIn("controller down", item.submit_error)
        self.assertEqual(self._active_count(), 0)
        self.assertTrue(MissionHistory.objects.filter(mission_code="X", status=QueueStatus.ERROR).exists())

    def test_invalid_request(self):
        with self.assertRaises(ValidationError):
            admission.enqueue({"area_key": "A", "steps": []}, gateway=self.gateway)
        with self.assertRaises(ValidationError):
            admission.enqueue({"steps": node_steps("N1")}, gateway=self.gateway)


class ServingTests(AdmissionTestBase):
    def test_process_queue_submits_areas_concurrently(self):
        gateway = RendezvousAmrGateway(parties=3)
        for area_key in ("B", "C", "D"):
            make_area(area_key)
            make_item(f"W-{area_key}", area_key=area_key, status=QueueStatus.WAITING)

        self.assertEqual(admission.process_queue(gateway=gateway), 3)

        self.assertCountEqual([spec.mission_code for spec in gateway.submitted], ["W-B", "W-C", "W-D"])
        for area_key in ("B", "C", "D"):
            item = self._item(f"W-{area_key}")
            self.assertEqual(item.status, QueueStatus.EXECUTING)
            self.assertTrue(item.submitted_to_remote)
            self.assertEqual(AreaConcurrencyConfig.objects.get(area_key=area_key).active_count, 1)

    def test_failed_submission_frees_slot_for_next_waiting_item(self):
        make_item("W1", status=QueueStatus.WAITING, priority=9)
        make_item("W2", status=QueueStatus.WAITING, priority=1)
        accept = self.gateway.submit

        def submit(spec):
            if spec.mission_code == "W1":
                raise AmrControllerRejected("no robot available", operation="submit", code="E7")
            return accept(spec)

        self.gateway.submit = submit

        self.assertEqual(admission.process_queue(gateway=self.gateway), 2)

        self.assertEqual(self._item("W1").status, QueueStatus.ERROR)
        self.assertEqual(self._item("W2").status, QueueStatus.EXECUTING)
        self.assertEqual([spec.mission_code for spec in self.gateway.submitted], ["W2"])
        self.assertEqual(self._active_count(), 1)

    def test_pick_next_does_not_submit(self):
        make_item("W1", status=QueueStatus.WAITING)

        picked = admission.pick_next("A")

        self.assertEqual(picked.mission_code, "W1")
        self.assertEqual(self._item("W1").status, QueueStatus.EXECUTING)
        self.assertFalse(self._item("W1").submitted_to_remote)
        self.assertEqual(self.gateway.submitted, [])
        self.assertIsNone(admission.pick_next("A"))


class TemplateEnqueueTests(AdmissionTestBase):
    def test_template_fills_missing_fields(self):
        template = MissionTemplate.objects.create(
            name="Restock",
            area_key="A",
            priority=6,
            steps=node_steps("S1", "S2"),
            robot_ids=["R7"],
            container_code="RACK-1",
        )

        result = admission.enqueue(
            {"template_id": template.pk, "trigger_source": TriggerSource.SCHEDULED},
            gateway=self.gateway,
        )

        item = MissionQueueItem.objects.get(pk=result.queue_id)
        self.assertEqual(item.template_id, template.pk)
        self.assertEqual(item.mission_name, "Restock")
        self.assertEqual(item.priority, 6)
        self.assertEqual(item.trigger_source, TriggerSource.SCHEDULED)
        spec = self.gateway.submitted[0]
        self.assertEqual(spec.robot_ids, ["R7"])
        self.assertEqual(spec.container_code, "RACK-1")
        self.assertEqual([step["position"] for step in spec.steps], ["S1", "S2"])

    def test_unknown_template(self):
        with self.assertRaises(NotFoundError):
            admission.enqueue({"template_id": 999}, gateway=self.gateway)


class OpportunisticDispatchTests(AdmissionTestBase):
    def test_robot_chains_to_nearby_work_within_bound(self):
        self._enqueue("X")
        self._enqueue("FAR", positions=("N1", "N2"))
        self._enqueue("NEAR", positions=("N9", "N2"))
        finalize(self._item("X"), status=QueueStatus.COMPLETE)

        picked = admission.process_next("A", robot_id="R1", robot_node_code="N9", gateway=self.gateway)

        self.assertEqual(picked.mission_code, "NEAR")
        picked.refresh_from_db()
        self.assertTrue(picked.is_opportunistic)
        self.assertEqual(picked.assigned_robot_id, "R1")
        self.assertEqual(self.gateway.submitted[-1].robot_ids, ["R1"])
        self.assertEqual(RobotOpportunityState.objects.get(robot_id="R1").consecutive_opportunistic, 1)
        self.assertEqual(AreaConcurrencyConfig.objects.get(area_key="A").opportunistic_dispatched, 1)

        # The bound is one consecutive pick: the next release serves strict order.
        self._enqueue("NEAR2", positions=("N9",))
        finalize(self._item("NEAR"), status=QueueStatus.COMPLETE)
        picked = admission.process_next("A", robot_id="R1", robot_node_code="N9", gateway=self.gateway)

        self.assertEqual(picked.mission_code, "FAR")
        self.assertFalse(picked.is_opportunistic)
        self.assertEqual(RobotOpportunityState.objects.get(robot_id="R1").consecutive_opportunistic, 0)

    def test_head_of_queue_is_not_counted_as_opportunistic(self):
        self._enqueue("X")
        self._enqueue("NEAR", positions=("N9",))
        finalize(self._item("X"), status=QueueStatus.COMPLETE)

        picked = admission.process_next("A", robot_id="R1", robot_node_code="N9", gateway=self.gateway)

        self.assertFalse(picked.is_opportunistic)


class CancelTests(AdmissionTestBase):
    def test_cancel_waiting_is_local(self):
        self._enqueue("X")
        self._enqueue("Y")

        item = admission.cancel(self._item("Y").pk, reason="not needed", gateway=self.gateway)

        self.assertEqual(item.status, QueueStatus.CANCELLED)
        self.assertEqual(self.gateway.cancelled, [])
        self.assertEqual(self._active_count(), 1)
        self.assertTrue(MissionHistory.objects.filter(mission_code="Y", status=QueueStatus.CANCELLED).exists())

    def test_cancel_executing_waits_for_controller_and_serves_next(self):
        self._enqueue("X")
        self._enqueue("Y")

        item = admission.cancel(self._item("X").pk, mode="NORMAL", gateway=self.gateway)

        self.assertEqual(item.status, QueueStatus.CANCELLED)
        self.assertEqual(self.gateway.cancelled, [("X", "NORMAL", "")])
        self.assertEqual(self._item("Y").status, QueueStatus.EXECUTING)
        self.assertEqual(self._active_count(), 1)

    def test_failed_remote_cancel_leaves_item_executing(self):
        self._enqueue("X")
        self.gateway.cancel_error = AmrControllerRejected("refused", operation="cancel", code="E42")

        with self.assertRaises(AmrControllerRejected):
            admission.cancel(self._item("X").pk, gateway=self.gateway)

        self.assertEqual(self._item("X").status, QueueStatus.EXECUTING)
        self.assertEqual(self._active_count(), 1)
        self.assertFalse(MissionHistory.objects.filter(mission_code="X").exists())

    def test_cancel_terminal_item(self):
        self._enqueue("X")
        finalize(self._item("X"), status=QueueStatus.COMPLETE)
        with self.assertRaises(TransitionError):
            admission.cancel(self._item("X").pk, gateway=self.gateway)

    def test_cancel_unknown_item(self):
        with self.assertRaises(NotFoundError):
            admission.cancel(12345, gateway=self.gateway)

    def test_cancel_by_mission_code(self):
        self._enqueue("X")
        admission.cancel_mission("X", gateway=self.gateway)
        self.assertEqual(self._item("X").status, QueueStatus.CANCELLED)


class UpdateAndStatsTests(AdmissionTestBase):
    def test_update_waiting_priority_changes_position(self):
        self._enqueue("X")
        self._enqueue("A", priority=5)
        self._enqueue("B", priority=5)

        item = admission.update_waiting(self._item("B").pk, priority=9)

        self.assertEqual(item.priority, 9)
        self.assertEqual(admission.get_queue_position(item), 1)
        self.assertEqual(admission.get_queue_position(self._item("A")), 2)

    def test_update_waiting_steps(self):
        self._enqueue("X")
        self._enqueue("Y")
        item = admission.update_waiting(self._item("Y").pk, steps=[{"position": "Z1"}])
        self.assertEqual([step["position"] for step in item.steps], ["Z1"])

    def test_executing_item_is_immutable(self):
        self._enqueue("X")
        with self.assertRaises(TransitionError):
            admission.update_waiting(self._item("X").pk, priority=1)

    def test_stats(self):
        self._enqueue("X")
        self._enqueue("Y")
        self._enqueue("Z")
        admission.cancel(self._item("Z").pk, gateway=self.gateway)

        stats = admission.get_stats("A")

        self.assertEqual(stats["queued_count"], 1)
        self.assertEqual(stats["processing_count"], 1)
        self.assertEqual(stats["available_slots"], 0)
        self.assertEqual(stats["total_slots"], 1)
        self.assertEqual(stats["cancelled_count"], 1)
