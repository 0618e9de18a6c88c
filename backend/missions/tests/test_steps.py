from __future__ import annotations

from django.test import SimpleTestCase

from config.domain_exceptions import ValidationError
from missions.steps import load_steps, parse_steps


class ParseStepsTests(SimpleTestCase):
    def test_accepts_controller_field_names(self):
        steps = parse_steps(
            [
                {"position": "N1", "passStrategy": "manual", "putDown": True, "waitingMillis": 500},
                {"position": " N2 ", "type": "area"},
            ]
        )
        self.assertEqual([s.position for s in steps], ["N1", "N2"])
        self.assertEqual([s.sequence for s in steps], [1, 2])
        self.assertTrue(steps[0].is_manual)
        self.assertTrue(steps[0].put_down)
        self.assertEqual(steps[0].waiting_millis, 500)
        self.assertEqual(steps[1].type, "AREA")

    def test_remote_payload_uses_camel_case(self):
        step = parse_steps([{"position": "N1", "pass_strategy": "MANUAL"}])[0]
        self.assertEqual(
            step.as_remote_payload(),
            {
                "sequence": 1,
                "position": "N1",
                "type": "NODE_POINT",
                "putDown": False,
                "passStrategy": "MANUAL",
                "waitingMillis": 0,
            },
        )

    def test_rejects_empty_list(self):
        with self.assertRaises(ValidationError):
            parse_steps([])

    def test_rejects_missing_position(self):
        with self.assertRaises(ValidationError):
            parse_steps([{"type": "NODE_POINT"}])

    def test_rejects_unknown_pass_strategy(self):
        with self.assertRaises(ValidationError):
            parse_steps([{"position": "N1", "pass_strategy": "SOMETIMES"}])

    def test_rejects_negative_wait(self):
        with self.assertRaises(ValidationError):
            parse_steps([{"position": "N1", "waiting_millis": -1}])

    def test_load_steps_skips_rows_without_position(self):
        steps = load_steps([{"position": "N1"}, {"type": "AREA"}, "junk", {"position": "N3", "sequence": 7}])
        self.assertEqual([(s.position, s.sequence) for s in steps], [("N1", 1), ("N3", 7)])
        self.assertEqual(load_steps(None), [])
