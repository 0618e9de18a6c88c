from __future__ import annotations

from django.test import SimpleTestCase

from missions.correlator import MatchType, ZoneInfo, correlate, similarity
from missions.tests.fakes import node_steps


class SimilarityTests(SimpleTestCase):
    def test_identical_codes_ignore_case(self):
        self.assertEqual(similarity("n101", "N101"), 1.0)

    def test_prefix_counts_double(self):
        # prefix 5, suffix 3, longer length 6
        self.assertAlmostEqual(similarity("N1000", "N10000"), 13 / 18)

    def test_single_trailing_difference_stays_below_threshold(self):
        self.assertAlmostEqual(similarity("N101A", "N101B"), 8 / 15)

    def test_empty_code(self):
        self.assertEqual(similarity("", "N1"), 0.0)


class CorrelateTests(SimpleTestCase):
    def test_exact_match_on_first_step(self):
        match = correlate("N101", node_steps("N101", "N102", "N103"))
        self.assertEqual(match.match_type, MatchType.EXACT)
        self.assertEqual(match.current_step_index, 0)
        self.assertEqual(match.confidence, 1.0)
        self.assertEqual(match.progress_percentage, 0.0)
        self.assertEqual(match.completed_steps, [])

    def test_exact_match_reports_completed_steps(self):
        match = correlate("n103", node_steps("N101", "N102", "N103"))
        self.assertEqual(match.current_step_index, 2)
        self.assertEqual(match.completed_steps, [0, 1])
        self.assertEqual(match.progress_percentage, 66.7)

    def test_zone_membership(self):
        zones = [ZoneInfo(code="PICK", node_codes=("N500", "N501"))]
        match = correlate("N501", node_steps("N101", "PICK", "N103"), zones)
        self.assertEqual(match.match_type, MatchType.AREA)
        self.assertEqual(match.current_step_index, 1)
        self.assertTrue(match.is_in_area)
        self.assertIsNone(match.confidence)
        self.assertEqual(match.progress_percentage, 33.3)

    def test_zone_code_prefix(self):
        zones = [ZoneInfo(code="DOCK")]
        match = correlate("DOCK-07", node_steps("N101", "DOCK"), zones)
        self.assertEqual(match.match_type, MatchType.AREA)
        self.assertEqual(match.current_step_index, 1)

    def test_exact_match_wins_over_zone(self):
        zones = [ZoneInfo(code="PICK", node_codes=("N101",))]
        match = correlate("N101", node_steps("PICK", "N101"), zones)
        self.assertEqual(match.match_type, MatchType.EXACT)
        self.assertEqual(match.current_step_index, 1)

    def test_fuzzy_match_above_threshold(self):
        match = correlate("N1000", node_steps("N10000", "Z999"))
        self.assertEqual(match.match_type, MatchType.FUZZY)
        self.assertEqual(match.current_step_index, 0)
        self.assertEqual(match.confidence, 0.7222)

    def test_no_match(self):
        match = correlate("N101", node_steps("Z999"))
        self.assertEqual(match.match_type, MatchType.NONE)
        self.assertIsNone(match.current_step_index)
        self.assertEqual(match.progress_percentage, 0.0)

    def test_near_miss_is_not_matched(self):
        match = correlate("N101A", node_steps("N101B"))
        self.assertEqual(match.match_type, MatchType.NONE)

    def test_missing_position_or_steps(self):
        self.assertEqual(correlate(None, node_steps("N1")).match_type, MatchType.NONE)
        self.assertEqual(correlate("N1", []).total_steps, 0)

    def test_as_dict(self):
        payload = correlate("N2", node_steps("N1", "N2")).as_dict()
        self.assertEqual(payload["match_type"], "exact")
        self.assertEqual(payload["completed_steps"], [0])
        self.assertEqual(payload["progress_percentage"], 50.0)
