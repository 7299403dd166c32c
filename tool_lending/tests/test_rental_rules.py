import unittest
from datetime import date, timedelta
from decimal import Decimal

from tool_lending.services.rental_rules import (
    compute_price,
    first_conflict,
    has_conflict,
    intervals_overlap,
    is_allowed_anchor,
    is_maintenance_blocked,
    is_valid_interval,
    months_since,
    rental_weeks,
)
from tool_lending.tests.lending_fixtures import W1, W2, W3, W4


class CalendarRuleTests(unittest.TestCase):
    def test_only_fridays_are_anchors_over_three_weeks(self):
        for offset in range(21):
            day = W1 + timedelta(days=offset)
            self.assertEqual(is_allowed_anchor(day), offset % 7 == 0, day)

    def test_custom_anchor_weekday(self):
        monday = date(2026, 1, 5)
        self.assertTrue(is_allowed_anchor(monday, anchor_weekday=0))
        self.assertFalse(is_allowed_anchor(W1, anchor_weekday=0))

    def test_interval_must_end_after_start(self):
        self.assertTrue(is_valid_interval(W1, W2))
        self.assertFalse(is_valid_interval(W1, W1))
        self.assertFalse(is_valid_interval(W2, W1))
        self.assertFalse(is_valid_interval(W1, W2 + timedelta(days=1)))


class ConflictDetectorTests(unittest.TestCase):
    def test_back_to_back_intervals_do_not_overlap(self):
        self.assertFalse(intervals_overlap(W1, W2, W2, W3))
        self.assertFalse(intervals_overlap(W2, W3, W1, W2))

    def test_partial_overlap_and_containment(self):
        self.assertTrue(intervals_overlap(W1, W3, W2, W4))
        self.assertTrue(intervals_overlap(W2, W4, W1, W3))
        self.assertTrue(intervals_overlap(W1, W4, W2, W3))
        self.assertTrue(intervals_overlap(W2, W3, W1, W4))
        self.assertTrue(intervals_overlap(W1, W2, W1, W2))

    def test_first_conflict_returns_interfering_period(self):
        existing = [(W1, W2), (W3, W4)]
        self.assertIsNone(first_conflict(W2, W3, existing))
        self.assertEqual(first_conflict(W2, W4, existing), (W3, W4))
        self.assertTrue(has_conflict(W1, W3, existing))
        self.assertFalse(has_conflict(W1, W2, []))


class MaintenanceGateTests(unittest.TestCase):
    def test_months_since_counts_complete_months(self):
        self.assertEqual(months_since(date(2025, 1, 31), date(2025, 2, 28)), 0)
        self.assertEqual(months_since(date(2025, 1, 15), date(2025, 2, 15)), 1)
        self.assertEqual(months_since(date(2025, 1, 15), date(2025, 4, 14)), 2)
        self.assertEqual(months_since(date(2025, 5, 1), date(2025, 1, 1)), 0)

    def test_high_importance_overdue_tool_is_blocked(self):
        today = date(2026, 1, 2)
        three_months_ago = date(2025, 10, 2)
        self.assertTrue(is_maintenance_blocked("high", 1, three_months_ago, today))

    def test_lower_importance_never_blocks_by_default(self):
        today = date(2026, 1, 2)
        self.assertFalse(is_maintenance_blocked("medium", 1, date(2024, 1, 1), today))
        self.assertFalse(is_maintenance_blocked("low", 1, None, today))
        self.assertTrue(is_maintenance_blocked("medium", 1, date(2024, 1, 1), today, blocking_levels=("medium", "high")))

    def test_no_interval_or_recent_service_passes(self):
        today = date(2026, 1, 2)
        self.assertFalse(is_maintenance_blocked("high", None, date(2020, 1, 1), today))
        self.assertFalse(is_maintenance_blocked("high", 3, date(2025, 11, 20), today))
        self.assertFalse(is_maintenance_blocked("high", 1, date(2025, 12, 2), today))

    def test_never_serviced_high_importance_tool_is_blocked(self):
        self.assertTrue(is_maintenance_blocked("high", 6, None, date(2026, 1, 2)))


class PricingTests(unittest.TestCase):
    def test_one_anchor_week_costs_the_weekly_rate(self):
        self.assertEqual(compute_price(Decimal("15.00"), W1, W2), Decimal("15.00"))

    def test_price_scales_with_weeks(self):
        self.assertEqual(rental_weeks(W1, W4), 3)
        self.assertEqual(compute_price(Decimal("12.50"), W1, W4), Decimal("37.50"))

    def test_partial_week_rounds_up_with_one_week_minimum(self):
        self.assertEqual(rental_weeks(W1, W1 + timedelta(days=2)), 1)
        self.assertEqual(rental_weeks(W1, W1 + timedelta(days=10)), 2)

    def test_override_wins(self):
        self.assertEqual(compute_price(Decimal("15.00"), W1, W4, override=5), Decimal("5.00"))
        self.assertEqual(compute_price(Decimal("15.00"), W1, W2, override=0), Decimal("0.00"))


if __name__ == "__main__":
    unittest.main()
