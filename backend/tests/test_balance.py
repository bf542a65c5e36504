import unittest
from types import SimpleNamespace

from vibecredits.services.balance import (
    CreditCounters,
    available_for_user,
    balance_snapshot,
    calculate_available_credits,
)


class TestCalculateAvailableCredits(unittest.TestCase):
    def test_zero_counters(self):
        self.assertEqual(calculate_available_credits(0, 0, 0), 0)

    def test_plan_plus_purchased(self):
        self.assertEqual(calculate_available_credits(100, 30, 50), 120)

    def test_over_consumed_plan_clamps_to_zero(self):
        self.assertEqual(calculate_available_credits(10, 50, 0), 0)

    def test_over_consumption_eats_into_purchased(self):
        self.assertEqual(calculate_available_credits(10, 30, 50), 30)

    def test_missing_counters_count_as_zero(self):
        self.assertEqual(calculate_available_credits(None, None, None), 0)
        self.assertEqual(calculate_available_credits(None, None, 25), 25)

    def test_never_negative(self):
        self.assertEqual(calculate_available_credits(0, 0, -5), 0)


class TestCreditCounters(unittest.TestCase):
    def test_plan_available(self):
        self.assertEqual(CreditCounters(500, 120, 0).plan_available, 380)
        self.assertEqual(CreditCounters(500, 700, 0).plan_available, 0)

    def test_snapshot_shape(self):
        user = SimpleNamespace(credits_limit=500, credits_used=100, credits_balance=40)
        self.assertEqual(
            balance_snapshot(user),
            {"credits_limit": 500, "credits_used": 100, "credits_balance": 40, "available": 440},
        )

    def test_user_without_subscription(self):
        user = SimpleNamespace(credits_limit=None, credits_used=None, credits_balance=75)
        self.assertEqual(available_for_user(user), 75)


if __name__ == "__main__":
    unittest.main()
