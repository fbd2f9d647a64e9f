import sys
import os
import unittest
from datetime import datetime, timedelta

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from signal_relay.usage import UsageLimits, UsageTracker


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class TestUsageTracker(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock(datetime(2024, 5, 13, 10, 0))
        self.tracker = UsageTracker(UsageLimits(max_daily_model_calls=3, max_daily_messages=2), clock=self.clock)

    def test_user_hourly_window(self):
        print("\n🚀 [Test] Per-user hourly window")
        results = [self.tracker.check_and_reserve_user_request("U1") for _ in range(6)]
        self.assertEqual(results, [True, True, True, True, True, False])

        # other users are independent
        self.assertTrue(self.tracker.check_and_reserve_user_request("U2"))

        # exactly one hour is still the same window
        self.clock.advance(hours=1)
        self.assertFalse(self.tracker.check_and_reserve_user_request("U1"))

        self.clock.advance(seconds=1)
        self.assertTrue(self.tracker.check_and_reserve_user_request("U1"))
        self.assertEqual(self.tracker.users["U1"].request_count, 1)

    def test_missing_user_id_denied(self):
        self.assertFalse(self.tracker.check_and_reserve_user_request(""))
        self.assertFalse(self.tracker.check_and_reserve_user_request(None))
        self.assertEqual(self.tracker.users, {})

    def test_global_reservation(self):
        print("\n🚀 [Test] Global model-call reservation")
        self.assertTrue(self.tracker.check_and_reserve_global_call())
        self.assertTrue(self.tracker.check_and_reserve_global_call())
        self.assertTrue(self.tracker.check_and_reserve_global_call())
        # three in flight, none counted yet
        self.assertEqual(self.tracker.counters.model_calls_today, 0)
        self.assertFalse(self.tracker.check_and_reserve_global_call())

        self.tracker.record_global_call_success()
        self.tracker.release_global_call()
        self.assertEqual(self.tracker.counters.model_calls_today, 1)
        self.assertEqual(self.tracker.in_flight, 1)
        self.assertTrue(self.tracker.check_and_reserve_global_call())

    def test_failed_call_not_counted(self):
        self.assertTrue(self.tracker.check_and_reserve_global_call())
        self.tracker.release_global_call()
        self.assertEqual(self.tracker.counters.model_calls_today, 0)
        self.assertEqual(self.tracker.in_flight, 0)
        self.tracker.release_global_call()
        self.assertEqual(self.tracker.in_flight, 0)

    def test_unreserved_success_counts(self):
        for _ in range(3):
            self.tracker.record_global_call_success(reserved=False)
        self.assertEqual(self.tracker.counters.model_calls_today, 3)
        self.assertFalse(self.tracker.check_and_reserve_global_call())

    def test_daily_rollover(self):
        print("\n🚀 [Test] Date rollover")
        for _ in range(3):
            self.tracker.record_global_call_success(reserved=False)
        self.tracker.record_message_sent()
        self.tracker.record_message_sent()
        self.assertFalse(self.tracker.can_send_message())
        self.assertEqual(self.tracker.remaining_messages(), 0)

        self.clock.advance(days=1)
        self.assertTrue(self.tracker.can_send_message())
        self.assertEqual(self.tracker.remaining_messages(), 2)
        self.assertEqual(self.tracker.counters.model_calls_today, 0)
        self.assertEqual(self.tracker.counters.day_key.isoformat(), "2024-05-14")

    def test_rollover_clears_reservations(self):
        self.assertTrue(self.tracker.check_and_reserve_global_call())
        self.assertEqual(self.tracker.in_flight, 1)

        self.clock.advance(days=1)
        self.assertTrue(self.tracker.check_and_reserve_global_call())
        self.assertEqual(self.tracker.in_flight, 1)

    def test_expired_windows_dropped(self):
        print("\n🚀 [Test] Expired user windows pruned")
        self.tracker.check_and_reserve_user_request("U1")
        self.tracker.check_and_reserve_user_request("U2")
        self.clock.advance(minutes=30)
        self.tracker.check_and_reserve_user_request("U3")
        self.assertEqual(set(self.tracker.users), {"U1", "U2", "U3"})

        self.clock.advance(minutes=31)
        self.tracker.check_and_reserve_user_request("U4")
        self.assertEqual(set(self.tracker.users), {"U3", "U4"})

        self.clock.advance(hours=2)
        self.assertEqual(self.tracker.snapshot()["tracked_users"], 0)

    def test_snapshot(self):
        self.tracker.record_global_call_success(reserved=False)
        self.tracker.check_and_reserve_user_request("U1")
        snap = self.tracker.snapshot()
        self.assertEqual(snap["model_calls"], {"used": 1, "limit": 3, "percentage": 33})
        self.assertEqual(snap["messages"], {"used": 0, "limit": 2, "percentage": 0})
        self.assertEqual(snap["tracked_users"], 1)


if __name__ == '__main__':
    unittest.main()
