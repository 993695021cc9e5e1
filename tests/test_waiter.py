import threading
import time
import unittest

from fake_s3 import client_error, make_client
from s3kit.errors import AuthFailureError, ValidationError
from s3kit.waiter import (
    WaitOutcome,
    Waiter,
    WaiterState,
    bucket_exists,
    bucket_not_exists,
    object_exists,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FakeEvent:
    """Cancel event whose ``wait`` advances a fake clock instead of sleeping."""

    def __init__(self, clock, on_wait=None):
        self._clock = clock
        self._set = False
        self.waits = []
        self.on_wait = on_wait

    def is_set(self):
        return self._set

    def set(self):
        self._set = True

    def wait(self, timeout=None):
        self.waits.append(timeout)
        self._clock.now += timeout
        if self.on_wait:
            self.on_wait(len(self.waits))
        return self._set


class WaiterTests(unittest.TestCase):
    def test_times_out_at_deadline(self):
        clock = FakeClock()
        event = FakeEvent(clock)
        waiter = Waiter(poll_interval=1.0, timeout=5.0, cancel_event=event, clock=clock)

        outcome = waiter.wait_until(lambda: False)

        self.assertEqual(WaitOutcome.TIMED_OUT, outcome)
        self.assertEqual(WaiterState.TIMED_OUT, waiter.state)
        self.assertAlmostEqual(5.0, clock.now)
        self.assertEqual(6, waiter.attempts)
        self.assertEqual([1.0] * 5, event.waits)

    def test_times_out_in_real_time(self):
        waiter = Waiter(poll_interval=0.02, timeout=0.1)
        started = time.monotonic()

        outcome = waiter.wait_until(lambda: False)

        elapsed = time.monotonic() - started
        self.assertEqual(WaitOutcome.TIMED_OUT, outcome)
        self.assertGreaterEqual(elapsed, 0.09)
        self.assertLess(elapsed, 1.0)

    def test_last_sleep_is_clipped_to_deadline(self):
        clock = FakeClock()
        event = FakeEvent(clock)
        waiter = Waiter(poll_interval=2.0, timeout=5.0, cancel_event=event, clock=clock)

        waiter.wait_until(lambda: False)

        self.assertEqual([2.0, 2.0, 1.0], event.waits)

    def test_succeeds_when_predicate_holds(self):
        clock = FakeClock()
        event = FakeEvent(clock)
        results = iter([False, False, True])
        waiter = Waiter(poll_interval=1.0, timeout=10.0, cancel_event=event, clock=clock)

        outcome = waiter.wait_until(lambda: next(results))

        self.assertEqual(WaitOutcome.SUCCESS, outcome)
        self.assertEqual(WaiterState.SUCCEEDED, waiter.state)
        self.assertEqual(3, waiter.attempts)

    def test_backoff_grows_to_cap(self):
        clock = FakeClock()
        event = FakeEvent(clock)
        waiter = Waiter(
            poll_interval=1.0,
            timeout=30.0,
            backoff=2.0,
            max_interval=4.0,
            cancel_event=event,
            clock=clock,
        )

        waiter.wait_until(lambda: len(event.waits) >= 5)

        self.assertEqual([1.0, 2.0, 4.0, 4.0, 4.0], event.waits)

    def test_cancel_before_start_skips_predicate(self):
        cancel = threading.Event()
        cancel.set()
        calls = []
        waiter = Waiter(poll_interval=1.0, timeout=5.0, cancel_event=cancel)

        outcome = waiter.wait_until(lambda: calls.append(1) or False)

        self.assertEqual(WaitOutcome.CANCELLED, outcome)
        self.assertEqual([], calls)

    def test_cancel_during_predicate_lets_call_finish(self):
        clock = FakeClock()
        event = FakeEvent(clock)
        waiter = Waiter(poll_interval=1.0, timeout=5.0, cancel_event=event, clock=clock)
        finished = []

        def predicate():
            waiter.cancel()
            finished.append(True)
            return False

        outcome = waiter.wait_until(predicate)

        self.assertEqual(WaitOutcome.CANCELLED, outcome)
        self.assertEqual([True], finished)
        self.assertEqual(1, waiter.attempts)

    def test_cancel_from_another_thread_interrupts_sleep(self):
        cancel = threading.Event()
        waiter = Waiter(poll_interval=30.0, timeout=60.0, cancel_event=cancel)
        timer = threading.Timer(0.05, cancel.set)
        started = time.monotonic()
        timer.start()
        try:
            outcome = waiter.wait_until(lambda: False)
        finally:
            timer.cancel()

        self.assertEqual(WaitOutcome.CANCELLED, outcome)
        self.assertLess(time.monotonic() - started, 5.0)

    def test_predicate_errors_propagate(self):
        waiter = Waiter(poll_interval=1.0, timeout=5.0)

        def predicate():
            raise AuthFailureError("denied")

        with self.assertRaises(AuthFailureError):
            waiter.wait_until(predicate)

    def test_requires_finite_timeout(self):
        for timeout in (0, -1, float("inf"), float("nan")):
            with self.assertRaises(ValidationError):
                Waiter(poll_interval=1.0, timeout=timeout)
        with self.assertRaises(ValidationError):
            Waiter(poll_interval=0, timeout=5.0)
        with self.assertRaises(ValidationError):
            Waiter(poll_interval=2.0, timeout=5.0, max_interval=1.0)


class PredicateTests(unittest.TestCase):
    def test_waits_for_bucket_to_appear(self):
        client, fake, _ = make_client()
        clock = FakeClock()

        def create_on_second_wait(count):
            if count == 2:
                fake.buckets["bucket-new"] = {}

        event = FakeEvent(clock, on_wait=create_on_second_wait)
        waiter = Waiter(poll_interval=1.0, timeout=10.0, cancel_event=event, clock=clock)

        outcome = waiter.wait_until(bucket_exists(client, "bucket-new"), description="bucket-new")

        self.assertEqual(WaitOutcome.SUCCESS, outcome)
        self.assertEqual(3, waiter.attempts)

    def test_bucket_not_exists_and_object_exists(self):
        client, fake, _ = make_client()
        fake.add_objects("bucket-one", ["a.txt"])

        self.assertTrue(bucket_not_exists(client, "absent")())
        self.assertFalse(bucket_not_exists(client, "bucket-one")())
        self.assertTrue(object_exists(client, "bucket-one", "a.txt")())
        self.assertFalse(object_exists(client, "bucket-one", "b.txt")())

    def test_head_errors_other_than_not_found_propagate(self):
        client, fake, _ = make_client()
        fake.fail("head_bucket", client_error("AccessDenied", 403, "HeadBucket"))
        waiter = Waiter(poll_interval=1.0, timeout=5.0)

        with self.assertRaises(AuthFailureError):
            waiter.wait_until(bucket_exists(client, "bucket-one"))


if __name__ == "__main__":
    unittest.main()
