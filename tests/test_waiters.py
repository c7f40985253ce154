import threading
import time
import unittest
from robotic_arm.exceptions import CommandTimeoutError, DisconnectedError
from robotic_arm.waiters import ResponseWaiterRegistry


class TestResponseWaiterRegistry(unittest.TestCase):
    def setUp(self):
        self.registry = ResponseWaiterRegistry()

    def tearDown(self):
        self.registry.cancel_all(DisconnectedError("test finished"))

    def test_only_matching_waiter_is_resolved(self):
        first = self.registry.register("Joint 1", 5)
        second = self.registry.register("Joint 2", 5)

        resolved = self.registry.feed("Calibration complete for Joint 2")

        self.assertIs(resolved, second)
        self.assertEqual(second.wait(), "Calibration complete for Joint 2")
        self.assertFalse(first.done())
        self.assertEqual(len(self.registry), 1)

    def test_earliest_registered_wins(self):
        first = self.registry.register("COMPLETE", 5)
        second = self.registry.register("COMPLETE", 5)

        self.registry.feed("MOVE_JOINTS COMPLETE")
        self.assertTrue(first.done())
        self.assertFalse(second.done())

        self.registry.feed("MOVE_JOINT 2 COMPLETE")
        self.assertEqual(second.wait(), "MOVE_JOINT 2 COMPLETE")
        self.assertEqual(len(self.registry), 0)

    def test_resolved_wait_keeps_line_number(self):
        first = self.registry.register("CALIBRATION STATUS", 5)
        second = self.registry.register("CALIBRATION STATUS", 5)

        self.registry.feed("CALIBRATION STATUS: [0,0,0,0,0,0]", 7)
        self.registry.feed("CALIBRATION STATUS: [2,2,2,0,0,0]", 8)

        self.assertEqual(first.seq, 7)
        self.assertEqual(second.seq, 8)

    def test_unmatched_line_resolves_nothing(self):
        wait = self.registry.register("STOP_J 1", 5)
        self.assertIsNone(self.registry.feed("STOP_J 2"))
        self.assertFalse(wait.done())

    def test_timeout(self):
        timeout = 0.2
        wait = self.registry.register("never", timeout)
        start = time.monotonic()
        with self.assertRaises(CommandTimeoutError):
            wait.wait()
        elapsed = time.monotonic() - start
        self.assertGreaterEqual(elapsed, timeout - 0.01)
        self.assertLess(elapsed, timeout + 0.5)
        self.assertEqual(len(self.registry), 0)

    def test_timeout_without_anyone_waiting(self):
        wait = self.registry.register("never", 0.05)
        time.sleep(0.3)
        self.assertTrue(wait.done())
        self.assertIsInstance(wait.error, CommandTimeoutError)
        self.assertEqual(len(self.registry), 0)

    def test_line_after_timeout_is_not_delivered(self):
        wait = self.registry.register("late", 0.05)
        with self.assertRaises(CommandTimeoutError):
            wait.wait()
        self.assertIsNone(self.registry.feed("late reply"))
        self.assertIsNone(wait.line)

    def test_cancel_all(self):
        waits = [self.registry.register(f"Joint {i}", 5) for i in range(1, 4)]
        errors = []

        def waiter(w):
            try:
                w.wait()
            except DisconnectedError as e:
                errors.append(e)

        threads = [threading.Thread(target=waiter, args=(w,)) for w in waits]
        for t in threads: t.start()

        self.assertEqual(self.registry.cancel_all(DisconnectedError("closed")), 3)
        for t in threads: t.join(timeout=1)

        self.assertEqual(len(errors), 3)
        self.assertEqual(len(self.registry), 0)

    def test_discard(self):
        wait = self.registry.register("x", 0.05)
        self.registry.discard(wait)
        time.sleep(0.2)
        self.assertFalse(wait.done())
        self.assertIsNone(self.registry.feed("x"))


if __name__ == '__main__':
    unittest.main()
