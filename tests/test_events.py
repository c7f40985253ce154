import unittest
from robotic_arm.events import EventTopic


class TestEventTopic(unittest.TestCase):
    def test_publish_and_dispose(self):
        topic = EventTopic("degreesChanged")
        received = []
        dispose = topic.subscribe(received.append)

        topic.publish((1.0, 2.0))
        dispose()
        topic.publish((3.0, 4.0))

        self.assertEqual(received, [(1.0, 2.0)])
        self.assertEqual(len(topic), 0)

    def test_dispose_is_idempotent_and_removes_one_registration(self):
        topic = EventTopic("t")
        received = []
        dispose_a = topic.subscribe(received.append)
        topic.subscribe(received.append)

        dispose_a()
        dispose_a()
        self.assertEqual(len(topic), 1)

        topic.publish("x")
        self.assertEqual(received, ["x"])

    def test_failing_listener_does_not_block_others(self):
        topic = EventTopic("t")
        received = []

        def broken(value):
            raise RuntimeError("listener bug")

        topic.subscribe(broken)
        topic.subscribe(received.append)
        with self.assertLogs("robotic_arm.events", level="ERROR"):
            topic.publish(1)
        self.assertEqual(received, [1])


if __name__ == '__main__':
    unittest.main()
