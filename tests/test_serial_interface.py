import threading
import time
import unittest
import serial
from robotic_arm.exceptions import DeviceNotFoundError, DisconnectedError, WriteError
from robotic_arm.mock_serial_interface import MockSerial
from robotic_arm.serial_interface import SerialInterface


class FailingReadSerial(MockSerial):
    fail = False

    def read(self, size=1):
        if self.fail:
            raise serial.SerialException("device reports readiness to read but returned no data")
        return super().read(size)


class FailingCloseSerial(MockSerial):
    def close(self):
        super().close()
        raise OSError("port vanished")


class SlowWriteSerial(MockSerial):
    write_delay = 0.3

    def write(self, data):
        time.sleep(self.write_delay)
        return super().write(data)


def failing_factory(**kwargs):
    raise serial.SerialException(f"could not open port {kwargs['port']}")


class TestSerialInterface(unittest.TestCase):
    def setUp(self):
        self.interface = SerialInterface("mock", channel_factory=MockSerial, show_communication=False)
        self.interface.connect()
        self.mock = self.interface.serial

    def tearDown(self):
        self.interface.disconnect()

    def test_send_line(self):
        self.interface.send_line("05")
        self.assertEqual(self.mock.written, ["05"])

    def test_send_and_listen(self):
        wait = self.interface.send_and_listen("02 3", "STOP_J 3", 1)
        self.assertEqual(wait.wait(), "STOP_J 3")

    def test_line_listeners_see_every_line(self):
        lines = []
        done = threading.Event()

        def listener(line):
            lines.append(line)
            if line == "third": done.set()

        self.interface.add_line_listener(listener)
        for line in ("first", "second", "third"):
            self.mock.inject(line)
        self.assertTrue(done.wait(1))
        self.assertEqual(lines, ["first", "second", "third"])

        self.interface.remove_line_listener(listener)
        self.interface.remove_line_listener(listener)

    def test_disconnect_cancels_pending_waits(self):
        waits = [self.interface.listen_for(f"Calibration complete for Joint {j}", 30) for j in (1, 2, 3)]
        self.interface.disconnect()

        for wait in waits:
            self.assertTrue(wait.done())
            with self.assertRaises(DisconnectedError):
                wait.wait()
        self.assertEqual(len(self.interface.waiters), 0)
        self.assertFalse(self.interface.is_connected)
        self.assertFalse(self.mock.is_open)

        # second disconnect is a no-op
        self.interface.disconnect()

    def test_send_after_disconnect(self):
        self.interface.disconnect()
        with self.assertRaises(WriteError):
            self.interface.send_line("05")

    def test_failed_send_discards_wait(self):
        self.interface.disconnect()
        with self.assertRaises(WriteError):
            self.interface.send_and_listen("05", "CURRENT POSITIONS", 1)
        self.assertEqual(len(self.interface.waiters), 0)

    def test_lines_are_numbered_in_receive_order(self):
        first = self.interface.listen_for("first", 1)
        second = self.interface.listen_for("second", 1)
        self.mock.inject("first")
        self.mock.inject("unrelated")
        self.mock.inject("second")

        first.wait()
        second.wait()
        self.assertEqual(second.seq - first.seq, 2)

    def test_partial_line_at_disconnect_does_not_resolve_wait(self):
        lines = []
        self.interface.add_line_listener(lines.append)
        wait = self.interface.listen_for("CURRENT POSITIONS", 5)

        self.mock.inject("CURRENT POSITIONS: [0, 0", end="")
        deadline = time.monotonic() + 1
        while self.mock.in_waiting and time.monotonic() < deadline:
            time.sleep(0.01)
        time.sleep(0.05)
        self.interface.disconnect()

        with self.assertRaises(DisconnectedError):
            wait.wait()
        self.assertEqual(lines, ["CURRENT POSITIONS: [0, 0"])

    def test_reconnect(self):
        self.interface.connect()
        self.assertIsNot(self.interface.serial, self.mock)
        self.assertFalse(self.mock.is_open)
        wait = self.interface.send_and_listen("06", "CALIBRATION STATUS", 1)
        self.assertEqual(wait.wait(), "CALIBRATION STATUS: [0,0,0,0,0,0]")


class TestSerialInterfaceFailures(unittest.TestCase):
    def test_connect_failure(self):
        interface = SerialInterface("/dev/ttyNOPE", channel_factory=failing_factory, show_communication=False)
        with self.assertRaises(DeviceNotFoundError):
            interface.connect()
        self.assertIsNone(interface.serial)
        self.assertFalse(interface.is_connected)

    def test_stream_error_cancels_waits(self):
        interface = SerialInterface("mock", channel_factory=FailingReadSerial, show_communication=False)
        interface.connect()
        wait = interface.listen_for("never", 30)

        with self.assertLogs("robotic_arm.serial_interface", level="ERROR"):
            interface.serial.fail = True
            with self.assertRaises(DisconnectedError):
                wait.wait()

        self.assertFalse(interface.is_connected)
        with self.assertRaises(WriteError):
            interface.send_line("05")
        interface.disconnect()

    def test_disconnect_during_write(self):
        interface = SerialInterface("mock", channel_factory=SlowWriteSerial, show_communication=False)
        interface.connect()
        errors = []

        def send():
            try:
                interface.send_line("05")
            except Exception as e:
                errors.append(e)

        sender = threading.Thread(target=send)
        sender.start()
        time.sleep(0.1)
        interface.disconnect()
        sender.join(2)

        self.assertFalse(sender.is_alive())
        for e in errors:
            self.assertIsInstance(e, WriteError)
        self.assertIsNone(interface.serial)

    def test_close_error_is_a_warning(self):
        interface = SerialInterface("mock", channel_factory=FailingCloseSerial, show_communication=False)
        interface.connect()
        wait = interface.listen_for("never", 30)

        with self.assertLogs("robotic_arm.serial_interface", level="WARNING") as logs:
            interface.disconnect()

        self.assertTrue(any("port vanished" in line for line in logs.output))
        self.assertIsNone(interface.serial)
        with self.assertRaises(DisconnectedError):
            wait.wait()


if __name__ == '__main__':
    unittest.main()
