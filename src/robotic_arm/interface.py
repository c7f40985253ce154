import math
import threading
import time
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from .commands import Command, build_command
from .config import ArmConfig
from .events import EventTopic
from .exceptions import MalformedResponseError, RoboticArmError, WriteError
from .mock_serial_interface import MockSerial
from .serial_interface import SerialInterface
from .types import ArmState, CalibrationStatus, NUM_JOINTS, check_joint
from .units import steps_list_to_degrees
from .waiters import PendingWait

logger = logging.getLogger(__name__)

POSITIONS_MARKER = "CURRENT POSITIONS"
CALIBRATION_STATUS_MARKER = "CALIBRATION STATUS"

DEGREES_CHANGED = "degreesChanged"
CALIBRATION_STATUS_CHANGED = "calibrationStatusChanged"
ESTOP_CHANGED = "estopChanged"

# calibration order required by the rig: the wrist can only home once the base joints are homed
CALIBRATION_PHASES = ((1, 2, 3), (4, 5, 6))


class RoboticArmInterface:
    def __init__(self, config: Optional[ArmConfig] = None, show_communication: bool = True,
                 show_log_messages: bool = True, mock: bool = False):
        self.config = config or ArmConfig()
        self.serial: Optional[SerialInterface] = None
        self.show_communication = show_communication
        self.show_log_messages = show_log_messages
        self.mock = mock

        self.move_duration = self.config.move_duration
        self.acceleration = self.config.acceleration

        self._state_lock = threading.Lock()
        self._degrees: Tuple[float, ...] = (0.0,) * NUM_JOINTS
        self._calibration_status: Tuple[CalibrationStatus, ...] = (CalibrationStatus.NOT_CALIBRATED,) * NUM_JOINTS
        self._estop_active = False
        # receive-order number of the report each cached snapshot came from
        self._degrees_seq = 0
        self._calibration_seq = 0
        # keeps notifications in the order the reports arrived
        self._publish_lock = threading.RLock()
        self._line_listeners: List[Callable[[str], None]] = [self.unsolicited_msg_callback]

        self.degrees_changed: EventTopic[Tuple[float, ...]] = EventTopic(DEGREES_CHANGED)
        self.calibration_status_changed: EventTopic[Tuple[CalibrationStatus, ...]] = \
            EventTopic(CALIBRATION_STATUS_CHANGED)
        self.estop_changed: EventTopic[bool] = EventTopic(ESTOP_CHANGED)
        self._topics: Dict[str, EventTopic] = {
            DEGREES_CHANGED: self.degrees_changed,
            CALIBRATION_STATUS_CHANGED: self.calibration_status_changed,
            ESTOP_CHANGED: self.estop_changed,
        }

    # connection

    def connect(self, port: Optional[str] = None, baud_rate: Optional[int] = None) -> None:
        """
        Opens the serial link and waits for the controller to settle.
        :param port: serial port, defaults to config.port ("mock" in mock mode)
        :param baud_rate: defaults to config.baud_rate
        :raises DeviceNotFoundError: the port cannot be opened
        """
        if self.serial is not None: self.disconnect()

        port = port or self.config.port or ("mock" if self.mock else None)
        if port is None:
            raise ValueError("No serial port given")

        self.serial = SerialInterface(port, baud_rate or self.config.baud_rate,
                                      bytesize=self.config.bytesize,
                                      parity=self.config.parity,
                                      stopbits=self.config.stopbits,
                                      channel_factory=MockSerial if self.mock else None,
                                      show_communication=self.show_communication)
        with self._state_lock:
            self._degrees_seq = 0
            self._calibration_seq = 0
        for listener in self._line_listeners:
            self.serial.add_line_listener(listener)
        try:
            self.serial.connect()
        except RoboticArmError:
            self.serial = None
            raise

        # commands sent right after the port opens get lost by the firmware
        if self.config.settle_time > 0:
            time.sleep(self.config.settle_time)

    def disconnect(self) -> None:
        if self.serial is not None:
            self.serial.disconnect()
            self.serial = None

    @property
    def connected(self) -> bool:
        return self.serial is not None and self.serial.is_connected

    def unsolicited_msg_callback(self, msg: str) -> None:
        if msg.startswith("E-Stop"):
            active = msg.startswith("E-Stop activated")
            with self._state_lock:
                changed = active != self._estop_active
                self._estop_active = active
            if self.show_log_messages:
                logger.log(logging.WARNING if active else logging.INFO, msg)
            if changed:
                self.estop_changed.publish(active)
            return

        if not self.show_log_messages:
            return
        if msg.startswith(("Calibration failed", "Unknown command", "Invalid")) or "out of range" in msg \
                or "not calibrated" in msg:
            logger.warning(msg)

    def add_line_listener(self, listener: Callable[[str], None]) -> None:
        """Registers an observer for every line the controller sends, across reconnects."""
        self._line_listeners.append(listener)
        if self.serial is not None:
            self.serial.add_line_listener(listener)

    def remove_line_listener(self, listener: Callable[[str], None]) -> None:
        if listener in self._line_listeners:
            self._line_listeners.remove(listener)
        if self.serial is not None:
            self.serial.remove_line_listener(listener)

    # notifications

    def subscribe(self, event: str, listener: Callable) -> Callable[[], None]:
        """
        Registers a listener for "degreesChanged", "calibrationStatusChanged" or "estopChanged".
        Listeners get the full six-element tuple on every update.
        :return: disposer that removes this registration
        """
        return self._topic(event).subscribe(listener)

    def unsubscribe(self, event: str, listener: Callable) -> None:
        self._topic(event).unsubscribe(listener)

    def _topic(self, event: str) -> EventTopic:
        try:
            return self._topics[event]
        except KeyError:
            raise ValueError(f"Unknown event '{event}'") from None

    # cached state

    def get_cached_degrees(self) -> Tuple[float, ...]:
        with self._state_lock:
            return self._degrees

    def get_cached_calibration_status(self) -> Tuple[CalibrationStatus, ...]:
        with self._state_lock:
            return self._calibration_status

    def get_state(self) -> ArmState:
        with self._state_lock:
            return ArmState(degrees=self._degrees, calibration_status=self._calibration_status)

    @property
    def estop_active(self) -> bool:
        with self._state_lock:
            return self._estop_active

    def within_range(self, joint: int, degrees: float) -> bool:
        return self.config.joint(joint).contains(degrees)

    def set_motion_profile(self, move_duration: float, acceleration: float) -> None:
        """
        Sets the duration and acceleration share used by every move command.
        :param move_duration: seconds per move
        :param acceleration: fraction (0..1) of the move spent accelerating and decelerating
        """
        if move_duration <= 0:
            raise ValueError("Move duration must be positive")
        if not 0 <= acceleration <= 1:
            raise ValueError("Acceleration must be between 0 and 1")
        self.move_duration = move_duration
        self.acceleration = acceleration

    # commands

    def _require_serial(self) -> SerialInterface:
        if self.serial is None:
            raise WriteError("Not connected")
        return self.serial

    def _send(self, command: Command, args: Iterable, pattern: str, timeout: float) -> PendingWait:
        outbound = build_command(command, *args)
        return self._require_serial().send_and_listen(outbound.wire_line, pattern, timeout)

    def _command(self, command: Command, args: Iterable, pattern: str, timeout: float) -> PendingWait:
        """
        Sends a command and blocks until a line containing `pattern` arrives.
        :return: the resolved wait, holding the line and its receive-order number
        """
        wait = self._send(command, args, pattern, timeout)
        wait.wait()
        return wait

    def echo(self, text: str = "ping") -> bool:
        """Checks the link by having the controller echo `text` back."""
        if not text:
            raise ValueError("Echo text must not be empty")
        try:
            self._command(Command.ECHO, [text], text, self.config.timeouts.echo)
        except RoboticArmError as e:
            logger.warning(f"Echo failed: {e}")
            return False
        return True

    def get_degrees(self) -> List[float]:
        """
        Reads the joint positions from the controller.
        The cache is only updated (and degreesChanged only published) when the report holds six values.
        :return: joint angles in degrees, possibly fewer or more than six for a malformed report
        :raises CommandTimeoutError: no report within the timeout
        """
        wait = self._command(Command.PRINT_POS, [], POSITIONS_MARKER, self.config.timeouts.status_report)
        try:
            steps = self._parse_report(wait.line, _parse_float)
        except MalformedResponseError as e:
            logger.warning(str(e))
            return steps_list_to_degrees([math.nan if v is None else v for v in e.values], self.config.joints)

        degrees = steps_list_to_degrees(steps, self.config.joints)
        snapshot = tuple(degrees)
        with self._publish_lock:
            with self._state_lock:
                # a slower caller may hold an older report than the one already cached
                if wait.seq <= self._degrees_seq:
                    return degrees
                self._degrees_seq = wait.seq
                self._degrees = snapshot
            self.degrees_changed.publish(snapshot)
        return degrees

    def get_calibration_status(self) -> List[Optional[CalibrationStatus]]:
        """
        Reads the per-joint calibration status from the controller.
        :return: status per joint, None for digits the controller should not send
        :raises CommandTimeoutError: no report within the timeout
        """
        wait = self._command(Command.PRINT_CALIBRATION_STATUS, [], CALIBRATION_STATUS_MARKER,
                             self.config.timeouts.status_report)
        try:
            statuses = self._parse_report(wait.line, _parse_calibration_digit)
        except MalformedResponseError as e:
            logger.warning(str(e))
            return e.values

        snapshot = tuple(statuses)
        with self._publish_lock:
            with self._state_lock:
                if wait.seq <= self._calibration_seq:
                    return statuses
                self._calibration_seq = wait.seq
                self._calibration_status = snapshot
            self.calibration_status_changed.publish(snapshot)
        return statuses

    @staticmethod
    def _parse_report(line: str, convert: Callable) -> list:
        """
        Parses "<MARKER>: [v1, v2, ...]" into converted values.
        :raises MalformedResponseError: not exactly one valid value per joint; carries what could be parsed
        """
        payload = line.rsplit(":", 1)[-1].strip().replace("[", "").replace("]", "")
        values = [convert(part.strip()) for part in payload.split(",")] if payload else []
        if len(values) != NUM_JOINTS or any(v is None for v in values):
            raise MalformedResponseError(
                f"Malformed report, expected {NUM_JOINTS} values: {line!r}", values)
        return values

    def calibrate_joint(self, joint: int) -> bool:
        """
        Homes a single joint. Failures are logged and reported as False, never raised,
        so batch calibration can keep going.
        :param joint: joint number 1..6
        :return: True if the controller reported the calibration complete
        """
        check_joint(joint)
        success = True
        try:
            wait = self._send(Command.CALIBRATE_JOINTS, [joint], f"Calibration complete for Joint {joint}",
                              self.config.timeouts.calibration)
            self._refresh_calibration_status()
            wait.wait()
        except RoboticArmError as e:
            logger.error(f"Calibration of joint {joint} failed: {e}")
            success = False

        self._refresh_calibration_status()
        return success

    def calibrate_all(self) -> bool:
        """
        Calibrates joints 1-3 in parallel, then joints 4-6 in parallel.
        The second phase only starts when every joint of the first succeeded.
        :return: True if all six joints calibrated
        """
        for phase in CALIBRATION_PHASES:
            results = self._calibrate_parallel(phase)
            if not all(results):
                failed = [j for j, ok in zip(phase, results) if not ok]
                logger.error(f"Calibration failed for joint(s) {failed}")
                return False
        return True

    def _calibrate_parallel(self, joints: Sequence[int]) -> List[bool]:
        with ThreadPoolExecutor(max_workers=len(joints), thread_name_prefix="calibrate") as pool:
            futures = [pool.submit(self.calibrate_joint, joint) for joint in joints]
            return [f.result() for f in futures]

    def _refresh_calibration_status(self) -> None:
        try:
            self.get_calibration_status()
        except RoboticArmError as e:
            logger.warning(f"Could not refresh calibration status: {e}")

    def _move(self, command: Command, args: list, pattern: str, timeout: float) -> bool:
        try:
            self._command(command, args, pattern, timeout)
        except RoboticArmError as e:
            logger.error(f"Move failed: {e}")
            return False
        return True

    def rotate_to(self, joint: int, degrees: float) -> bool:
        """
        Moves one joint to an absolute angle. The target is not range checked here, see within_range().
        :return: True once the controller reports the move complete
        """
        check_joint(joint)
        return self._move(Command.MOVE_JOINT, [joint, degrees, self.move_duration, self.acceleration],
                          f"MOVE_JOINT {joint} COMPLETE", self.config.timeouts.joint_move)

    def rotate_by(self, joint: int, delta: float) -> bool:
        check_joint(joint)
        return self._move(Command.MOVE_JOINT_BY, [joint, delta, self.move_duration, self.acceleration],
                          f"MOVE_JOINT_BY {joint} COMPLETE", self.config.timeouts.joint_move)

    def rotate_all_to(self, *degrees: float) -> bool:
        """
        Moves all six joints at once; they start and arrive together.
        :param degrees: six target angles, joint 1 first
        """
        if len(degrees) == 1 and isinstance(degrees[0], (list, tuple)):
            degrees = tuple(degrees[0])
        if len(degrees) != NUM_JOINTS:
            raise ValueError(f"Expected {NUM_JOINTS} angles, got {len(degrees)}")
        return self._move(Command.MOVE_JOINTS, [*degrees, self.move_duration, self.acceleration],
                          "MOVE_JOINTS COMPLETE", self.move_duration + self.config.timeouts.move_all_grace)

    def stop_joint(self, joint: int) -> bool:
        """
        Stops one joint and re-reads the calibration status, since a stop can abort a calibration.
        :return: True if the controller acknowledged the stop
        """
        check_joint(joint)
        return self._stop(Command.STOP_JOINT, [joint], f"STOP_J {joint}", self.config.timeouts.stop_joint)

    def stop_all_joints(self) -> bool:
        return self._stop(Command.STOP_ALL, [], "All motors stopped", self.config.timeouts.stop_all)

    def _stop(self, command: Command, args: list, pattern: str, timeout: float) -> bool:
        acknowledged = True
        try:
            self._command(command, args, pattern, timeout)
        except RoboticArmError as e:
            logger.error(f"Stop not acknowledged: {e}")
            acknowledged = False
        self._refresh_calibration_status()
        return acknowledged


def _parse_calibration_digit(text: str) -> Optional[CalibrationStatus]:
    try:
        return CalibrationStatus(int(text))
    except ValueError:
        return None


def _parse_float(text: str) -> Optional[float]:
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None
