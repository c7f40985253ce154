import threading
from typing import Dict, List, Optional, Set

import serial

from .commands import Command
from .config import JOINT_CONFIGS
from .types import CalibrationStatus, NUM_JOINTS


class MockSerial:
    """
    Stand-in for serial.Serial that behaves like the arm controller firmware.
    Lines written to it are parsed as commands and answered with the same
    status lines the firmware prints. Calibration completes after
    `calibration_time` seconds on a timer, like the real homing cycle.

    Knobs for tests:
      stalled_joints   calibration starts but never finishes
      failing_joints   calibration ends with "Calibration failed for Joint n"
      silent_commands  opcodes ("05", ...) that get no reply at all
      replies          opcode -> reply line that replaces the normal one
    """

    def __init__(self, port: str = "mock", baudrate: int = 115200, bytesize: int = 8,
                 parity: str = "N", stopbits: float = 1, timeout: Optional[float] = None,
                 calibration_time: float = 0.05):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.calibration_time = calibration_time
        self.is_open = True

        self.steps = [0] * NUM_JOINTS
        self.calibration = [CalibrationStatus.NOT_CALIBRATED] * NUM_JOINTS
        self.stalled_joints: Set[int] = set()
        self.failing_joints: Set[int] = set()
        self.silent_commands: Set[str] = set()
        self.replies: Dict[str, str] = {}
        self.written: List[str] = []

        self._rx = bytearray()
        self._tx = ""
        self._condition = threading.Condition()
        self._timers: Dict[int, threading.Timer] = {}

    @property
    def in_waiting(self) -> int:
        with self._condition:
            return len(self._rx)

    def read(self, size: int = 1) -> bytes:
        with self._condition:
            if not self.is_open:
                raise serial.SerialException("Attempting to use a port that is not open")
            if not self._rx:
                self._condition.wait(self.timeout)
            data = bytes(self._rx[:size])
            del self._rx[:size]
            return data

    def write(self, data: bytes) -> int:
        if not self.is_open:
            raise serial.SerialException("Attempting to use a port that is not open")
        self._tx += data.decode('ascii')
        *lines, self._tx = self._tx.split("\n")
        for line in lines:
            line = line.strip()
            self.written.append(line)
            self._process(line)
        return len(data)

    def flush(self) -> None:
        pass

    def reset_input_buffer(self) -> None:
        with self._condition:
            self._rx.clear()

    def close(self) -> None:
        for timer in list(self._timers.values()):
            timer.cancel()
        self._timers.clear()
        with self._condition:
            self.is_open = False
            self._condition.notify_all()

    def inject(self, line: str, end: str = "\r\n") -> None:
        """Queues a line as if the controller had printed it. end="" leaves it unterminated."""
        with self._condition:
            self._rx += (line + end).encode('ascii')
            self._condition.notify_all()

    def commands_sent(self, command: Command) -> List[str]:
        """Argument strings of every written line with the given opcode."""
        return [line[3:] for line in self.written if line[:2] == command.value]

    # firmware emulation

    def _process(self, line: str) -> None:
        if len(line) < 2:
            return
        opcode = line[:2]
        args = line[3:] if len(line) > 2 and line[2] == ' ' else ""

        if opcode in self.silent_commands:
            return
        if opcode in self.replies:
            self.inject(self.replies[opcode])
            return

        handlers = {
            Command.ECHO.value: self._echo,
            Command.STOP_ALL.value: self._stop_all,
            Command.STOP_JOINT.value: self._stop_joint,
            Command.MOVE_JOINTS.value: self._move_joints,
            Command.CALIBRATE_JOINTS.value: self._calibrate_joints,
            Command.PRINT_POS.value: self._print_positions,
            Command.PRINT_CALIBRATION_STATUS.value: self._print_calibration_status,
            Command.ADD.value: self._add,
            Command.MOVE_JOINT.value: self._move_joint,
            Command.MOVE_JOINT_BY.value: self._move_joint_by,
        }
        handler = handlers.get(opcode)
        if handler is None:
            self.inject(f"Unknown command: {opcode}")
        else:
            handler(args)

    @staticmethod
    def _degrees_to_steps(joint_index: int, degrees: float) -> int:
        return int(degrees * JOINT_CONFIGS[joint_index + 1].steps_per_rev / 360.0)

    def _echo(self, args: str) -> None:
        self.inject(args)

    def _add(self, args: str) -> None:
        parts = args.split(",")
        if len(parts) != 2:
            self.inject("Invalid ADD format. Use: 07 <num1>,<num2>")
            return
        self.inject(f"Sum: {float(parts[0]) + float(parts[1])}")

    def _stop_all(self, args: str) -> None:
        for i in range(NUM_JOINTS):
            if self.calibration[i] == CalibrationStatus.IN_PROGRESS:
                self._cancel_calibration(i)
                self.calibration[i] = CalibrationStatus.NOT_CALIBRATED
        self.inject("All motors stopped.")

    def _stop_joint(self, args: str) -> None:
        self.inject(f"STOP_J {int(args)}")

    def _move_joints(self, args: str) -> None:
        parts = [float(p) for p in args.split(",")]
        if len(parts) != NUM_JOINTS + 2:
            self.inject("Invalid MOVE_JOINTS command format. Use: MOVE_JOINTS <j1>,<j2>,<j3>,<j4>,<j5>,<j6>,"
                        "<duration_sec>,<accel_decel_percent>")
            return
        for i in range(NUM_JOINTS):
            if self.calibration[i] != CalibrationStatus.DONE:
                self.inject(f"Joint {i + 1} is not calibrated. Please calibrate before moving.")
                return
            low, high = JOINT_CONFIGS[i + 1].range_deg
            if not low <= parts[i] <= high:
                self.inject(f"Joint {i + 1} out of range: {parts[i]} degrees. Valid range: [{low}, {high}]")
                return
        self.steps = [self._degrees_to_steps(i, parts[i]) for i in range(NUM_JOINTS)]
        self.inject("MOVE_JOINTS COMPLETE")

    def _move_joint(self, args: str) -> None:
        parts = args.split(",")
        index = int(parts[0]) - 1
        self.steps[index] = self._degrees_to_steps(index, float(parts[1]))
        self.inject(f"MOVE_JOINT {parts[0]} COMPLETE")

    def _move_joint_by(self, args: str) -> None:
        parts = args.split(",")
        index = int(parts[0]) - 1
        self.steps[index] += self._degrees_to_steps(index, float(parts[1]))
        self.inject(f"MOVE_JOINT_BY {parts[0]} COMPLETE")

    def _print_positions(self, args: str) -> None:
        self.inject(f"CURRENT POSITIONS: [{', '.join(str(s) for s in self.steps)}]")

    def _print_calibration_status(self, args: str) -> None:
        self.inject(f"CALIBRATION STATUS: [{','.join(str(s.value) for s in self.calibration)}]")

    def _calibrate_joints(self, args: str) -> None:
        for part in args.split(","):
            if not part.strip():
                continue
            index = int(part) - 1
            if not 0 <= index < NUM_JOINTS:
                self.inject(f"Invalid joint index: {index + 1}. Use a number between 1 and {NUM_JOINTS}.")
                continue
            self._cancel_calibration(index)
            self.calibration[index] = CalibrationStatus.IN_PROGRESS
            self.inject(f"Calibration started for Joint {index + 1}")
            if index + 1 in self.stalled_joints:
                continue
            timer = threading.Timer(self.calibration_time, self._finish_calibration, args=(index,))
            timer.daemon = True
            self._timers[index] = timer
            timer.start()

    def _finish_calibration(self, index: int) -> None:
        self._timers.pop(index, None)
        if not self.is_open:
            return
        if index + 1 in self.failing_joints:
            self.calibration[index] = CalibrationStatus.NOT_CALIBRATED
            self.inject(f"Calibration failed for Joint {index + 1}")
            return
        self.steps[index] = 0
        self.calibration[index] = CalibrationStatus.DONE
        self.inject(f"Calibration complete for Joint {index + 1}")

    def _cancel_calibration(self, index: int) -> None:
        timer = self._timers.pop(index, None)
        if timer is not None:
            timer.cancel()
