from dataclasses import dataclass
from enum import Enum
from typing import Tuple

NUM_JOINTS = 6
JOINT_IDS = tuple(range(1, NUM_JOINTS + 1))


class CalibrationStatus(Enum):
    NOT_CALIBRATED = 0
    IN_PROGRESS = 1
    DONE = 2

@dataclass(frozen=True)
class JointConfig:
    name: str
    steps_per_rev: float
    range_deg: Tuple[float, float]
    homing_speed: float
    homing_direction: str  # "positive" | "negative"
    max_speed: float = 0.0
    max_acceleration: float = 0.0

    def contains(self, degrees: float) -> bool:
        return self.range_deg[0] <= degrees <= self.range_deg[1]

@dataclass(frozen=True)
class ArmState:
    degrees: Tuple[float, ...]
    calibration_status: Tuple[CalibrationStatus, ...]

    def is_calibrated(self, joint: int) -> bool:
        return self.calibration_status[joint - 1] == CalibrationStatus.DONE

@dataclass(frozen=True)
class OutboundCommand:
    command: str
    args: Tuple
    wire_line: str


def check_joint(joint: int) -> int:
    if isinstance(joint, bool) or joint not in JOINT_IDS:
        raise ValueError(f"Joint index out of range: {joint!r} (expected 1..{NUM_JOINTS})")
    return joint
