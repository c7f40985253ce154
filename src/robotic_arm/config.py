"""
Static arm configuration: joint table, reply timeouts and link settings.
Values can be overridden from a YAML file with ArmConfig.load().
"""

import logging
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import yaml

from .types import JointConfig, JOINT_IDS, check_joint

logger = logging.getLogger(__name__)

JOINT_CONFIGS: Mapping[int, JointConfig] = MappingProxyType({
    1: JointConfig(name="J1", steps_per_rev=800 * 10 * 4, range_deg=(-170.0, 115.0),
                   homing_speed=10, homing_direction="positive", max_speed=20, max_acceleration=20),
    2: JointConfig(name="J2", steps_per_rev=800 * 50, range_deg=(-20.0, 108.0),
                   homing_speed=4, homing_direction="negative", max_speed=30, max_acceleration=5),
    3: JointConfig(name="J3", steps_per_rev=800 * 50, range_deg=(-102.0, 38.0),
                   homing_speed=4, homing_direction="positive", max_speed=30, max_acceleration=20),
    4: JointConfig(name="J4", steps_per_rev=800 * 10 * 2, range_deg=(-209.0, 145.0),
                   homing_speed=20, homing_direction="negative", max_speed=60, max_acceleration=30),
    5: JointConfig(name="J5", steps_per_rev=15240, range_deg=(-100.9, 106.0),
                   homing_speed=10, homing_direction="negative", max_speed=60, max_acceleration=50),
    6: JointConfig(name="J6", steps_per_rev=1600, range_deg=(-173.0, 157.0),
                   homing_speed=10, homing_direction="negative", max_speed=100, max_acceleration=100),
})


@dataclass
class Timeouts:
    """Reply timeouts in seconds."""
    status_report: float = 1.0
    calibration: float = 90.0
    joint_move: float = 20.0
    move_all_grace: float = 5.0
    stop_joint: float = 1.0
    stop_all: float = 2.0
    echo: float = 1.0


@dataclass
class ArmConfig:
    port: Optional[str] = None
    baud_rate: int = 115200
    bytesize: int = 8
    parity: str = "N"
    stopbits: float = 1
    # firmware drops commands sent right after the port opens
    settle_time: float = 2.0
    move_duration: float = 2.0
    acceleration: float = 0.4
    timeouts: Timeouts = field(default_factory=Timeouts)
    joints: Mapping[int, JointConfig] = field(default_factory=lambda: JOINT_CONFIGS)

    @classmethod
    def load(cls, filepath: str) -> "ArmConfig":
        """
        Loads settings from a YAML file. Keys that are not present keep their defaults.
        :param filepath: path of the YAML file
        :return: the resulting ArmConfig
        """
        with open(filepath, 'r') as f:
            data = yaml.safe_load(f) or {}
        logger.info(f"Loaded arm configuration from '{filepath}'")
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArmConfig":
        data = dict(data)
        timeouts = Timeouts(**(data.pop("timeouts", None) or {}))
        joints = _merge_joint_configs(data.pop("joints", None) or {})

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        return cls(timeouts=timeouts, joints=joints, **data)

    def joint(self, joint: int) -> JointConfig:
        return self.joints[check_joint(joint)]


def _merge_joint_configs(overrides: Dict[Any, Dict[str, Any]]) -> Mapping[int, JointConfig]:
    merged = dict(JOINT_CONFIGS)
    for key, values in overrides.items():
        joint = check_joint(int(key))
        values = dict(values)
        if "range_deg" in values:
            low, high = values["range_deg"]
            values["range_deg"] = (float(low), float(high))
        merged[joint] = replace(merged[joint], **values)

    for joint in JOINT_IDS:
        if merged[joint].steps_per_rev <= 0:
            raise ValueError(f"Joint {joint}: steps_per_rev must be positive")
    return MappingProxyType(merged)
