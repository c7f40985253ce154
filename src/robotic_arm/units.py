from typing import List, Mapping, Optional, Sequence

import numpy as np

from .config import JOINT_CONFIGS
from .types import JointConfig, NUM_JOINTS, check_joint


def _steps_per_rev(joint: int, joints: Optional[Mapping[int, JointConfig]]) -> float:
    joints = JOINT_CONFIGS if joints is None else joints
    return joints[check_joint(joint)].steps_per_rev


def steps_to_degrees(joint: int, steps: float, joints: Optional[Mapping[int, JointConfig]] = None) -> float:
    return steps / _steps_per_rev(joint, joints) * 360.0


def degrees_to_steps(joint: int, degrees: float, joints: Optional[Mapping[int, JointConfig]] = None) -> float:
    return degrees / 360.0 * _steps_per_rev(joint, joints)


def steps_list_to_degrees(steps: Sequence[float], joints: Optional[Mapping[int, JointConfig]] = None) -> List[float]:
    """
    Converts a position report (element i belongs to joint i+1) to degrees.
    Elements past the last joint have no conversion and come back as NaN.
    """
    steps = np.asarray(steps, dtype=float)
    per_rev = np.full(len(steps), np.nan)
    for i in range(min(len(steps), NUM_JOINTS)):
        per_rev[i] = _steps_per_rev(i + 1, joints)
    return (steps / per_rev * 360.0).tolist()
