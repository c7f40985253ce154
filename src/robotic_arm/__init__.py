from .interface import RoboticArmInterface
from .config import ArmConfig, JOINT_CONFIGS, Timeouts
from .types import ArmState, CalibrationStatus, JointConfig

__version__ = "0.1.0"
