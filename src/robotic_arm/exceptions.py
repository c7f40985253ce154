from typing import List, Optional


class RoboticArmError(Exception):
    """Base exception for the robotic arm package."""
    pass

class DeviceNotFoundError(RoboticArmError):
    """Raised when the serial channel cannot be opened or configured."""
    pass

class WriteError(RoboticArmError):
    """Raised when a line cannot be written to the controller."""
    pass

class CommandTimeoutError(RoboticArmError):
    """Raised when the expected reply line does not arrive in time."""
    pass

class DisconnectedError(RoboticArmError):
    """Raised into pending waits when the connection is torn down."""
    pass

class MalformedResponseError(RoboticArmError):
    """Raised when a status report does not hold one value per joint."""

    def __init__(self, message: str, values: Optional[List] = None):
        super().__init__(message)
        self.values = values if values is not None else []
