from enum import Enum
from typing import Union

from .types import OutboundCommand


class Command(Enum):
    """Controller opcodes, sent as two hex digits at the start of a line."""
    ECHO = "00"
    STOP_ALL = "01"
    STOP_JOINT = "02"
    MOVE_JOINTS = "03"
    CALIBRATE_JOINTS = "04"
    PRINT_POS = "05"
    PRINT_CALIBRATION_STATUS = "06"
    ADD = "07"
    MOVE_JOINT = "08"
    MOVE_JOINT_BY = "09"


def _format_arg(arg) -> str:
    if isinstance(arg, bool):
        raise TypeError("Boolean command arguments are not supported")
    if isinstance(arg, int):
        return str(arg)
    if isinstance(arg, float):
        text = f"{arg:.6f}".rstrip('0').rstrip('.')
        return "0" if text == "-0" else text
    return str(arg)


def encode(command: Union[Command, str], *args) -> str:
    """
    Builds the wire line for a command, without the line terminator.
    e.g. encode(Command.MOVE_JOINT, 3, 45.5, 2, 0.4) -> "08 3,45.5,2,0.4"
    """
    if not isinstance(command, Command):
        command = Command[command]
    if not args:
        return command.value
    return f"{command.value} {','.join(_format_arg(a) for a in args)}"


def build_command(command: Union[Command, str], *args) -> OutboundCommand:
    if not isinstance(command, Command):
        command = Command[command]
    return OutboundCommand(command=command.name, args=tuple(args), wire_line=encode(command, *args))
