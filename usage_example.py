import logging
from robotic_arm import RoboticArmInterface
from robotic_arm.exceptions import DeviceNotFoundError

logging.basicConfig(level=logging.INFO)

# create interface and connect
# Use mock=True to run against the simulated controller
arm = RoboticArmInterface(show_communication=True, show_log_messages=True, mock=False)
arm.subscribe("degreesChanged", lambda degrees: print("Joint angles:", degrees))

try:
    arm.connect('/dev/ttyUSB0')
except DeviceNotFoundError:
    print("Could not connect to device")
    raise SystemExit(1)

# home all joints, base joints first
if not arm.calibrate_all():
    print("Calibration failed")

# move and read back
arm.rotate_to(1, 45.0)
arm.rotate_all_to(0, 30, -20, 0, 15, 0)
arm.get_degrees()

arm.disconnect()
