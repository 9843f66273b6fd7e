# robocal

Tools for calibrating a robot's kinematics. The package keeps track of joint
and frame offsets, captures observations of calibration features from point
clouds and laser scans, calibrates a mobile base's odometry and gyro, and
writes calibrated values back into a URDF robot description.

It talks to no robot middleware itself. Every connection to the outside
world (motion clients, planners, cloud and scan sources, coordinate
transforms, publishers) is a Python object or callable that you pass in.

## Installation

```
pip install robocal
```

To run the tests as well:

```
pip install "robocal[test]"
pytest
```

## Modules

- `robocal.geometry`: `Rotation` (an immutable 3x3 matrix with
  `from_rpy`, `to_rpy`, `unit_x/y/z`, `apply` and composition with `*`) and
  `Frame` (rotation plus translation). `rotation_from_axis_magnitude` and
  `axis_magnitude_from_rotation` convert to and from the rotation-vector
  form that is used for frame offsets.
- `robocal.messages`: dataclasses `Point`, `PointStamped`, `PointCloud`,
  `LaserScan`, `JointState`, `JointTrajectoryPoint`, `Observation` and
  `CalibrationData`.
- `robocal.offset_parser`: `CalibrationOffsetParser`. The first `len(parser)`
  names it holds are the free parameters of the current step. `add` and
  `add_frame` free parameters, `initialize` and `update` move their values in
  and out, and `get` and `get_frame` read offsets. `get_offset_yaml` and
  `load_offset_yaml` write and read `name: value` lines. `update_urdf`
  returns a URDF string with the offsets applied: each joint's
  `<calibration rising=...>` is adjusted or added, and for each calibrated
  frame the joint's `<origin>` is composed with the offset or added. If the
  input does not parse, or its root is not `<robot>`, it comes back unchanged.
- `robocal.chain_manager`: `ChainController` and `ChainManager`.
  `ChainManager.from_config` builds the manager from a list of chain mappings
  (`name`, `topic`, `planning_group`, `joints`). It merges joint states
  through `state_callback`, builds trajectory points with `make_point`, sends
  goals with `move_to_state` (a chain with a planning group is planned first
  through the `move_group` object), and waits with `wait_to_settle` until no
  managed joint is moving.
- `robocal.capture_manager`: `CaptureManager` moves to a joint state, waits
  for it to settle, and runs the named feature finders (all of them when none
  are named) into a `CalibrationData`.
- `robocal.base_calibration`: `BaseCalibration`, driven through a
  `BaseDriver`. It spins a base in front of a wall and compares odometry, gyro
  and the wall angle fitted from laser scans.
- `robocal.led_finder`: `LedFinder` blinks gripper LEDs and locates them with
  one `CloudDifferenceTracker` per LED. The module also defines
  `distance_points` and `TransformError`, the exception that transform
  callables raise.
- `robocal.plane_finder`: `PlaneFinder` filters a cloud to a box, finds the
  dominant plane by RANSAC, optionally checks it against a desired normal, and
  samples well-spread points from it with `sample_cloud`.
- `robocal.robot_finder`: `RobotFinder` reports both the plane and the points
  left inside a second box, under two sensor names.
- `robocal.scan_finder`: `ScanFinder` turns the in-box laser points into an
  observation, repeating each point `z_repeats` times along Z.

## Examples

Offsets and URDF update:

```python
from robocal.geometry import Rotation, axis_magnitude_from_rotation
from robocal.offset_parser import CalibrationOffsetParser

parser = CalibrationOffsetParser()
parser.add("second_joint")
parser.add_frame("third_joint", True, True, True, True, True, True)

a, b, c = axis_magnitude_from_rotation(Rotation.from_rpy(1.57, 0.0, 0.0))
parser.update([0.245, 0.0, 0.0, 0.0, a, b, c])

print(parser.get_offset_yaml())
with open("robot.urdf") as f:
    calibrated = parser.update_urdf(f.read())
```

After `reset()` the offsets of earlier steps stay in place, so calibration
can run in several steps, each freeing new parameters with `add` or
`add_frame`.

Finding a plane in a cloud you already have, without transforms:

```python
from robocal.messages import CalibrationData, PointCloud
from robocal.plane_finder import PlaneFinder

finder = PlaneFinder("ground", cloud_source=lambda: my_cloud, transform_frame="none")
data = CalibrationData()
finder.find(data)
```

## What the package does not do

- It has no optimiser: it keeps and applies offsets but does not solve for
  them.
- It has no command-line program, and it does not record or replay captured
  data from files.
- It does not write camera calibration files.
- It does not detect checkerboards.
- It does not connect to robots, cameras or laser scanners. You supply those
  connections as callables and client objects.