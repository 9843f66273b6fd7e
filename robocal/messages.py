"""Plain data carried between capture, finders and calibration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Point:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0


@dataclass
class PointStamped:
    point: Point = field(default_factory=Point)
    frame_id: str = ""
    stamp: float = 0.0


@dataclass
class PointCloud:
    """An organised or flat cloud of XYZ points with optional RGB colours."""

    points: list = field(default_factory=list)
    colors: Optional[list] = None
    height: int = 1
    width: Optional[int] = None
    frame_id: str = ""
    stamp: float = 0.0

    def __post_init__(self):
        self.points = [tuple(float(v) for v in p) for p in self.points]
        if self.colors is not None:
            self.colors = [tuple(int(v) for v in c) for c in self.colors]
            if len(self.colors) != len(self.points):
                raise ValueError("colors must have one entry per point")
        if self.width is None:
            self.width = len(self.points) // self.height if self.height else 0

    def __len__(self) -> int:
        return len(self.points)

    def xyz(self, index: int) -> Point:
        x, y, z = self.points[index]
        return Point(x, y, z)


@dataclass
class LaserScan:
    ranges: list = field(default_factory=list)
    angle_min: float = 0.0
    angle_increment: float = 0.0
    frame_id: str = ""
    stamp: float = 0.0


@dataclass
class JointState:
    name: list = field(default_factory=list)
    position: list = field(default_factory=list)
    velocity: list = field(default_factory=list)


@dataclass
class JointTrajectoryPoint:
    positions: list = field(default_factory=list)
    velocities: list = field(default_factory=list)
    accelerations: list = field(default_factory=list)
    time_from_start: float = 0.0


@dataclass
class Observation:
    sensor_name: str = ""
    features: list = field(default_factory=list)
    ext_camera_info: Any = None
    cloud: Optional[PointCloud] = None


@dataclass
class CalibrationData:
    joint_states: JointState = field(default_factory=JointState)
    observations: list = field(default_factory=list)