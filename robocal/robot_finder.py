"""Finding both the ground plane and the robot's own body in a depth cloud."""

from __future__ import annotations

from typing import Callable, Optional

from robocal.messages import CalibrationData, PointCloud, PointStamped
from robocal.plane_finder import PlaneFinder


class RobotFinder(PlaneFinder):
    """A plane finder that also reports the points left inside a robot box."""

    def __init__(
        self,
        name: str,
        cloud_source: Callable[[], Optional[PointCloud]],
        transform: Optional[Callable[[PointStamped, str], PointStamped]] = None,
        robot_sensor_name: str = "camera_robot",
        min_robot_x: float = -2.0,
        max_robot_x: float = 2.0,
        min_robot_y: float = -2.0,
        max_robot_y: float = 2.0,
        min_robot_z: float = 0.0,
        max_robot_z: float = 2.0,
        publish_robot: Optional[Callable[[PointCloud], None]] = None,
        **kwargs,
    ):
        super().__init__(name, cloud_source, transform, **kwargs)
        self.robot_sensor_name = robot_sensor_name
        self.min_robot_x, self.max_robot_x = min_robot_x, max_robot_x
        self.min_robot_y, self.max_robot_y = min_robot_y, max_robot_y
        self.min_robot_z, self.max_robot_z = min_robot_z, max_robot_z
        self.publish_robot = publish_robot

    def find(self, msg: CalibrationData) -> bool:
        """Add a plane observation and a robot observation to ``msg``."""
        cloud = self._next_cloud()
        if cloud is None:
            return False
        self.remove_invalid_points(cloud, self.min_x, self.max_x, self.min_y, self.max_y,
                                   self.min_z, self.max_z)
        plane = self.extract_plane(cloud)
        self.remove_invalid_points(cloud, self.min_robot_x, self.max_robot_x,
                                   self.min_robot_y, self.max_robot_y,
                                   self.min_robot_z, self.max_robot_z)
        self.extract_observation(self.plane_sensor_name, plane, msg, self.publish)
        self.extract_observation(self.robot_sensor_name, cloud, msg, self.publish_robot)
        return True