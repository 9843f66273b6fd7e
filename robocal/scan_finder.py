"""Turning a laser scan into a calibration observation of points on a line."""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, Optional

from robocal.led_finder import TransformError
from robocal.messages import (
    CalibrationData,
    LaserScan,
    Observation,
    Point,
    PointCloud,
    PointStamped,
)

logger = logging.getLogger(__name__)

NO_TRANSFORM = "none"
TRANSFORM_RETRY_DELAY = 1.0


class ScanFinder:
    """Extracts laser points inside a box, repeated along Z, as an observation.

    ``scan_source()`` returns the next scan or None on timeout.
    ``transform(point, target_frame)`` returns the point in ``target_frame``
    or raises :class:`TransformError`; it is needed unless ``transform_frame``
    is ``"none"``.
    """

    def __init__(
        self,
        name: str,
        scan_source: Callable[[], Optional[LaserScan]],
        transform: Optional[Callable[[PointStamped, str], PointStamped]] = None,
        sensor_name: str = "laser",
        transform_frame: str = "base_link",
        min_x: float = -2.0,
        max_x: float = 2.0,
        min_y: float = -2.0,
        max_y: float = 2.0,
        z_repeats: int = 10,
        z_offset: float = 0.1,
        debug: bool = False,
        publish: Optional[Callable[[PointCloud], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if transform_frame != NO_TRANSFORM and transform is None:
            raise ValueError(f"a transform is needed to use frame {transform_frame!r}")
        self.name = name
        self.scan_source = scan_source
        self.transform = transform
        self.laser_sensor_name = sensor_name
        self.transform_frame = transform_frame
        self.min_x, self.max_x = min_x, max_x
        self.min_y, self.max_y = min_y, max_y
        self.z_repeats = z_repeats
        self.z_offset = z_offset
        self.debug = debug
        self.publish = publish
        self._sleep = sleep
        self.scan: LaserScan = LaserScan()

    @property
    def _do_transform(self) -> bool:
        return self.transform_frame != NO_TRANSFORM

    def extract_points(self) -> PointCloud:
        """Convert the current scan into a cloud of in-box points, repeated along Z."""
        scan = self.scan
        do_transform = self._do_transform
        frame_id = self.transform_frame if do_transform else scan.frame_id

        points = []
        for i, distance in enumerate(scan.ranges):
            if not math.isfinite(distance):
                continue
            angle = scan.angle_min + i * scan.angle_increment
            x = math.cos(angle) * distance
            y = math.sin(angle) * distance
            if x < self.min_x or x > self.max_x or y < self.min_y or y > self.max_y:
                continue

            for z in range(self.z_repeats):
                if do_transform:
                    p = PointStamped(Point(x, y, z * self.z_offset), scan.frame_id, 0.0)
                    try:
                        out = self.transform(p, self.transform_frame).point
                    except TransformError as ex:
                        logger.error("%s", ex)
                        self._sleep(TRANSFORM_RETRY_DELAY)
                        continue
                else:
                    # Without a transform the point stays in the scan plane.
                    out = Point(x, y, 0.0)
                points.append((out.x, out.y, out.z))

        return PointCloud(points=points, frame_id=frame_id, stamp=time.time())

    def extract_observation(self, cloud: PointCloud, msg: CalibrationData) -> None:
        """Append to ``msg`` an observation holding every point of ``cloud``."""
        if cloud.width == 0:
            logger.warning("No points in observation, skipping")
            return
        logger.info("Got %d points for observation", cloud.width)

        observation = Observation(sensor_name=self.laser_sensor_name)
        msg.observations.append(observation)

        observation.features.extend(
            PointStamped(cloud.xyz(i)) for i in range(cloud.width)
        )
        if self.debug:
            observation.cloud = cloud

        if self.publish is not None:
            self.publish(PointCloud(
                points=list(cloud.points[: cloud.width]),
                frame_id=cloud.frame_id,
                stamp=time.time(),
            ))

    def find(self, msg: CalibrationData) -> bool:
        """Wait for a scan and add its line observation to ``msg``."""
        scan = self.scan_source()
        if scan is None:
            logger.error("No laser scan data")
            return False
        self.scan = scan
        cloud = self.extract_points()
        self.extract_observation(cloud, msg)
        return True