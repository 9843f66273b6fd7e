"""Locating gripper LEDs in a point cloud by toggling them and tracking colour changes."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence

from robocal.messages import CalibrationData, Observation, Point, PointCloud, PointStamped

logger = logging.getLogger(__name__)

RESULT_TIMEOUT = 10.0
_CENTROID_RADIUS = 0.05
_CENTROID_FRACTION = 0.75
_IMAGE_FRACTION = 0.9
_INITIAL_MAX = -1000.0
_INITIAL_LAST_DISTANCE = 1000.0
_OFF_CODE = 0


class TransformError(Exception):
    """Raised by a transform callable when a point cannot be transformed."""


def distance_points(p1: Point, p2: Point) -> float:
    """Euclidean distance between two points."""
    return math.sqrt(
        (p1.x - p2.x) * (p1.x - p2.x)
        + (p1.y - p2.y) * (p1.y - p2.y)
        + (p1.z - p2.z) * (p1.z - p2.z)
    )


def _has_nan(point: Point) -> bool:
    return math.isnan(point.x) or math.isnan(point.y) or math.isnan(point.z)


@dataclass
class Image:
    """A BGR8 image."""

    height: int
    width: int
    data: bytes
    encoding: str = "bgr8"

    @property
    def step(self) -> int:
        return self.width * 3

    def pixel(self, index: int) -> tuple[int, int, int]:
        return tuple(self.data[index * 3: index * 3 + 3])


@dataclass
class CloudDifferenceTracker:
    """Accumulates per-pixel brightness changes near the expected pose of one LED."""

    frame: str
    point: Point = field(default_factory=Point)
    height: int = 0
    width: int = 0
    count: int = 0
    max_value: float = _INITIAL_MAX
    max_index: int = -1
    diff: list = field(default_factory=list)

    def reset(self, height: int, width: int) -> None:
        self.height = height
        self.width = width
        self.count = 0
        self.max_value = _INITIAL_MAX
        self.max_index = -1
        self.diff = [0.0] * (height * width)

    def process(
        self,
        cloud: PointCloud,
        prev: PointCloud,
        led_point: Point,
        max_distance: float,
        weight: float,
    ) -> bool:
        """Add the colour change between ``prev`` and ``cloud`` near ``led_point``.

        Returns False if the cloud size no longer matches the tracker.
        """
        if cloud.width * cloud.height != len(self.diff):
            logger.error("Cloud size has changed")
            return False
        if cloud.colors is None or prev.colors is None:
            raise ValueError("clouds must carry colours to be tracked")

        # Points are NaN while the LED is lit; fall back on the last good distance.
        last_distance = _INITIAL_LAST_DISTANCE
        for i, (xyz, rgb, prev_rgb) in enumerate(zip(cloud.points, cloud.colors, prev.colors)):
            distance = distance_points(Point(*xyz), led_point)
            if math.isfinite(distance):
                last_distance = distance
            else:
                distance = last_distance
            if not math.isfinite(distance) or distance > max_distance:
                continue

            r, g, b = (float(c) - float(p) for c, p in zip(rgb, prev_rgb))
            if (r > 0 and g > 0 and b > 0 and weight > 0) or (
                r < 0 and g < 0 and b < 0 and weight < 0
            ):
                self.diff[i] += (r + g + b) * weight

            if self.diff[i] > self.max_value:
                self.max_value = self.diff[i]
                self.max_index = i
        return True

    def is_found(self, cloud: PointCloud, threshold: float) -> bool:
        """True if the strongest change exceeds ``threshold`` at a valid point."""
        if self.max_value < threshold or self.max_index < 0:
            return False
        return not _has_nan(cloud.xyz(self.max_index))

    def get_refined_centroid(self, cloud: PointCloud) -> Optional[PointStamped]:
        """Average the likely LED points around the strongest one; None if invalid."""
        if self.max_index < 0:
            return None
        centroid = cloud.xyz(self.max_index)
        if _has_nan(centroid):
            return None

        nearby = []
        for value, xyz in zip(self.diff, cloud.points):
            if value <= self.max_value * _CENTROID_FRACTION:
                continue
            p = Point(*xyz)
            if _has_nan(p):
                continue
            dx, dy, dz = p.x - centroid.x, p.y - centroid.y, p.z - centroid.z
            if dx * dx + dy * dy + dz * dz < _CENTROID_RADIUS * _CENTROID_RADIUS:
                nearby.append(p)

        if nearby:
            n = len(nearby) + 1
            centroid = Point(
                (centroid.x + sum(p.x for p in nearby)) / n,
                (centroid.y + sum(p.y for p in nearby)) / n,
                (centroid.z + sum(p.z for p in nearby)) / n,
            )
        return PointStamped(centroid, cloud.frame_id, cloud.stamp)

    def get_image(self) -> Image:
        """Render the tracker state: strongest pixels blue, others grey by strength."""
        data = bytearray(self.width * self.height * 3)
        for i, value in enumerate(self.diff[: self.width * self.height]):
            if value > self.max_value * _IMAGE_FRACTION:
                data[i * 3: i * 3 + 3] = bytes((255, 0, 0))
            elif value > 0:
                level = min(int(value / 2.0), 255)
                data[i * 3: i * 3 + 3] = bytes((level, level, level))
        return Image(self.height, self.width, bytes(data))


class LedFinder:
    """Finds LED features by blinking them and watching the camera cloud.

    ``set_led(code)`` commands the LEDs and waits for completion,
    ``cloud_source()`` returns the next cloud or None on timeout, and
    ``transform(point, target_frame)`` returns the point in ``target_frame``
    or raises :class:`TransformError`.
    """

    def __init__(
        self,
        name: str,
        poses: Sequence[Mapping[str, Any]],
        set_led: Callable[[int], None],
        cloud_source: Callable[[], Optional[PointCloud]],
        transform: Callable[[PointStamped, str], PointStamped],
        gripper_led_frame: str = "wrist_roll_link",
        max_error: float = 0.1,
        max_inconsistency: float = 0.01,
        threshold: float = 1000.0,
        max_iterations: int = 50,
        debug: bool = False,
        camera_sensor_name: str = "camera",
        chain_sensor_name: str = "arm",
        publish: Optional[Callable[[PointCloud], None]] = None,
        publish_image: Optional[Callable[[str, Image], None]] = None,
        camera_info: Optional[Callable[[], Any]] = None,
    ):
        self.name = name
        self.set_led = set_led
        self.cloud_source = cloud_source
        self.transform = transform
        self.max_error = max_error
        self.max_inconsistency = max_inconsistency
        self.threshold = threshold
        self.max_iterations = max_iterations
        self.debug = debug
        self.camera_sensor_name = camera_sensor_name
        self.chain_sensor_name = chain_sensor_name
        self.publish = publish
        self.publish_image = publish_image
        self.camera_info = camera_info

        # Each LED has an "on" code followed by the "off" code.
        self.codes: list[int] = []
        self.trackers: list[CloudDifferenceTracker] = []
        self.image_topics: list[str] = []
        for pose in poses:
            self.codes.extend((int(pose["code"]), _OFF_CODE))
            self.trackers.append(
                CloudDifferenceTracker(
                    gripper_led_frame,
                    Point(float(pose["x"]), float(pose["y"]), float(pose["z"])),
                )
            )
            self.image_topics.append(str(pose.get("topic", "")))

    def _camera_info(self) -> Any:
        return self.camera_info() if self.camera_info is not None else None

    def find(self, msg: CalibrationData) -> bool:
        """Locate every LED and append camera and chain observations to ``msg``."""
        if not self.codes:
            return False

        self.set_led(_OFF_CODE)
        cloud = self.cloud_source()
        if cloud is None:
            return False
        prev_cloud = cloud

        for tracker in self.trackers:
            tracker.reset(cloud.height, cloud.width)

        code_idx = 255  # an unsigned byte holding -1
        cycles = 0
        while True:
            code_idx = ((code_idx + 1) % len(self.codes)) & 0xFF
            self.set_led(self.codes[code_idx])

            cloud = self.cloud_source()
            if cloud is None:
                return False

            tracker = self.trackers[code_idx // 2]
            weight = 1.0 if code_idx % 2 == 0 else -1.0

            done = all([t.is_found(cloud, self.threshold) for t in self.trackers])
            # Only stop with the LED off, so its pixels are not washed out.
            if done and weight == -1.0:
                break

            expected = PointStamped(
                Point(tracker.point.x, tracker.point.y, tracker.point.z), tracker.frame
            )
            try:
                led = self.transform(expected, cloud.frame_id)
            except TransformError:
                logger.error("Failed to transform feature to %s", cloud.frame_id)
                return False

            tracker.process(cloud, prev_cloud, led.point, self.max_error, weight)

            cycles += 1
            if cycles > self.max_iterations:
                logger.error("Failed to find features before using maximum iterations.")
                return False

            prev_cloud = cloud

            if self.publish_image is not None:
                for topic, t in zip(self.image_topics, self.trackers):
                    self.publish_image(topic, t.get_image())

        camera = Observation(sensor_name=self.camera_sensor_name)
        chain = Observation(sensor_name=self.chain_sensor_name)
        viz_points = []

        for index, tracker in enumerate(self.trackers):
            rgbd_pt = tracker.get_refined_centroid(cloud)
            if rgbd_pt is None:
                logger.error("No centroid for feature %d", index)
                return False

            try:
                world_pt = self.transform(rgbd_pt, tracker.frame)
            except TransformError:
                logger.error("Failed to transform feature to %s", tracker.frame)
                return False
            distance = distance_points(world_pt.point, tracker.point)
            if distance > self.max_error:
                logger.error(
                    "Feature was too far away from expected pose in %s: %g",
                    tracker.frame, distance,
                )
                return False

            for other, seen in zip(self.trackers[:index], camera.features):
                expected = distance_points(other.point, tracker.point)
                actual = distance_points(seen.point, rgbd_pt.point)
                if abs(expected - actual) > self.max_inconsistency:
                    logger.error("Features not internally consistent: %g %g", expected, actual)
                    return False

            camera.features.append(rgbd_pt)
            camera.ext_camera_info = self._camera_info()
            viz_points.append((rgbd_pt.point.x, rgbd_pt.point.y, rgbd_pt.point.z))

            chain.features.append(
                PointStamped(
                    Point(tracker.point.x, tracker.point.y, tracker.point.z), tracker.frame
                )
            )

        if len(camera.features) != len(self.trackers):
            return False

        if self.debug:
            camera.cloud = cloud

        msg.observations.append(camera)
        msg.observations.append(chain)

        if self.publish is not None:
            self.publish(PointCloud(points=viz_points, frame_id=cloud.frame_id, stamp=time.time()))
        return True