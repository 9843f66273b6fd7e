"""Finding a plane in a depth cloud and sampling it into calibration observations."""

from __future__ import annotations

import logging
import math
import random
import time
from typing import Any, Callable, Optional

import numpy as np

from robocal.led_finder import TransformError
from robocal.messages import CalibrationData, Observation, Point, PointCloud, PointStamped

logger = logging.getLogger(__name__)

NO_TRANSFORM = "none"
TRANSFORM_RETRY_DELAY = 1.0


def sample_cloud(points: PointCloud, sample_distance: float, max_points: int,
                 sampled_points: list) -> int:
    """Append to ``sampled_points`` cloud points at least ``sample_distance`` apart.

    Stops once ``sampled_points`` holds ``max_points``; returns its length.
    """
    max_dist_sq = sample_distance * sample_distance
    for x, y, z in points.points[: points.width]:
        include = all(
            (s.point.x - x) ** 2 + (s.point.y - y) ** 2 + (s.point.z - z) ** 2 >= max_dist_sq
            for s in sampled_points
        )
        if include:
            sampled_points.append(PointStamped(Point(x, y, z)))
        if len(sampled_points) >= max_points:
            break
    logger.info("Extracted %d points with sampling distance of %f",
                len(sampled_points), sample_distance)
    return len(sampled_points)


def _fit_plane(points: np.ndarray) -> tuple[np.ndarray, float]:
    """Least-squares plane through 3xN ``points``: unit normal and offset d."""
    centroid = points.mean(axis=1)
    u, _, _ = np.linalg.svd(points - centroid[:, None])
    normal = u[:, 2]
    return normal, -float(normal @ centroid)


class PlaneFinder:
    """Extracts the best-fitting plane from a point cloud as an observation.

    ``cloud_source()`` returns the next cloud or None on timeout.
    ``transform(point, target_frame)`` returns the point in ``target_frame``
    or raises :class:`TransformError`; it is needed unless ``transform_frame``
    is ``"none"``.
    """

    def __init__(
        self,
        name: str,
        cloud_source: Callable[[], Optional[PointCloud]],
        transform: Optional[Callable[[PointStamped, str], PointStamped]] = None,
        camera_sensor_name: str = "camera",
        points_max: int = 60,
        initial_sample_distance: float = 0.2,
        tolerance: float = 0.02,
        transform_frame: str = "base_link",
        min_x: float = -2.0,
        max_x: float = 2.0,
        min_y: float = -2.0,
        max_y: float = 2.0,
        min_z: float = 0.0,
        max_z: float = 2.0,
        ransac_iterations: int = 100,
        ransac_points: int = 35,
        normal=(0.0, 0.0, 0.0),
        normal_angle: float = 0.349065,
        debug: bool = False,
        publish: Optional[Callable[[PointCloud], None]] = None,
        camera_info: Optional[Callable[[], Any]] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if transform_frame != NO_TRANSFORM and transform is None:
            raise ValueError(f"a transform is needed to use frame {transform_frame!r}")
        self.name = name
        self.cloud_source = cloud_source
        self.transform = transform
        self.plane_sensor_name = camera_sensor_name
        self.points_max = points_max
        self.initial_sample_distance = initial_sample_distance
        self.plane_tolerance = tolerance
        self.transform_frame = transform_frame
        self.min_x, self.max_x = min_x, max_x
        self.min_y, self.max_y = min_y, max_y
        self.min_z, self.max_z = min_z, max_z
        self.ransac_iterations = ransac_iterations
        self.ransac_points = ransac_points
        self.desired_normal = np.array(normal, dtype=float).reshape(3)
        self.cos_normal_angle = math.cos(normal_angle)
        self.debug = debug
        self.publish = publish
        self.camera_info = camera_info
        self.rng = rng if rng is not None else random.Random()
        self._sleep = sleep

    @property
    def _do_transform(self) -> bool:
        return self.transform_frame != NO_TRANSFORM

    def remove_invalid_points(self, cloud: PointCloud, min_x: float, max_x: float,
                              min_y: float, max_y: float, min_z: float, max_z: float) -> None:
        """Keep, in place, the finite non-zero-depth points inside the box.

        The box is tested in ``transform_frame``; kept points stay in the cloud frame.
        """
        kept = []
        for x, y, z in cloud.points[: cloud.width * cloud.height]:
            if not (math.isfinite(x) and math.isfinite(y) and math.isfinite(z)):
                continue
            # Some sensors publish zeros instead of NaNs
            if z == 0:
                continue
            p = Point(x, y, z)
            if self._do_transform:
                try:
                    p = self.transform(PointStamped(p, cloud.frame_id, 0.0),
                                       self.transform_frame).point
                except TransformError as ex:
                    logger.error("%s", ex)
                    self._sleep(TRANSFORM_RETRY_DELAY)
                    continue
            if not (min_x <= p.x <= max_x and min_y <= p.y <= max_y and min_z <= p.z <= max_z):
                continue
            kept.append((x, y, z))
        cloud.points = kept
        cloud.colors = None
        cloud.height = 1
        cloud.width = len(kept)

    def _normal_in_transform_frame(self, normal: np.ndarray, frame_id: str) -> np.ndarray:
        origin = self.transform(PointStamped(Point(0.0, 0.0, 0.0), frame_id),
                                self.transform_frame).point
        tip = self.transform(PointStamped(Point(*map(float, normal)), frame_id),
                             self.transform_frame).point
        return np.array([tip.x - origin.x, tip.y - origin.y, tip.z - origin.z])

    def _normal_acceptable(self, normal: np.ndarray, frame_id: str) -> bool:
        desired_norm = np.linalg.norm(self.desired_normal)
        if desired_norm <= 0.1:
            return True
        transformed = normal
        if self._do_transform:
            try:
                transformed = self._normal_in_transform_frame(normal, frame_id)
            except TransformError as ex:
                logger.error("%s", ex)
                return False
        cos_angle = float(transformed @ self.desired_normal) / desired_norm \
            / np.linalg.norm(transformed)
        return abs(cos_angle) >= self.cos_normal_angle

    def extract_plane(self, cloud: PointCloud) -> PointCloud:
        """Remove the best plane's points from ``cloud`` and return them as a cloud."""
        points = np.array(cloud.points[: cloud.width], dtype=float).reshape(-1, 3).T
        count = points.shape[1]

        best_normal = np.array([0.0, 0.0, 1.0])
        best_d = 0.0
        best_fit = -1
        if count:
            for _ in range(self.ransac_iterations):
                indices = [self.rng.randrange(count) for _ in range(self.ransac_points)]
                normal, d = _fit_plane(points[:, indices])
                if not self._normal_acceptable(normal, cloud.frame_id):
                    continue
                fit = int(np.count_nonzero(np.abs(normal @ points + d) < self.plane_tolerance))
                if fit > best_fit:
                    best_fit = fit
                    best_normal = normal
                    best_d = d
        # Parameters are in the cloud frame, not transform_frame
        logger.info("Found plane with parameters: %f %f %f %f", *best_normal, best_d)

        plane_points, rest = [], []
        for p in cloud.points[: cloud.width]:
            dist = best_normal[0] * p[0] + best_normal[1] * p[1] + best_normal[2] * p[2] + best_d
            (plane_points if abs(dist) < self.plane_tolerance else rest).append(p)

        cloud.points = rest
        cloud.colors = None
        cloud.height = 1
        cloud.width = len(rest)

        plane = PointCloud(points=plane_points, frame_id=cloud.frame_id, stamp=time.time())
        logger.info("Extracted plane with %d points", plane.width)
        return plane

    def extract_observation(self, sensor_name: str, cloud: PointCloud, msg: CalibrationData,
                            publisher: Optional[Callable[[PointCloud], None]] = None) -> None:
        """Append to ``msg`` an observation of up to ``points_max`` well-spread points."""
        if cloud.width == 0:
            logger.warning("No points in observation, skipping")
            return
        points_total = min(self.points_max, cloud.width)
        logger.info("Got %d points for observation, using %d", cloud.width, points_total)

        observation = Observation(
            sensor_name=sensor_name,
            ext_camera_info=self.camera_info() if self.camera_info is not None else None,
        )
        msg.observations.append(observation)

        sampled: list[PointStamped] = []
        distance = self.initial_sample_distance
        while len(sampled) < points_total:
            sample_cloud(cloud, distance, points_total, sampled)
            distance /= 2

        observation.features.extend(sampled)
        if self.debug:
            observation.cloud = cloud

        if publisher is not None:
            publisher(PointCloud(
                points=[(s.point.x, s.point.y, s.point.z) for s in sampled],
                frame_id=cloud.frame_id,
                stamp=time.time(),
            ))

    def _next_cloud(self) -> Optional[PointCloud]:
        cloud = self.cloud_source()
        if cloud is None:
            logger.error("No point cloud data")
        return cloud

    def find(self, msg: CalibrationData) -> bool:
        """Add an observation of the dominant plane to ``msg``."""
        cloud = self._next_cloud()
        if cloud is None:
            return False
        self.remove_invalid_points(cloud, self.min_x, self.max_x, self.min_y, self.max_y,
                                   self.min_z, self.max_z)
        plane = self.extract_plane(cloud)
        self.extract_observation(self.plane_sensor_name, plane, msg, self.publish)
        return True