"""Calibration of a mobile base's odometry and gyro against a laser-seen wall."""

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable, Optional

from robocal.messages import LaserScan

logger = logging.getLogger(__name__)

PI = 3.14159265359


def _divide(numerator: float, denominator: float) -> float:
    """Divide with IEEE semantics for a zero denominator."""
    if denominator != 0.0:
        return numerator / denominator
    if numerator == 0.0 or math.isnan(numerator):
        return math.nan
    return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)


class BaseDriver:
    """Connection to the base: velocity output, sleeping and event pumping."""

    def __init__(
        self,
        publish: Callable[[float], None],
        spin: Optional[Callable[[], None]] = None,
        ok: Optional[Callable[[], bool]] = None,
        sleeper: Callable[[float], None] = time.sleep,
    ):
        self._publish = publish
        self._spin = spin
        self._ok = ok
        self._sleeper = sleeper

    def send_velocity(self, velocity: float) -> None:
        self._publish(float(velocity))

    def sleep(self, seconds: float) -> None:
        self._sleeper(seconds)

    def spin_once(self) -> None:
        if self._spin is not None:
            self._spin()

    def ok(self) -> bool:
        return True if self._ok is None else bool(self._ok())


class BaseCalibration:
    """Spins the base in front of a wall and compares odometry, gyro and laser."""

    def __init__(
        self,
        driver: BaseDriver,
        min_angle: float = -0.5,
        max_angle: float = 0.5,
        accel_limit: float = 2.0,
        align_velocity: float = 0.2,
        align_gain: float = 2.0,
        align_tolerance: float = 0.2,
        r2_tolerance: float = 0.1,
        start_time: float = 0.0,
    ):
        self.driver = driver
        self.min_angle = min_angle
        self.max_angle = max_angle
        self.accel_limit = accel_limit
        self.align_velocity = align_velocity
        self.align_gain = align_gain
        self.align_tolerance = align_tolerance
        self.r2_tolerance = r2_tolerance

        self._lock = threading.RLock()
        self.ready = False
        self.last_odom_stamp = self.last_imu_stamp = self.last_scan_stamp = start_time
        self.scan_dist = 0.0

        self.scan_measurements: list[float] = []
        self.odom_measurements: list[float] = []
        self.imu_measurements: list[float] = []

        self.reset_internal()

    def clear_messages(self) -> None:
        self.scan_measurements.clear()
        self.odom_measurements.clear()
        self.imu_measurements.clear()

    def status_line(self) -> str:
        return f"{self.scan_r2:g} {self.imu_angle:g} {self.odom_angle:g} {self.scan_angle:g}"

    def print_calibration_data(self, track_width: float = 0.37476,
                               gyro_scale: float = 0.001221729) -> str:
        """Return corrected track width and gyro scale as YAML lines."""
        if not self.scan_measurements:
            raise ValueError("no spin measurements recorded")
        pairs = list(zip(self.scan_measurements, self.odom_measurements, self.imu_measurements))
        odom_scale = sum((s - o) / o for s, o, _ in pairs) / len(self.scan_measurements)
        imu_scale = sum((s - i) / i for s, _, i in pairs) / len(self.scan_measurements)
        return (
            f"odom: {track_width * (1.0 + odom_scale):g}\n"
            f"imu: {gyro_scale * (1.0 + imu_scale):g}\n"
        )

    def align(self, angle: float, verbose: bool = False) -> bool:
        """Turn until the wall is seen at ``angle``; False if shut down meanwhile."""
        while not self.ready:
            logger.warning("Not ready!")
            self.driver.sleep(0.1)
            self.driver.spin_once()
            if not self.driver.ok():
                return False

        logger.info("aligning...")
        error = self.scan_angle - angle
        while abs(error) > self.align_tolerance or self.scan_r2 < self.r2_tolerance:
            if verbose:
                logger.info("%g %g", self.scan_r2, self.scan_angle)
            velocity = min(max(-error * self.align_gain, -self.align_velocity),
                           self.align_velocity)
            self.send_velocity_command(velocity)

            self.driver.sleep(0.02)
            self.driver.spin_once()

            error = self.scan_angle - angle
            if not self.driver.ok():
                self.send_velocity_command(0.0)
                return False

        self.send_velocity_command(0.0)
        logger.info("...done")
        self.driver.sleep(0.25)
        return True

    def spin(self, velocity: float, rotations: int, verbose: bool = False) -> bool:
        """Rotate ``rotations`` times and record odometry, gyro and laser angles."""
        scan_start = self.scan_angle

        self.align(0.0, verbose)
        self.reset_internal()
        logger.info("spin...")

        # Stop early by the deceleration distance v^2/2a
        angle = rotations * 2 * PI - (0.5 * velocity * velocity / self.accel_limit)

        while abs(self.odom_angle) < angle:
            if verbose:
                logger.info("%g %g %g", self.scan_angle, self.odom_angle, self.imu_angle)
            self.send_velocity_command(velocity)
            self.driver.sleep(0.02)
            self.driver.spin_once()
            if not self.driver.ok():
                self.send_velocity_command(0.0)
                return False

        self.send_velocity_command(0.0)
        logger.info("...done")
        self.driver.sleep(0.5 + abs(velocity) / self.accel_limit)

        self.imu_measurements.append(self.imu_angle)
        self.odom_measurements.append(self.odom_angle)
        turned = 2 * rotations * PI if velocity > 0 else -2 * rotations * PI
        self.scan_measurements.append(scan_start + turned - self.scan_angle)
        return True

    def odometry_callback(self, stamp: float, angular_z: float) -> None:
        with self._lock:
            self.odom_angle += angular_z * (stamp - self.last_odom_stamp)
            self.last_odom_stamp = stamp

    def imu_callback(self, stamp: float, angular_z: float) -> None:
        with self._lock:
            self.imu_angle += angular_z * (stamp - self.last_imu_stamp)
            self.last_imu_stamp = stamp

    def laser_callback(self, scan: LaserScan) -> None:
        """Fit a line to the wall ahead and update its angle, distance and fit quality."""
        with self._lock:
            readings = []
            angle = scan.angle_min
            for r in scan.ranges:
                readings.append((angle, r))
                angle += scan.angle_increment

            selected = [
                (i, a, r)
                for i, (a, r) in enumerate(readings)
                if self.min_angle <= a <= self.max_angle and not math.isnan(r)
            ]
            if not selected:
                return

            start = selected[0][0]
            n = len(selected)
            mean_x = sum(math.sin(a) * r for _, a, r in selected) / n
            mean_y = sum(math.cos(a) * r for _, a, r in selected) / n

            x = y = xx = xy = yy = 0.0
            count = 0
            angle = scan.angle_min + start * scan.angle_increment
            for _, r in readings[start:]:
                a = angle
                angle += scan.angle_increment
                if a > self.max_angle:
                    break
                if math.isnan(r):
                    continue
                px = math.sin(a) * r - mean_x
                py = math.cos(a) * r - mean_y
                xx += px * px
                xy += px * py
                x += px
                y += py
                yy += py * py
                count += 1

            self.scan_dist = mean_y
            self.scan_angle = math.atan2(
                _divide(count * xy - x * y, count * xx - x * x), 1.0
            )
            self.scan_r2 = _divide(abs(xy), xx * yy)
            self.last_scan_stamp = scan.stamp
            self.ready = True

    def send_velocity_command(self, velocity: float) -> None:
        self.driver.send_velocity(velocity)

    def reset_internal(self) -> None:
        with self._lock:
            self.odom_angle = 0.0
            self.imu_angle = 0.0
            self.scan_angle = 0.0
            self.scan_r2 = 0.0