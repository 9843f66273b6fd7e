"""Rotations and rigid frames, with the axis-magnitude parameterisation used for calibration."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

_EPSILON = 1e-12


class Rotation:
    """An immutable 3x3 rotation matrix."""

    __slots__ = ("_m",)

    def __init__(self, matrix=None):
        m = np.identity(3) if matrix is None else np.array(matrix, dtype=float)
        if m.shape != (3, 3):
            raise ValueError(f"rotation matrix must be 3x3, got shape {m.shape}")
        m.flags.writeable = False
        self._m = m

    @property
    def matrix(self) -> np.ndarray:
        return self._m

    @classmethod
    def identity(cls) -> "Rotation":
        return cls()

    @classmethod
    def from_rpy(cls, roll: float, pitch: float, yaw: float) -> "Rotation":
        """Rotation about fixed axes: roll about X, then pitch about Y, then yaw about Z."""
        ca, sa = math.cos(yaw), math.sin(yaw)
        cb, sb = math.cos(pitch), math.sin(pitch)
        cc, sc = math.cos(roll), math.sin(roll)
        return cls(
            [
                [ca * cb, ca * sb * sc - sa * cc, ca * sb * cc + sa * sc],
                [sa * cb, sa * sb * sc + ca * cc, sa * sb * cc - ca * sc],
                [-sb, cb * sc, cb * cc],
            ]
        )

    @classmethod
    def _from_quaternion(cls, x: float, y: float, z: float, w: float) -> "Rotation":
        x2, y2, z2, w2 = x * x, y * y, z * z, w * w
        return cls(
            [
                [w2 + x2 - y2 - z2, 2 * x * y - 2 * w * z, 2 * x * z + 2 * w * y],
                [2 * x * y + 2 * w * z, w2 - x2 + y2 - z2, 2 * y * z - 2 * w * x],
                [2 * x * z - 2 * w * y, 2 * y * z + 2 * w * x, w2 - x2 - y2 + z2],
            ]
        )

    def _to_quaternion(self) -> tuple[float, float, float, float]:
        m = self._m
        trace = m[0, 0] + m[1, 1] + m[2, 2]
        if trace > _EPSILON:
            s = 0.5 / math.sqrt(trace + 1.0)
            return (
                (m[2, 1] - m[1, 2]) * s,
                (m[0, 2] - m[2, 0]) * s,
                (m[1, 0] - m[0, 1]) * s,
                0.25 / s,
            )
        if m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
            s = 2.0 * math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2])
            return (
                0.25 * s,
                (m[0, 1] + m[1, 0]) / s,
                (m[0, 2] + m[2, 0]) / s,
                (m[2, 1] - m[1, 2]) / s,
            )
        if m[1, 1] > m[2, 2]:
            s = 2.0 * math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2])
            return (
                (m[0, 1] + m[1, 0]) / s,
                0.25 * s,
                (m[1, 2] + m[2, 1]) / s,
                (m[0, 2] - m[2, 0]) / s,
            )
        s = 2.0 * math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1])
        return (
            (m[0, 2] + m[2, 0]) / s,
            (m[1, 2] + m[2, 1]) / s,
            0.25 * s,
            (m[1, 0] - m[0, 1]) / s,
        )

    def to_rpy(self) -> tuple[float, float, float]:
        """Return (roll, pitch, yaw) about the fixed axes."""
        m = self._m
        pitch = math.atan2(-m[2, 0], math.sqrt(m[0, 0] ** 2 + m[1, 0] ** 2))
        if abs(pitch) > math.pi / 2.0 - _EPSILON:
            return 0.0, pitch, math.atan2(-m[0, 1], m[1, 1])
        return math.atan2(m[2, 1], m[2, 2]), pitch, math.atan2(m[1, 0], m[0, 0])

    def unit_x(self) -> np.ndarray:
        return self._m[:, 0].copy()

    def unit_y(self) -> np.ndarray:
        return self._m[:, 1].copy()

    def unit_z(self) -> np.ndarray:
        return self._m[:, 2].copy()

    def apply(self, vector) -> np.ndarray:
        return self._m @ np.asarray(vector, dtype=float)

    def __mul__(self, other):
        if isinstance(other, Rotation):
            return Rotation(self._m @ other._m)
        return NotImplemented

    def __repr__(self) -> str:
        return f"Rotation({self._m.tolist()!r})"


def _zero_vector() -> np.ndarray:
    return np.zeros(3)


@dataclass(eq=False)
class Frame:
    """A rigid transform: a rotation followed by a translation."""

    rotation: Rotation = field(default_factory=Rotation.identity)
    position: np.ndarray = field(default_factory=_zero_vector)

    def __post_init__(self):
        self.position = np.array(self.position, dtype=float).reshape(3)

    def __mul__(self, other):
        if isinstance(other, Frame):
            return Frame(
                self.rotation * other.rotation,
                self.position + self.rotation.apply(other.position),
            )
        return NotImplemented

    def apply(self, point) -> np.ndarray:
        return self.rotation.apply(point) + self.position


def rotation_from_axis_magnitude(a: float, b: float, c: float) -> Rotation:
    """Build a rotation from an axis whose length is the rotation angle."""
    magnitude = math.sqrt(a * a + b * b + c * c)
    if magnitude == 0.0:
        return Rotation._from_quaternion(0.0, 0.0, 0.0, 1.0)
    half = math.sin(magnitude / 2.0)
    return Rotation._from_quaternion(
        a / magnitude * half,
        b / magnitude * half,
        c / magnitude * half,
        math.cos(magnitude / 2.0),
    )


def axis_magnitude_from_rotation(rotation: Rotation) -> tuple[float, float, float]:
    """Return the axis of the rotation scaled by its angle."""
    x, y, z, w = rotation._to_quaternion()
    if w >= 1.0:
        return 0.0, 0.0, 0.0
    magnitude = 2.0 * math.acos(max(-1.0, w))
    s = math.sin(magnitude / 2.0)
    if s == 0.0:
        return 0.0, 0.0, 0.0
    return x / s * magnitude, y / s * magnitude, z / s * magnitude