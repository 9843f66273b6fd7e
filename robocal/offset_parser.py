"""Calibration offsets: free parameters, frame offsets and URDF updating."""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from typing import Optional

import numpy as np

from robocal.geometry import (
    Frame,
    Rotation,
    axis_magnitude_from_rotation,
    rotation_from_axis_magnitude,
)

logger = logging.getLogger(__name__)

_PRECISION = 8
_FRAME_SUFFIXES = ("_x", "_y", "_z", "_a", "_b", "_c")
_DECLARATION = re.compile(r"^\s*<\?xml(.*?)\?>", re.S)
_DECL_ATTR = re.compile(r"""(\w+)\s*=\s*(["'])(.*?)\2""")
_FLOAT_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _escape(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def _condense(text: Optional[str]) -> str:
    return " ".join((text or "").split())


def _print_element(element: ET.Element, depth: int, out: list) -> None:
    pad = "  " * depth
    if element.tag is ET.Comment:
        out.append(f"{pad}<!--{element.text or ''}-->\n")
        return
    attrs = "".join(f' {k}="{_escape(v)}"' for k, v in element.attrib.items())
    text = _condense(element.text)
    children = list(element)
    if not children:
        if text:
            out.append(f"{pad}<{element.tag}{attrs}>{_escape(text)}</{element.tag}>\n")
        else:
            out.append(f"{pad}<{element.tag}{attrs} />\n")
        return
    out.append(f"{pad}<{element.tag}{attrs}>\n")
    inner = "  " * (depth + 1)
    if text:
        out.append(f"{inner}{_escape(text)}\n")
    for child in children:
        _print_element(child, depth + 1, out)
        tail = _condense(child.tail)
        if tail:
            out.append(f"{inner}{_escape(tail)}\n")
    out.append(f"{pad}</{element.tag}>\n")


def _format_triple(values) -> str:
    return " ".join(f"{v:.{_PRECISION}f}" for v in values)


class CalibrationOffsetParser:
    """Holds named calibration offsets, the first ``len(self)`` of which are free."""

    def __init__(self):
        self._names: list[str] = []
        self._offsets: dict[str, float] = {}
        self._frame_names: list[str] = []
        self._num_free = 0

    def add(self, name: str) -> bool:
        """Make ``name`` a free parameter; return False if it already is one."""
        value = 0.0
        if name in self._offsets:
            if self._names.index(name) < self._num_free:
                return False
            value = self._offsets.pop(name)
            self._names.remove(name)
        self._names.insert(self._num_free, name)
        self._offsets[name] = value
        self._num_free += 1
        return True

    def add_frame(
        self,
        name: str,
        calibrate_x: bool,
        calibrate_y: bool,
        calibrate_z: bool,
        calibrate_roll: bool,
        calibrate_pitch: bool,
        calibrate_yaw: bool,
    ) -> bool:
        self._frame_names.append(name)
        flags = (
            calibrate_x,
            calibrate_y,
            calibrate_z,
            calibrate_roll,
            calibrate_pitch,
            calibrate_yaw,
        )
        for flag, suffix in zip(flags, _FRAME_SUFFIXES):
            if flag:
                self.add(name + suffix)
        return True

    def _free_names(self) -> list[str]:
        return self._names[: self._num_free]

    def set(self, name: str, value: float) -> bool:
        """Set a free parameter; return False if ``name`` is not free."""
        if name in self._free_names():
            self._offsets[name] = float(value)
            return True
        return False

    def set_frame(
        self, name: str, x: float, y: float, z: float, roll: float, pitch: float, yaw: float
    ) -> bool:
        a, b, c = axis_magnitude_from_rotation(Rotation.from_rpy(roll, pitch, yaw))
        for suffix, value in zip(_FRAME_SUFFIXES, (x, y, z, a, b, c)):
            self.set(name + suffix, value)
        return True

    def initialize(self) -> list[float]:
        """Return the current values of the free parameters."""
        return [self._offsets[n] for n in self._free_names()]

    def update(self, free_params) -> bool:
        for name, value in zip(self._free_names(), free_params):
            self._offsets[name] = float(value)
        return True

    def get(self, name: str) -> float:
        return self._offsets.get(name, 0.0)

    def get_frame(self, name: str) -> Optional[Frame]:
        """Return the offset frame for ``name``, or None if it is not calibrated."""
        if name not in self._frame_names:
            return None
        x, y, z, a, b, c = (self.get(name + s) for s in _FRAME_SUFFIXES)
        return Frame(rotation_from_axis_magnitude(a, b, c), np.array([x, y, z]))

    def __len__(self) -> int:
        return self._num_free

    def reset(self) -> bool:
        self._num_free = 0
        return True

    def load_offset_yaml(self, filename) -> None:
        """Load ``name: value`` lines, setting those names that are free."""
        with open(filename, encoding="utf-8") as f:
            for line in f:
                tokens = line.split()
                if len(tokens) < 2:
                    continue
                match = _FLOAT_PREFIX.match(tokens[1])
                if not match:
                    continue
                param = tokens[0][:-1]
                value = float(match.group(0))
                logger.info("Loading '%s' with value %g", param, value)
                self.set(param, value)

    def get_offset_yaml(self) -> str:
        return "".join(f"{name}: {self._offsets[name]:g}\n" for name in self._names)

    def update_urdf(self, urdf: str) -> str:
        """Return ``urdf`` with joint calibration and origin offsets applied."""
        match = _DECLARATION.match(urdf)
        body = urdf[match.end():] if match else urdf
        parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
        try:
            robot = ET.fromstring(body, parser=parser)
        except ET.ParseError:
            return urdf
        if robot.tag != "robot":
            return urdf

        for joint in robot.iter("joint"):
            if joint not in list(robot):
                continue
            self._update_joint(joint)

        out = []
        if match:
            attrs = dict((k, v) for k, _, v in _DECL_ATTR.findall(match.group(1)))
            decl = "".join(
                f'{key}="{attrs[key]}" '
                for key in ("version", "encoding", "standalone")
                if key in attrs
            )
            out.append(f"<?xml {decl}?>\n")
        _print_element(robot, 0, out)
        return "".join(out)

    def _update_joint(self, joint: ET.Element) -> None:
        name = joint.get("name", "")

        offset = self.get(name)
        if offset != 0.0:
            calibration = joint.find("calibration")
            if calibration is not None:
                rising = calibration.get("rising")
                if rising is not None:
                    try:
                        offset += float(rising)
                    except ValueError:
                        pass
                    else:
                        calibration.set("rising", f"{offset:g}")
            else:
                ET.SubElement(joint, "calibration", {"rising": f"{offset:g}"})

        frame_offset = self.get_frame(name)
        if frame_offset is None:
            return

        origin_xml = joint.find("origin")
        if origin_xml is not None:
            xyz_pieces = origin_xml.get("xyz", "").split(" ")
            rpy_pieces = origin_xml.get("rpy", "").split(" ")
            origin = Frame()
            if len(xyz_pieces) == 3:
                origin.position = np.array([float(v) for v in xyz_pieces])
            if len(rpy_pieces) == 3:
                origin.rotation = Rotation.from_rpy(*(float(v) for v in rpy_pieces))
            updated = origin * frame_offset
            origin_xml.set("xyz", _format_triple(updated.position))
            origin_xml.set("rpy", _format_triple(updated.rotation.to_rpy()))
        else:
            ET.SubElement(
                joint,
                "origin",
                {
                    "xyz": _format_triple(frame_offset.position),
                    "rpy": _format_triple(frame_offset.rotation.to_rpy()),
                },
            )