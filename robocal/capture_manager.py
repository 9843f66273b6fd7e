"""Capture of calibration samples: move the robot, settle, run feature finders."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

from robocal.chain_manager import ChainManager
from robocal.messages import CalibrationData, JointState

logger = logging.getLogger(__name__)


class CaptureManager:
    """Drives a capture: each finder must offer ``find(msg)`` returning a bool."""

    def __init__(
        self,
        chain_manager: ChainManager,
        finders: Mapping[str, Any],
        robot_description: Optional[str],
        publish: Optional[Callable[[CalibrationData], None]] = None,
        spin_once: Optional[Callable[[], None]] = None,
    ):
        if robot_description is None:
            raise ValueError("robot_description not set!")
        self.chain_manager = chain_manager
        self.finders = dict(finders)
        self._description = robot_description
        self._publish = publish
        self._spin_once = spin_once

    def move_to_state(self, state: JointState) -> bool:
        """Move to ``state`` and wait for the joints to settle."""
        if not self.chain_manager.move_to_state(state):
            return False
        self.chain_manager.wait_to_settle(self._spin_once)
        return True

    def capture_features(self, feature_names, msg: CalibrationData) -> bool:
        """Run the named finders (all of them if none are named) into ``msg``."""
        wanted = set(feature_names or ())
        for name, finder in sorted(self.finders.items()):
            if wanted and name not in wanted:
                continue
            if not finder.find(msg):
                logger.warning("%s failed to capture features.", name)
                return False
        msg.joint_states, _ = self.chain_manager.get_state()
        if self._publish is not None:
            self._publish(msg)
        return True

    def get_urdf(self) -> str:
        return self._description