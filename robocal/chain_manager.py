"""Kinematic chain controllers: joint state tracking, motion goals and settling."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from robocal.messages import JointState, JointTrajectoryPoint

logger = logging.getLogger(__name__)

SETTLED_VELOCITY = 0.001
GOAL_TIME_TOLERANCE = 1.0
RESULT_TIMEOUT_FACTOR = 1.5
CONSTRAINT_TOLERANCE = 0.01


@dataclass
class JointTrajectory:
    joint_names: list = field(default_factory=list)
    points: list = field(default_factory=list)


@dataclass
class TrajectoryGoal:
    """Goal sent to a chain's trajectory controller."""

    trajectory: JointTrajectory = field(default_factory=JointTrajectory)
    goal_time_tolerance: float = GOAL_TIME_TOLERANCE


@dataclass
class JointConstraint:
    joint_name: str
    position: float
    tolerance_above: float = CONSTRAINT_TOLERANCE
    tolerance_below: float = CONSTRAINT_TOLERANCE
    weight: float = 1.0


@dataclass
class PlanRequest:
    """Request handed to a motion planner; only a plan is wanted, not execution."""

    group_name: str
    goal_constraints: list
    num_planning_attempts: int = 1
    allowed_planning_time: float = 5.0
    max_velocity_scaling_factor: float = 1.0
    plan_only: bool = True


@dataclass
class ChainController:
    """One kinematic chain and the client that drives it.

    ``client`` must offer ``send_goal(goal)`` and ``wait_for_result(timeout)``.
    """

    name: str
    topic: str
    planning_group: str = ""
    joint_names: list = field(default_factory=list)
    client: Any = None

    def should_plan(self) -> bool:
        return bool(self.planning_group)


class ChainManager:
    """Tracks joint states and moves the managed chains to requested states.

    ``move_group`` is a planner offering ``plan(request)``, returning a
    ``JointTrajectory`` or None when planning fails.
    """

    def __init__(self, controllers=(), duration: float = 5.0,
                 velocity_factor: float = 1.0, move_group: Any = None):
        self.controllers: list[ChainController] = list(controllers)
        self.duration = float(duration)
        self.velocity_factor = float(velocity_factor)
        self.move_group = move_group
        self._lock = threading.Lock()
        self._state = JointState()
        self._state_is_valid = False

    @classmethod
    def from_config(cls, chains, duration: float = 5.0,
                    velocity_factor: float = 1.0) -> "ChainManager":
        """Build from a list of chain mappings; chains without a topic are skipped."""
        if not chains:
            logger.warning("No chains defined.")
        controllers = [
            ChainController(
                name=str(chain["name"]),
                topic=str(chain["topic"]),
                planning_group=str(chain.get("planning_group", "")),
                joint_names=[str(j) for j in chain.get("joints", [])],
            )
            for chain in chains or ()
            if "topic" in chain
        ]
        return cls(controllers, duration, velocity_factor)

    def state_callback(self, msg: JointState) -> None:
        """Merge a joint state message into the tracked state."""
        if len(msg.name) != len(msg.position):
            raise ValueError("JointState error: name array is not same size as position array.")
        if len(msg.position) != len(msg.velocity):
            raise ValueError("JointState error: position array is not same size as velocity array.")
        with self._lock:
            for name, position, velocity in zip(msg.name, msg.position, msg.velocity):
                if name in self._state.name:
                    index = self._state.name.index(name)
                    self._state.position[index] = position
                    self._state.velocity[index] = velocity
                else:
                    self._state.name.append(name)
                    self._state.position.append(position)
                    self._state.velocity.append(velocity)
            self._state_is_valid = True

    def get_state(self) -> tuple[JointState, bool]:
        """Return a copy of the tracked state and whether it is valid."""
        with self._lock:
            state = JointState(
                list(self._state.name),
                list(self._state.position),
                list(self._state.velocity),
            )
            return state, self._state_is_valid

    def make_point(self, state: JointState, joints) -> JointTrajectoryPoint:
        """Build a trajectory point holding ``state``'s positions for ``joints``."""
        positions = dict(zip(state.name, state.position))
        point = JointTrajectoryPoint()
        for joint in joints:
            if joint not in positions:
                raise ValueError(f"Bad move to state, missing {joint}")
            point.positions.append(positions[joint])
            point.velocities.append(0.0)
            point.accelerations.append(0.0)
        return point

    def _plan(self, controller: ChainController,
              point: JointTrajectoryPoint) -> Optional[JointTrajectory]:
        if self.move_group is None:
            raise RuntimeError(f"chain {controller.name} needs a motion planner")
        request = PlanRequest(
            group_name=controller.planning_group,
            goal_constraints=[
                [
                    JointConstraint(name, position)
                    for name, position in zip(controller.joint_names, point.positions)
                ]
            ],
            max_velocity_scaling_factor=self.velocity_factor,
        )
        return self.move_group.plan(request)

    def move_to_state(self, state: JointState) -> bool:
        """Send every chain towards ``state``; return False if planning fails."""
        max_duration = self.duration
        for controller in self.controllers:
            if controller.client is None:
                raise RuntimeError(f"chain {controller.name} has no trajectory client")
            goal = TrajectoryGoal(JointTrajectory(list(controller.joint_names)))
            point = self.make_point(state, controller.joint_names)
            if controller.should_plan():
                trajectory = self._plan(controller, point)
                if trajectory is None:
                    return False
                goal.trajectory = trajectory
                max_duration = max(max_duration, trajectory.points[-1].time_from_start)
            else:
                point.time_from_start = self.duration
                goal.trajectory.points.append(point)
            controller.client.send_goal(goal)

        for controller in self.controllers:
            controller.client.wait_for_result(max_duration * RESULT_TIMEOUT_FACTOR)
        return True

    def wait_to_settle(self, spin_once: Optional[Callable[[], None]] = None) -> bool:
        """Block until no managed joint is moving, calling ``spin_once`` between checks."""
        if not self.controllers:
            return True
        spin = spin_once or (lambda: time.sleep(0.01))
        managed = {name for c in self.controllers for name in c.joint_names}

        with self._lock:
            self._state_is_valid = False

        while True:
            state, valid = self.get_state()
            settled = valid and not any(
                abs(velocity) >= SETTLED_VELOCITY and name in managed
                for name, velocity in zip(state.name, state.velocity)
            )
            if settled:
                return True
            spin()

    def get_chains(self) -> list[str]:
        return [c.name for c in self.controllers]

    def _find(self, chain_name: str) -> Optional[ChainController]:
        return next((c for c in self.controllers if c.name == chain_name), None)

    def get_chain_joint_names(self, chain_name: str) -> list[str]:
        controller = self._find(chain_name)
        return list(controller.joint_names) if controller else []

    def get_planning_group_name(self, chain_name: str) -> str:
        controller = self._find(chain_name)
        return controller.planning_group if controller else ""