#!/usr/bin/env python3
"""
Task definitions for Whole-Body Control
Each task contributes one weighted least-squares block over x = [ddq, lambda]
"""

import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from ..utils.layout import CoordinateLayout, KRANG_LAYOUT
from ..utils.robot_model import RobotState, FrameState
from .frame import Frame0


class TaskType(Enum):
    """Task types, in stacking order"""
    LIMB_TRACKING = 0
    BALANCE = 1
    POSTURE = 2
    SPEED_REGULARIZATION = 3
    REGULARIZATION = 4


@dataclass
class TaskGains:
    """PD gains for task-space control"""
    kp: np.ndarray  # Proportional gain
    kd: np.ndarray  # Derivative gain

    @classmethod
    def default_limb(cls) -> 'TaskGains':
        return cls(
            kp=np.array([750.0, 750.0, 750.0]),
            kd=np.array([250.0, 250.0, 250.0])
        )

    @classmethod
    def default_balance(cls) -> 'TaskGains':
        return cls(
            kp=np.array([750.0, 0.0, 750.0]),
            kd=np.array([250.0, 0.0, 250.0])
        )

    @classmethod
    def uniform(cls, kp: float, kd: float, dim: int) -> 'TaskGains':
        return cls(kp=np.full(dim, kp), kd=np.full(dim, kd))


@dataclass
class TaskBlock:
    """Weighted least-squares block ||P x - b||^2 of a single task"""
    name: str
    P: np.ndarray
    b: np.ndarray
    weights: np.ndarray
    desired_acceleration: np.ndarray

    def residual(self, x: np.ndarray) -> float:
        """Squared residual of this block at x"""
        r = self.P @ x - self.b
        return float(r @ r)


class Task(ABC):
    """
    Abstract base class for whole-body control tasks

    Each task computes:
    - Task Jacobian J and its derivative dJ (yaw frame)
    - Task-space error e and error rate
    - Desired acceleration ddx_ref = kp * e + kd * e_dot
    and turns them into P = W [J, 0], b = W (ddx_ref - dJ dq).
    """

    def __init__(
        self,
        name: str,
        dim: int,
        weight: float = 1.0,
        task_type: TaskType = TaskType.REGULARIZATION,
        layout: CoordinateLayout = KRANG_LAYOUT
    ):
        """
        Initialize task

        Args:
            name: Task name for identification
            dim: Number of rows contributed to the stacked objective
            weight: Task weight
            task_type: Task type
            layout: Generalized-coordinate layout
        """
        if weight < 0.0:
            raise ValueError(f"Task '{name}' weight must be non-negative")

        self.name = name
        self.dim = dim
        self.weight = weight
        self.task_type = task_type
        self.layout = layout

    @abstractmethod
    def compute_error(
        self,
        state: RobotState,
        frame: Frame0,
        dq: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Compute task error and error derivative

        Args:
            state: Robot state
            frame: Yaw-aligned frame
            dq: Filtered generalized velocities

        Returns:
            Tuple of (position_error, velocity_error)
        """
        pass

    @abstractmethod
    def compute_jacobian(
        self,
        state: RobotState,
        frame: Frame0
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Compute task Jacobian and its time derivative

        Returns:
            Tuple of (J, dJ), each (dim x n_dof)
        """
        pass

    @abstractmethod
    def weight_vector(self) -> np.ndarray:
        """Diagonal of the task weight matrix (dim,)"""
        pass

    def compute_desired_acceleration(
        self,
        state: RobotState,
        frame: Frame0,
        dq: np.ndarray,
        gains: TaskGains
    ) -> np.ndarray:
        """
        Compute desired task-space acceleration using PD control

        Returns:
            Desired acceleration in task space
        """
        pos_error, vel_error = self.compute_error(state, frame, dq)

        # PD control law: a_des = kp * e + kd * e_dot
        return gains.kp * pos_error + gains.kd * vel_error

    def build(
        self,
        state: RobotState,
        frame: Frame0,
        dq: np.ndarray
    ) -> TaskBlock:
        """
        Build this task's block of the stacked objective

        Args:
            state: Robot state
            frame: Yaw-aligned frame
            dq: Filtered generalized velocities

        Returns:
            TaskBlock with P (dim x n_vars) and b (dim,)
        """
        J, dJ = self.compute_jacobian(state, frame)
        a_des = self.compute_desired_acceleration(state, frame, dq, self.gains)
        w = self.weight_vector()

        P = w[:, None] * self.layout.pad(J)
        b = w * (a_des - dJ @ dq)

        return TaskBlock(
            name=self.name,
            P=P,
            b=b,
            weights=w,
            desired_acceleration=a_des
        )

    def __repr__(self):
        return f"{self.__class__.__name__}('{self.name}', dim={self.dim}, weight={self.weight})"


class LimbTrackingTask(Task):
    """End-effector position tracking, expressed relative to the base origin"""

    def __init__(
        self,
        name: str,
        arm: str,
        weight: float = 0.01,
        target_position: np.ndarray = None,
        gains: TaskGains = None,
        layout: CoordinateLayout = KRANG_LAYOUT
    ):
        super().__init__(name, dim=3, weight=weight,
                        task_type=TaskType.LIMB_TRACKING, layout=layout)

        if arm not in ('left_arm', 'right_arm'):
            raise ValueError(f"Unknown arm group: {arm}")

        self.arm = arm
        self.target_position = (
            target_position if target_position is not None
            else np.zeros(3)
        )
        self.gains = gains or TaskGains.default_limb()

        # The hand moves with base pitch, waist, torso and its own arm
        self.column_mask = layout.column_mask('waist', 'torso', arm, base_pitch=True)

    def set_target(self, position: np.ndarray):
        """Set desired hand position (yaw frame, relative to base origin)"""
        self.target_position = np.array(position, dtype=float)

    def _hand(self, state: RobotState) -> FrameState:
        return state.left_hand if self.arm == 'left_arm' else state.right_hand

    def compute_error(
        self,
        state: RobotState,
        frame: Frame0,
        dq: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Compute hand position error and velocity"""
        hand = self._hand(state)
        current_pos = frame.to_yaw_frame(hand.position)
        current_vel = frame.velocity_to_yaw_frame(hand.velocity)

        return self.target_position - current_pos, -current_vel

    def compute_jacobian(
        self,
        state: RobotState,
        frame: Frame0
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Masked hand Jacobian in the yaw frame"""
        hand = self._hand(state)
        J_world = hand.jacobian * self.column_mask
        dJ_world = hand.jacobian_derivative * self.column_mask

        J = frame.jacobian_to_yaw_frame(J_world)
        dJ = frame.jacobian_derivative_to_yaw_frame(J_world, dJ_world)

        return J, dJ

    def weight_vector(self) -> np.ndarray:
        return np.full(self.dim, self.weight)


class BalanceTask(Task):
    """
    Balance on the wheels

    Drives the wheel-free body COM to zero fore-aft offset from the base
    origin and to the height recorded at startup. The lateral axis is not
    controlled (zero row).
    """

    def __init__(
        self,
        name: str = "balance",
        height_reference: float = 0.0,
        axis_weights: np.ndarray = None,
        weight: float = 1.0,
        gains: TaskGains = None,
        layout: CoordinateLayout = KRANG_LAYOUT
    ):
        super().__init__(name, dim=3, weight=weight,
                        task_type=TaskType.BALANCE, layout=layout)

        self.height_reference = height_reference
        self.axis_weights = (
            np.array(axis_weights, dtype=float) if axis_weights is not None
            else np.array([1.0, 0.0, 1.0])
        )
        if np.any(self.axis_weights < 0.0):
            raise ValueError("Balance axis weights must be non-negative")
        self.gains = gains or TaskGains.default_balance()

        # Wheel dynamics are handled by the rolling constraint
        self.column_mask = layout.column_mask(
            'waist', 'torso', 'head', 'left_arm', 'right_arm', base_pitch=True
        )

    def set_target(self, height: float):
        """Set desired body COM height above the base origin"""
        self.height_reference = float(height)

    @staticmethod
    def measure_height(state: RobotState, frame: Frame0) -> float:
        """Current body COM height above the base origin"""
        return float(frame.to_yaw_frame(state.body_com())[2])

    def compute_error(
        self,
        state: RobotState,
        frame: Frame0,
        dq: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Compute body COM error (fore-aft and height) and velocity"""
        x = frame.to_yaw_frame(state.body_com())
        dx = frame.velocity_to_yaw_frame(state.body_com_velocity())

        pos_error = np.array([-x[0], 0.0, self.height_reference - x[2]])
        vel_error = np.array([-dx[0], 0.0, -dx[2]])

        return pos_error, vel_error

    def compute_jacobian(
        self,
        state: RobotState,
        frame: Frame0
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Body COM Jacobian in the yaw frame"""
        scale = state.total_mass / state.body_mass
        J_world = state.com.jacobian * self.column_mask
        dJ_world = state.com.jacobian_derivative * self.column_mask

        J = scale * frame.jacobian_to_yaw_frame(J_world)
        dJ = scale * frame.jacobian_derivative_to_yaw_frame(J_world, dJ_world)

        return J, dJ

    def weight_vector(self) -> np.ndarray:
        return self.weight * self.axis_weights


class JointSpaceTask(Task):
    """
    Diagonal task over the full QP variable

    Rows map one-to-one onto x; the multiplier rows always carry zero
    weight. Per-group weight scales shape the diagonal.
    """

    DEFAULT_GROUP_SCALE: Dict[str, float] = {}

    def __init__(
        self,
        name: str,
        task_type: TaskType,
        weight: float = 0.0,
        gains: TaskGains = None,
        group_scale: Optional[Dict[str, float]] = None,
        layout: CoordinateLayout = KRANG_LAYOUT
    ):
        super().__init__(name, dim=layout.n_vars, weight=weight,
                        task_type=task_type, layout=layout)

        self.group_scale = dict(group_scale or self.DEFAULT_GROUP_SCALE)
        self.gains = gains or TaskGains.uniform(0.0, 0.0, layout.n_dof)

    def compute_jacobian(
        self,
        state: RobotState,
        frame: Frame0
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Identity on the accelerations"""
        n = self.layout.n_dof
        J = np.eye(self.dim, n)
        return J, np.zeros((self.dim, n))

    def compute_desired_acceleration(
        self,
        state: RobotState,
        frame: Frame0,
        dq: np.ndarray,
        gains: TaskGains
    ) -> np.ndarray:
        a_des = super().compute_desired_acceleration(state, frame, dq, gains)
        return np.concatenate([a_des, np.zeros(self.layout.n_constraints)])

    def weight_vector(self) -> np.ndarray:
        scaled = {name: self.weight * s for name, s in self.group_scale.items()}
        return self.layout.group_weights(scaled)


class PostureTask(JointSpaceTask):
    """Joint position regularization towards the initial configuration"""

    DEFAULT_GROUP_SCALE = {
        'base_pitch': 10.0,
        'waist': 1.0,
        'torso': 1.0,
        'head': 1.0,
        'left_arm': 1.0,
        'right_arm': 1.0,
    }

    def __init__(
        self,
        name: str = "posture",
        target_position: np.ndarray = None,
        weight: float = 0.0,
        kp: float = 10.0,
        kd: float = 0.0,
        group_scale: Optional[Dict[str, float]] = None,
        layout: CoordinateLayout = KRANG_LAYOUT
    ):
        super().__init__(
            name, TaskType.POSTURE, weight=weight,
            gains=TaskGains.uniform(kp, kd, layout.n_dof),
            group_scale=group_scale, layout=layout
        )
        self.target_position = (
            np.array(target_position, dtype=float) if target_position is not None
            else np.zeros(layout.n_dof)
        )

    def set_target(self, position: np.ndarray):
        """Set target joint configuration"""
        self.target_position = np.array(position, dtype=float)

    def compute_error(
        self,
        state: RobotState,
        frame: Frame0,
        dq: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Compute joint position error"""
        return self.target_position - state.q, -dq


class SpeedRegularizationTask(JointSpaceTask):
    """Damps joint velocities towards zero"""

    DEFAULT_GROUP_SCALE = PostureTask.DEFAULT_GROUP_SCALE

    def __init__(
        self,
        name: str = "speed_regularization",
        weight: float = 0.0,
        kd: float = 0.01,
        group_scale: Optional[Dict[str, float]] = None,
        layout: CoordinateLayout = KRANG_LAYOUT
    ):
        super().__init__(
            name, TaskType.SPEED_REGULARIZATION, weight=weight,
            gains=TaskGains.uniform(0.0, kd, layout.n_dof),
            group_scale=group_scale, layout=layout
        )

    def compute_error(
        self,
        state: RobotState,
        frame: Frame0,
        dq: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        # Target velocity is zero
        return np.zeros_like(dq), -dq


class RegularizationTask(JointSpaceTask):
    """Penalizes joint accelerations (zero reference)"""

    DEFAULT_GROUP_SCALE = {
        'waist': 1.0,
        'torso': 1.0,
        'head': 10.0,
        'left_arm': 10.0,
        'right_arm': 10.0,
    }

    def __init__(
        self,
        name: str = "regularization",
        weight: float = 0.0,
        group_scale: Optional[Dict[str, float]] = None,
        layout: CoordinateLayout = KRANG_LAYOUT
    ):
        super().__init__(
            name, TaskType.REGULARIZATION, weight=weight,
            group_scale=group_scale, layout=layout
        )

    def compute_error(
        self,
        state: RobotState,
        frame: Frame0,
        dq: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        n = self.layout.n_dof
        return np.zeros(n), np.zeros(n)


def stack_blocks(blocks) -> Tuple[np.ndarray, np.ndarray]:
    """
    Stack task blocks into one objective ||P x - b||^2

    Args:
        blocks: TaskBlocks in stacking order

    Returns:
        Tuple of (P, b)
    """
    P = np.vstack([block.P for block in blocks])
    b = np.concatenate([block.b for block in blocks])
    return P, b
