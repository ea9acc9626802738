#!/usr/bin/env python3
"""
Robot model boundary
Per-cycle robot state supplied by an external rigid-body dynamics provider
"""

import numpy as np
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional
import yaml

from .layout import CoordinateLayout, KRANG_LAYOUT


@dataclass
class RobotConfig:
    """Robot configuration parameters"""
    name: str = "krang"

    # Differential-drive geometry
    wheel_radius: float = 0.265
    wheel_separation: float = 0.68

    # Frame names on the dynamics provider side
    left_end_effector: str = "lGripper"
    right_end_effector: str = "rGripper"
    left_wheel: str = "LWheel"
    right_wheel: str = "RWheel"

    def __post_init__(self):
        if self.wheel_radius <= 0.0 or self.wheel_separation <= 0.0:
            raise ValueError("Wheel radius and separation must be positive")

    @classmethod
    def from_dict(cls, cfg: dict) -> 'RobotConfig':
        """Build from the 'robot' section of a configuration file"""
        frames = cfg.get('frames', {})
        return cls(
            name=cfg.get('name', 'krang'),
            wheel_radius=cfg.get('wheel_radius', 0.265),
            wheel_separation=cfg.get('wheel_separation', 0.68),
            left_end_effector=frames.get('left_end_effector', 'lGripper'),
            right_end_effector=frames.get('right_end_effector', 'rGripper'),
            left_wheel=frames.get('left_wheel', 'LWheel'),
            right_wheel=frames.get('right_wheel', 'RWheel')
        )

    @classmethod
    def from_yaml(cls, config_path: str) -> 'RobotConfig':
        """Load robot configuration from YAML"""
        with open(config_path, 'r') as f:
            cfg = yaml.safe_load(f) or {}
        return cls.from_dict(cfg.get('robot', {}))


@dataclass
class FrameState:
    """
    Kinematic state of a designated frame, world coordinates

    Jacobians are linear (3 x n_dof) and map dq to the frame's linear
    velocity. Wheels only need position, velocity and mass.
    """
    position: np.ndarray
    velocity: np.ndarray
    jacobian: Optional[np.ndarray] = None
    jacobian_derivative: Optional[np.ndarray] = None
    mass: float = 0.0


@dataclass
class RobotState:
    """
    Full kinematic/dynamic robot state for one control cycle

    Read once at the start of a cycle and treated as immutable.
    """
    q: np.ndarray                  # Generalized positions (n_dof)
    dq: np.ndarray                 # Raw generalized velocities (n_dof)
    base_rotation: np.ndarray      # Base orientation, body to world (3x3)
    mass_matrix: np.ndarray        # M(q) (n_dof x n_dof)
    bias_forces: np.ndarray        # h(q, dq), Coriolis + gravity (n_dof)
    total_mass: float
    com: FrameState                # Whole-body center of mass
    left_hand: FrameState
    right_hand: FrameState
    left_wheel: FrameState
    right_wheel: FrameState

    @property
    def wheel_mass(self) -> float:
        return self.left_wheel.mass + self.right_wheel.mass

    @property
    def body_mass(self) -> float:
        """Mass of everything above the wheels"""
        return self.total_mass - self.wheel_mass

    def body_com(self) -> np.ndarray:
        """Center of mass position with the wheels removed"""
        return (
            self.total_mass * self.com.position
            - self.left_wheel.mass * self.left_wheel.position
            - self.right_wheel.mass * self.right_wheel.position
        ) / self.body_mass

    def body_com_velocity(self) -> np.ndarray:
        """Center of mass velocity with the wheels removed"""
        return (
            self.total_mass * self.com.velocity
            - self.left_wheel.mass * self.left_wheel.velocity
            - self.right_wheel.mass * self.right_wheel.velocity
        ) / self.body_mass

    def validate(self, layout: CoordinateLayout = KRANG_LAYOUT):
        """
        Check dimensions and finiteness against a coordinate layout

        Raises:
            ValueError: If any field is malformed
        """
        n = layout.n_dof
        expected = {
            'q': (self.q, (n,)),
            'dq': (self.dq, (n,)),
            'base_rotation': (self.base_rotation, (3, 3)),
            'mass_matrix': (self.mass_matrix, (n, n)),
            'bias_forces': (self.bias_forces, (n,)),
        }
        for name, (value, shape) in expected.items():
            _check_array(name, value, shape)

        for name in ('com', 'left_hand', 'right_hand'):
            frame = getattr(self, name)
            _check_array(f"{name}.position", frame.position, (3,))
            _check_array(f"{name}.velocity", frame.velocity, (3,))
            _check_array(f"{name}.jacobian", frame.jacobian, (3, n))
            _check_array(
                f"{name}.jacobian_derivative", frame.jacobian_derivative, (3, n)
            )

        for name in ('left_wheel', 'right_wheel'):
            frame = getattr(self, name)
            _check_array(f"{name}.position", frame.position, (3,))
            _check_array(f"{name}.velocity", frame.velocity, (3,))
            if frame.mass < 0.0:
                raise ValueError(f"{name}.mass must be non-negative")

        if self.body_mass <= 0.0:
            raise ValueError("Wheel mass must be smaller than total mass")


def _check_array(name: str, value, shape):
    if value is None:
        raise ValueError(f"Missing robot state field: {name}")
    value = np.asarray(value)
    if value.shape != shape:
        raise ValueError(f"{name} has shape {value.shape}, expected {shape}")
    if not np.all(np.isfinite(value)):
        raise ValueError(f"{name} contains non-finite values")


class DynamicsProvider(ABC):
    """
    Interface to the rigid-body dynamics provider and actuators

    Implementations wrap a simulator or robot driver. The controller reads
    the state once per cycle and writes torques for the actuated joints.
    """

    @abstractmethod
    def read_state(self) -> RobotState:
        """Return the current robot state"""
        pass

    @abstractmethod
    def apply_torques(self, indices: np.ndarray, torques: np.ndarray):
        """
        Command joint torques

        Args:
            indices: Generalized-coordinate indices of the actuated joints
            torques: Torque per index
        """
        pass
