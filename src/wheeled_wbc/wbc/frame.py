#!/usr/bin/env python3
"""
Yaw-aligned reference frame
All task errors and Jacobians are expressed independent of base heading
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional

from ..utils.math_utils import (
    rotation_matrix_z,
    rotation_matrix_z_derivative,
    heading_from_rotation,
    pitch_from_rotation
)


@dataclass
class Frame0:
    """Heading-aligned frame attached to the base origin"""
    yaw: float                # Heading angle psi
    yaw_rate: float           # Heading rate used for dRot0
    pitch: float              # Body pitch relative to vertical
    rotation: np.ndarray      # Rot0, world -> yaw frame (3x3)
    rotation_dot: np.ndarray  # dRot0 (3x3)
    origin: np.ndarray        # Base origin in world
    origin_velocity: np.ndarray

    def to_yaw_frame(self, position: np.ndarray) -> np.ndarray:
        """World point to yaw-frame coordinates relative to the base"""
        return self.rotation @ (position - self.origin)

    def velocity_to_yaw_frame(self, velocity: np.ndarray) -> np.ndarray:
        """World velocity to yaw-frame velocity relative to the base"""
        return self.rotation @ (velocity - self.origin_velocity)

    def jacobian_to_yaw_frame(self, J: np.ndarray) -> np.ndarray:
        return self.rotation @ J

    def jacobian_derivative_to_yaw_frame(
        self,
        J: np.ndarray,
        dJ: np.ndarray
    ) -> np.ndarray:
        """d/dt (Rot0 J) = dRot0 J + Rot0 dJ"""
        return self.rotation_dot @ J + self.rotation @ dJ


def compute_frame(
    base_rotation: np.ndarray,
    base_position: np.ndarray,
    base_velocity_local: np.ndarray,
    angular_velocity_local: Optional[np.ndarray] = None,
    use_measured_yaw_rate: bool = False
) -> Frame0:
    """
    Compute the yaw-aligned frame from the floating base state

    Args:
        base_rotation: Base orientation, body to world (3x3)
        base_position: Base origin in world (3,)
        base_velocity_local: Base translational velocity, body coordinates
        angular_velocity_local: Base angular velocity, body coordinates
        use_measured_yaw_rate: Use the measured heading rate in dRot0
            instead of the zero-rate approximation

    Returns:
        Frame0
    """
    R = np.asarray(base_rotation)

    yaw = heading_from_rotation(R)
    pitch = pitch_from_rotation(R, yaw)

    yaw_rate = 0.0
    if use_measured_yaw_rate and angular_velocity_local is not None:
        yaw_rate = float((R @ angular_velocity_local)[2])

    rotation = rotation_matrix_z(yaw).T
    rotation_dot = rotation_matrix_z_derivative(yaw, yaw_rate)

    return Frame0(
        yaw=yaw,
        yaw_rate=yaw_rate,
        pitch=pitch,
        rotation=rotation,
        rotation_dot=rotation_dot,
        origin=np.array(base_position, dtype=float),
        origin_velocity=R @ base_velocity_local
    )
