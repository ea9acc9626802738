#!/usr/bin/env python3
"""
Mathematical utilities for robotics
Elementary rotations and heading extraction
"""

import numpy as np


def rotation_matrix_x(angle: float) -> np.ndarray:
    """Rotation matrix about X axis"""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([
        [1, 0, 0],
        [0, c, -s],
        [0, s, c]
    ])


def rotation_matrix_z(angle: float) -> np.ndarray:
    """Rotation matrix about Z axis"""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([
        [c, -s, 0],
        [s, c, 0],
        [0, 0, 1]
    ])


def rotation_matrix_z_derivative(angle: float, rate: float) -> np.ndarray:
    """
    Time derivative of the transposed Z rotation, d/dt Rz(angle)^T

    Args:
        angle: Rotation angle (radians)
        rate: Angle rate (rad/s)

    Returns:
        3x3 matrix
    """
    c, s = np.cos(angle), np.sin(angle)
    return np.array([
        [-s * rate, c * rate, 0],
        [-c * rate, -s * rate, 0],
        [0, 0, 0]
    ])


def heading_from_rotation(R: np.ndarray) -> float:
    """
    Heading angle of a wheeled base

    The base x axis points along the body's vertical, so the heading is
    read from the first column of the base rotation.

    Args:
        R: 3x3 base rotation matrix (body to world)

    Returns:
        Heading angle psi in radians
    """
    return np.arctan2(R[0, 0], -R[1, 0])


def pitch_from_rotation(R: np.ndarray, heading: float) -> float:
    """
    Body pitch of a wheeled base relative to the vertical

    Args:
        R: 3x3 base rotation matrix (body to world)
        heading: Heading angle from heading_from_rotation

    Returns:
        Pitch angle in radians
    """
    return np.arctan2(
        R[0, 1] * np.cos(heading) + R[1, 1] * np.sin(heading),
        R[2, 1]
    )
