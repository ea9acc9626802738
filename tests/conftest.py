"""
Shared fixtures: a deterministic synthetic wheeled-humanoid state.

Positions, velocities and Jacobians are drawn in the heading-aligned
frame and rotated into the world, so two states built with the same seed
and different headings are physically identical up to heading.
"""

import numpy as np
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from wheeled_wbc.utils.layout import KRANG_LAYOUT
from wheeled_wbc.utils.math_utils import rotation_matrix_x, rotation_matrix_z
from wheeled_wbc.utils.robot_model import FrameState, RobotState

TOTAL_MASS = 150.0
WHEEL_MASS = 5.0
BASE_POSITION = np.array([0.5, -0.2, 0.28])


def base_rotation(heading: float, pitch: float) -> np.ndarray:
    """Base orientation of an upright wheeled base with given heading/pitch"""
    return rotation_matrix_z(heading - np.pi / 2) @ rotation_matrix_x(np.pi / 2 - pitch)


def make_state(
    heading: float = 0.0,
    pitch: float = 0.1,
    com_offset: float = 0.0,
    gravity: bool = False,
    moving: bool = False,
    seed: int = 0
) -> RobotState:
    """
    Build a synthetic robot state

    Args:
        heading: Base heading angle
        pitch: Base pitch angle
        com_offset: Fore-aft offset of the wheel-free body COM (yaw frame)
        gravity: Non-zero bias forces
        moving: Non-zero velocities and Jacobian derivatives
        seed: Random seed for the heading-independent quantities
    """
    n = KRANG_LAYOUT.n_dof
    rng = np.random.default_rng(seed)

    # Draw everything up front so flags never shift the random stream
    q = rng.uniform(-0.5, 0.5, n)
    dq_rand = rng.normal(0.0, 0.2, n)
    A = rng.normal(0.0, 0.3, (n, n))
    diag = rng.uniform(1.0, 5.0, n)
    h_rand = rng.normal(0.0, 10.0, n)
    J_left = rng.normal(0.0, 0.5, (3, n))
    J_right = rng.normal(0.0, 0.5, (3, n))
    J_com = rng.normal(0.0, 0.1, (3, n))
    dJ_left = rng.normal(0.0, 0.1, (3, n))
    dJ_right = rng.normal(0.0, 0.1, (3, n))
    dJ_com = rng.normal(0.0, 0.05, (3, n))
    v_rand = rng.normal(0.0, 0.1, (5, 3))

    R = base_rotation(heading, pitch)
    Rz = rotation_matrix_z(heading)

    q[3:6] = BASE_POSITION
    dq = dq_rand if moving else np.zeros(n)
    M = A @ A.T + np.diag(diag)
    h = h_rand if gravity else np.zeros(n)

    base_velocity = R @ dq[3:6]

    def frame(local_pos, local_vel, J=None, dJ=None, mass=0.0):
        vel = local_vel if moving else np.zeros(3)
        return FrameState(
            position=BASE_POSITION + Rz @ local_pos,
            velocity=base_velocity + Rz @ vel,
            jacobian=None if J is None else Rz @ J,
            jacobian_derivative=None if dJ is None else Rz @ (dJ if moving else np.zeros_like(dJ)),
            mass=mass
        )

    body_mass = TOTAL_MASS - 2 * WHEEL_MASS
    body_com = np.array([com_offset, 0.0, 0.6])
    wheel_left = np.array([0.0, 0.34, 0.0])
    wheel_right = np.array([0.0, -0.34, 0.0])
    com_local = (
        body_mass * body_com + WHEEL_MASS * wheel_left + WHEEL_MASS * wheel_right
    ) / TOTAL_MASS
    com_vel = (
        body_mass * v_rand[2] + WHEEL_MASS * v_rand[3] + WHEEL_MASS * v_rand[4]
    ) / TOTAL_MASS

    hand = np.array([0.4, 0.0, 0.8])

    return RobotState(
        q=q,
        dq=dq,
        base_rotation=R,
        mass_matrix=M,
        bias_forces=h,
        total_mass=TOTAL_MASS,
        com=frame(com_local, com_vel, J_com, dJ_com),
        left_hand=frame(hand, v_rand[0], J_left, dJ_left),
        right_hand=frame(hand, v_rand[1], J_right, dJ_right),
        left_wheel=frame(wheel_left, v_rand[3], mass=WHEEL_MASS),
        right_wheel=frame(wheel_right, v_rand[4], mass=WHEEL_MASS)
    )


@pytest.fixture
def rest_state():
    """Robot at rest, no gravity, references met"""
    return make_state()


@pytest.fixture
def loaded_state():
    """Robot moving under gravity"""
    return make_state(gravity=True, moving=True)
