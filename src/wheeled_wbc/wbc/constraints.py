#!/usr/bin/env python3
"""
Constraint definitions for Whole-Body Control
Wheel-rolling kinematics and the floating-base equations of motion
"""

import numpy as np
from dataclasses import dataclass

from ..utils.layout import CoordinateLayout, KRANG_LAYOUT


class RollingConstraint:
    """
    Nonholonomic rolling constraints of a two-wheel differential base

    Velocity-level constraints J_c dq = 0:
    0. no vertical base velocity
    1. base yaw rate tied to differential wheel spin
    2. no lateral base velocity
    3. no out-of-plane translation
    4. forward base speed tied to the wheel-spin sum (rolling)
    """

    n_constraints = 5

    def __init__(
        self,
        wheel_radius: float = 0.265,
        wheel_separation: float = 0.68,
        layout: CoordinateLayout = KRANG_LAYOUT
    ):
        """
        Initialize rolling constraint

        Args:
            wheel_radius: Wheel radius R
            wheel_separation: Distance between the wheels L
            layout: Generalized-coordinate layout
        """
        if wheel_radius <= 0.0 or wheel_separation <= 0.0:
            raise ValueError("Wheel radius and separation must be positive")
        if layout.n_constraints != self.n_constraints:
            raise ValueError(
                f"Layout reserves {layout.n_constraints} multipliers, "
                f"rolling constraint has {self.n_constraints}"
            )

        self.R = wheel_radius
        self.L = wheel_separation
        self.layout = layout

    def jacobian(self, base_pitch: float) -> np.ndarray:
        """
        Compute constraint Jacobian

        Args:
            base_pitch: Body pitch relative to the vertical

        Returns:
            J_c (n_constraints x n_dof)
        """
        R, L = self.R, self.L
        c, s = np.cos(base_pitch), np.sin(base_pitch)

        rot = self.layout.indices('base_rotation')
        trans = self.layout.indices('base_translation')
        left_wheel, right_wheel = self.layout.indices('wheels')

        J = np.zeros((self.n_constraints, self.layout.n_dof))

        # No vertical base velocity
        J[0, trans[1]] = c
        J[0, trans[2]] = s

        # Yaw rate from differential wheel spin
        J[1, rot[1]] = c
        J[1, rot[2]] = s
        J[1, left_wheel] = R / L
        J[1, right_wheel] = -R / L

        # No lateral base velocity
        J[2, rot[1]] = s
        J[2, rot[2]] = -c

        # No out-of-plane translation
        J[3, trans[0]] = 1.0

        # Rolling without slipping
        J[4, rot[0]] = R
        J[4, trans[1]] = s
        J[4, trans[2]] = -c
        J[4, left_wheel] = -R / 2
        J[4, right_wheel] = -R / 2

        return J


@dataclass
class EqualityConstraint:
    """Equality constraint A_eq x = b_eq over x = [ddq, lambda]"""
    A: np.ndarray
    b: np.ndarray

    def residual(self, x: np.ndarray) -> float:
        """Euclidean norm of A_eq x - b_eq"""
        return float(np.linalg.norm(self.A @ x - self.b))

    def is_rank_deficient(self, rtol: float = 1e-10) -> bool:
        """True if the rows of A_eq are (numerically) linearly dependent"""
        s = np.linalg.svd(self.A, compute_uv=False)
        if s.size < self.A.shape[0] or s[0] == 0.0:
            return True
        return s[-1] <= rtol * s[0]


def build_dynamics_constraint(
    M: np.ndarray,
    h: np.ndarray,
    J_c: np.ndarray,
    layout: CoordinateLayout = KRANG_LAYOUT
) -> EqualityConstraint:
    """
    Build the floating-base dynamics equality constraint

    The unactuated rows of M ddq + h = S' tau + J_c' lambda carry no torque:
    M_base ddq - J_c_base' lambda = -h_base

    Args:
        M: Mass matrix (n_dof x n_dof)
        h: Coriolis and gravity forces (n_dof)
        J_c: Rolling constraint Jacobian (n_constraints x n_dof)
        layout: Generalized-coordinate layout

    Returns:
        EqualityConstraint with len(layout.base) rows
    """
    base = layout.base

    A = np.hstack([M[base, :], -J_c[:, base].T])
    b = -h[base]

    return EqualityConstraint(A=A, b=b)
