#!/usr/bin/env python3
"""
Actuator torques from the whole-body QP solution
"""

import numpy as np

from ..utils.layout import CoordinateLayout, KRANG_LAYOUT


def extract_torques(
    M: np.ndarray,
    h: np.ndarray,
    J_c: np.ndarray,
    x: np.ndarray,
    layout: CoordinateLayout = KRANG_LAYOUT
) -> np.ndarray:
    """
    Back-substitute (ddq, lambda) into the actuated rows of the dynamics

    tau = M_act ddq + h_act - J_c_act' lambda

    The result is not clamped; actuator limits are the caller's concern.

    Args:
        M: Mass matrix (n_dof x n_dof)
        h: Coriolis and gravity forces (n_dof)
        J_c: Rolling constraint Jacobian (n_constraints x n_dof)
        x: QP solution [ddq, lambda] (n_vars)
        layout: Generalized-coordinate layout

    Returns:
        Torques for layout.actuated
    """
    act = layout.actuated
    ddq = x[:layout.n_dof]
    lam = x[layout.multipliers]

    return M[act, :] @ ddq + h[act] - J_c[:, act].T @ lam
