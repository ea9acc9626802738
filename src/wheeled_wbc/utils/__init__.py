"""Utility modules for wheeled humanoid control"""

from .math_utils import (
    rotation_matrix_x,
    rotation_matrix_z,
    rotation_matrix_z_derivative,
    heading_from_rotation,
    pitch_from_rotation
)

from .layout import CoordinateLayout, KRANG_LAYOUT
from .robot_model import RobotConfig, RobotState, FrameState, DynamicsProvider

__all__ = [
    'rotation_matrix_x', 'rotation_matrix_z',
    'rotation_matrix_z_derivative', 'heading_from_rotation', 'pitch_from_rotation',
    'CoordinateLayout', 'KRANG_LAYOUT',
    'RobotConfig', 'RobotState', 'FrameState', 'DynamicsProvider'
]
