"""
Whole-Body Control modules for a wheeled humanoid
Task-space inverse dynamics with nonholonomic rolling constraints
"""

from .whole_body_controller import WholeBodyController, WBCConfig, WBCResult
from .task import (
    Task, TaskType, TaskGains, TaskBlock, LimbTrackingTask, BalanceTask,
    PostureTask, SpeedRegularizationTask, RegularizationTask, stack_blocks
)
from .frame import Frame0, compute_frame
from .constraints import RollingConstraint, EqualityConstraint, build_dynamics_constraint
from .qp_solver import QPSolver, QPSolverConfig, QPResult, SolveStatus
from .torque import extract_torques
from .telemetry import CycleOutcome, CycleTelemetry

__all__ = [
    'WholeBodyController',
    'WBCConfig',
    'WBCResult',
    'Task',
    'TaskType',
    'TaskGains',
    'TaskBlock',
    'LimbTrackingTask',
    'BalanceTask',
    'PostureTask',
    'SpeedRegularizationTask',
    'RegularizationTask',
    'stack_blocks',
    'Frame0',
    'compute_frame',
    'RollingConstraint',
    'EqualityConstraint',
    'build_dynamics_constraint',
    'QPSolver',
    'QPSolverConfig',
    'QPResult',
    'SolveStatus',
    'extract_torques',
    'CycleOutcome',
    'CycleTelemetry'
]
