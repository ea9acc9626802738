#!/usr/bin/env python3
"""
Whole-Body Controller for a wheeled humanoid
Balance on two wheels while tracking a hand target, one QP per control cycle
"""

import numpy as np
from dataclasses import dataclass, field, fields
from typing import Dict, Optional, Tuple
import logging
import yaml

from ..estimation.velocity_filter import VelocityFilter
from ..utils.layout import CoordinateLayout, KRANG_LAYOUT
from ..utils.robot_model import RobotConfig, RobotState, DynamicsProvider
from .frame import Frame0, compute_frame
from .task import (
    Task, TaskGains, LimbTrackingTask, BalanceTask, PostureTask,
    SpeedRegularizationTask, RegularizationTask, stack_blocks
)
from .constraints import RollingConstraint, build_dynamics_constraint
from .qp_solver import QPSolver, QPSolverConfig, QPResult, SolveStatus
from .torque import extract_torques
from .telemetry import CycleOutcome, CycleTelemetry, TelemetrySink

logger = logging.getLogger(__name__)


@dataclass
class WBCConfig:
    """Whole-Body Controller configuration"""
    control_rate_hz: float = 1000.0
    filter_window: int = 100
    use_measured_yaw_rate: bool = False
    log_interval: int = 30             # Steps between debug summaries

    # Default task weights
    default_weights: Dict[str, float] = field(default_factory=lambda: {
        'limb_right': 0.01,
        'limb_left': 0.01,
        'balance': 1.0,
        'posture': 0.0,
        'speed_regularization': 0.0,
        'regularization': 0.0
    })
    balance_axis_weights: Tuple[float, float, float] = (1.0, 0.0, 1.0)

    # Default PD gains
    limb_gains: TaskGains = None
    balance_gains: TaskGains = None
    posture_kp: float = 10.0
    posture_kd: float = 0.0
    speed_regularization_kd: float = 0.01

    robot: RobotConfig = field(default_factory=RobotConfig)
    solver: QPSolverConfig = field(default_factory=QPSolverConfig)

    def __post_init__(self):
        if self.limb_gains is None:
            self.limb_gains = TaskGains.default_limb()
        if self.balance_gains is None:
            self.balance_gains = TaskGains.default_balance()
        if self.control_rate_hz <= 0.0:
            raise ValueError("control_rate_hz must be positive")
        for name, weight in self.default_weights.items():
            if weight < 0.0:
                raise ValueError(f"Weight for '{name}' must be non-negative")

    @classmethod
    def from_dict(cls, cfg: dict) -> 'WBCConfig':
        """Build from a configuration dictionary (see config/wbc.yaml)"""
        wbc_cfg = cfg.get('wbc', {})
        task_cfg = cfg.get('tasks', {})
        solver_cfg = cfg.get('solver', {})

        config = cls(
            control_rate_hz=float(wbc_cfg.get('control_rate_hz', 1000.0)),
            filter_window=int(wbc_cfg.get('filter_window', 100)),
            use_measured_yaw_rate=bool(wbc_cfg.get('use_measured_yaw_rate', False)),
            log_interval=int(wbc_cfg.get('log_interval', 30)),
            robot=RobotConfig.from_dict(cfg.get('robot', {})),
            solver=_solver_config_from_dict(solver_cfg)
        )

        for name, weight in task_cfg.get('weights', {}).items():
            if name not in config.default_weights:
                raise ValueError(f"Unknown task: {name}")
            config.default_weights[name] = float(weight)

        if 'balance_axis_weights' in task_cfg:
            config.balance_axis_weights = tuple(
                float(w) for w in task_cfg['balance_axis_weights']
            )

        limb = task_cfg.get('limb', {})
        if limb:
            config.limb_gains = TaskGains.uniform(
                float(limb.get('kp', 750.0)), float(limb.get('kd', 250.0)), 3
            )
        balance = task_cfg.get('balance', {})
        if balance:
            kp = float(balance.get('kp', 750.0))
            kd = float(balance.get('kd', 250.0))
            config.balance_gains = TaskGains(
                kp=np.array([kp, 0.0, kp]), kd=np.array([kd, 0.0, kd])
            )

        posture = task_cfg.get('posture', {})
        config.posture_kp = float(posture.get('kp', config.posture_kp))
        config.posture_kd = float(posture.get('kd', config.posture_kd))
        speed = task_cfg.get('speed_regularization', {})
        config.speed_regularization_kd = float(
            speed.get('kd', config.speed_regularization_kd)
        )

        config.__post_init__()
        return config

    @classmethod
    def from_yaml(cls, config_path: str) -> 'WBCConfig':
        """Load configuration from YAML"""
        with open(config_path, 'r') as f:
            return cls.from_dict(yaml.safe_load(f) or {})


def _solver_config_from_dict(cfg: dict) -> QPSolverConfig:
    known = {f.name for f in fields(QPSolverConfig)}
    kwargs = {}
    for key, value in cfg.items():
        if key not in known:
            raise ValueError(f"Unknown solver option: {key}")
        if key == 'backend':
            kwargs[key] = str(value)
        elif key in ('max_iter', 'osqp_max_iter'):
            kwargs[key] = int(value)
        elif value is None:
            kwargs[key] = None
        else:
            kwargs[key] = float(value)
    return QPSolverConfig(**kwargs)


@dataclass
class WBCResult:
    """WBC solution result"""
    joint_torques: np.ndarray
    joint_accelerations: np.ndarray
    multipliers: np.ndarray
    outcome: CycleOutcome
    solver_status: Optional[SolveStatus]
    solve_time_ms: float
    telemetry: CycleTelemetry


class WholeBodyController:
    """
    Whole-Body Controller session for a wheeled humanoid

    Each cycle solves
    min  sum_i ||W_i (J_i ddq + dJ_i dq - ddx_i_ref)||^2
    s.t. M_base ddq + h_base = J_c_base' lambda
    over x = [ddq, lambda] and back-substitutes into the actuated rows
    of the dynamics.

    Lifecycle: references (initial posture, body COM height), filter
    history, warm start and previous torque are reset at construction
    and by reset(); update() advances them. Not reentrant: one update at
    a time per instance.
    """

    TASK_ORDER = (
        'limb_right',
        'limb_left',
        'balance',
        'posture',
        'speed_regularization',
        'regularization'
    )

    def __init__(
        self,
        initial_state: RobotState,
        config: WBCConfig = None,
        telemetry_sink: Optional[TelemetrySink] = None,
        layout: CoordinateLayout = KRANG_LAYOUT
    ):
        """
        Initialize Whole-Body Controller

        Args:
            initial_state: Robot state at startup, defines posture and
                balance height references
            config: WBC configuration
            telemetry_sink: Called with a CycleTelemetry every cycle
            layout: Generalized-coordinate layout

        Raises:
            ValueError: If the initial state is missing or malformed
        """
        if initial_state is None:
            raise ValueError("An initial robot state is required")

        self.config = config or WBCConfig()
        self.layout = layout
        self.telemetry_sink = telemetry_sink

        self.velocity_filter = VelocityFilter(
            layout.n_dof,
            window_size=self.config.filter_window,
            rate_hz=self.config.control_rate_hz
        )
        self.rolling_constraint = RollingConstraint(
            wheel_radius=self.config.robot.wheel_radius,
            wheel_separation=self.config.robot.wheel_separation,
            layout=layout
        )
        self.solver = QPSolver(layout.n_vars, self.config.solver)

        # Tasks in stacking order
        self.tasks: Dict[str, Task] = {}
        self._setup_tasks()

        self.reset(initial_state)

        logger.info(
            f"WholeBodyController ready | dof={layout.n_dof} "
            f"vars={layout.n_vars} actuated={len(layout.actuated)} "
            f"backend={self.config.solver.backend}"
        )

    def _setup_tasks(self):
        """Setup the fixed task stack"""
        cfg = self.config
        weights = cfg.default_weights

        self.tasks['limb_right'] = LimbTrackingTask(
            name='limb_right',
            arm='right_arm',
            weight=weights['limb_right'],
            gains=cfg.limb_gains,
            layout=self.layout
        )
        self.tasks['limb_left'] = LimbTrackingTask(
            name='limb_left',
            arm='left_arm',
            weight=weights['limb_left'],
            gains=cfg.limb_gains,
            layout=self.layout
        )
        self.tasks['balance'] = BalanceTask(
            name='balance',
            weight=weights['balance'],
            axis_weights=np.array(cfg.balance_axis_weights),
            gains=cfg.balance_gains,
            layout=self.layout
        )
        self.tasks['posture'] = PostureTask(
            name='posture',
            weight=weights['posture'],
            kp=cfg.posture_kp,
            kd=cfg.posture_kd,
            layout=self.layout
        )
        self.tasks['speed_regularization'] = SpeedRegularizationTask(
            name='speed_regularization',
            weight=weights['speed_regularization'],
            kd=cfg.speed_regularization_kd,
            layout=self.layout
        )
        self.tasks['regularization'] = RegularizationTask(
            name='regularization',
            weight=weights['regularization'],
            layout=self.layout
        )

    def reset(self, initial_state: Optional[RobotState] = None):
        """
        Reset controller state

        Args:
            initial_state: New startup state; keeps the current references
                when omitted
        """
        if initial_state is not None:
            initial_state.validate(self.layout)
            frame = self._compute_frame(initial_state, initial_state.dq)

            self.q_init = initial_state.q.copy()
            self.height_reference = BalanceTask.measure_height(initial_state, frame)
            self.tasks['posture'].set_target(self.q_init)
            self.tasks['balance'].set_target(self.height_reference)

        self.velocity_filter.reset()
        self.x_prev = np.zeros(self.layout.n_vars)
        self.tau_prev = np.zeros(len(self.layout.actuated))
        self.steps = 0

        # Statistics
        self.solve_count = 0
        self.total_solve_time = 0.0
        self.outcome_counts = {outcome: 0 for outcome in CycleOutcome}

    def set_task_weight(self, name: str, weight: float):
        """Set task weight; every task keeps its slot in the stack"""
        if name not in self.tasks:
            raise ValueError(f"Unknown task: {name}")
        if weight < 0.0:
            raise ValueError("Task weight must be non-negative")
        self.tasks[name].weight = weight

    def _compute_frame(self, state: RobotState, dq: np.ndarray) -> Frame0:
        rot = self.layout.indices('base_rotation')
        trans = self.layout.indices('base_translation')
        return compute_frame(
            state.base_rotation,
            state.q[trans],
            dq[trans],
            angular_velocity_local=dq[rot],
            use_measured_yaw_rate=self.config.use_measured_yaw_rate
        )

    def update(self, state: RobotState, target_position: np.ndarray) -> WBCResult:
        """
        Run one control cycle

        Args:
            state: Robot state for this cycle
            target_position: Hand target (yaw frame, relative to the base
                origin), applied to both hands

        Returns:
            WBCResult with torques for layout.actuated
        """
        target = np.asarray(target_position, dtype=float)
        if target.shape != (3,) or not np.all(np.isfinite(target)):
            raise ValueError("Target position must be a finite 3D vector")
        state.validate(self.layout)

        self.steps += 1

        dq = self.velocity_filter.add_sample(state.dq)
        frame = self._compute_frame(state, dq)

        # Task blocks
        self.tasks['limb_right'].set_target(target)
        self.tasks['limb_left'].set_target(target)
        blocks = [
            self.tasks[name].build(state, frame, dq)
            for name in self.TASK_ORDER
        ]
        P, b = stack_blocks(blocks)

        # Dynamics with rolling constraint
        M = state.mass_matrix
        h = state.bias_forces
        J_c = self.rolling_constraint.jacobian(frame.pitch)
        constraint = build_dynamics_constraint(M, h, J_c, self.layout)

        result: Optional[QPResult] = None
        if constraint.is_rank_deficient():
            outcome = CycleOutcome.HELD
        else:
            result = self.solver.solve(P, b, constraint, self.x_prev)
            outcome = self._accept(result, M, h, J_c)

        if result is not None:
            self.solve_count += 1
            self.total_solve_time += result.solve_time_ms
        self.outcome_counts[outcome] += 1

        telemetry = self._telemetry(frame, target, blocks, result, outcome)
        self._emit(telemetry)

        x = self.x_prev
        return WBCResult(
            joint_torques=self.tau_prev.copy(),
            joint_accelerations=x[:self.layout.n_dof].copy(),
            multipliers=x[self.layout.multipliers].copy(),
            outcome=outcome,
            solver_status=result.status if result is not None else None,
            solve_time_ms=result.solve_time_ms if result is not None else 0.0,
            telemetry=telemetry
        )

    def _accept(
        self,
        result: QPResult,
        M: np.ndarray,
        h: np.ndarray,
        J_c: np.ndarray
    ) -> CycleOutcome:
        """Classify a solve and commit it as warm start and torque output"""
        if not np.all(np.isfinite(result.x)):
            return CycleOutcome.FATAL

        tau = extract_torques(M, h, J_c, result.x, self.layout)
        if not np.all(np.isfinite(tau)):
            return CycleOutcome.FATAL

        self.x_prev = result.x.copy()
        self.tau_prev = tau

        if result.constraint_residual > self.config.solver.constraint_tol:
            return CycleOutcome.DEGRADED
        if result.status != SolveStatus.CONVERGED:
            return CycleOutcome.RECOVERABLE
        return CycleOutcome.NOMINAL

    def _telemetry(
        self,
        frame: Frame0,
        target: np.ndarray,
        blocks,
        result: Optional[QPResult],
        outcome: CycleOutcome
    ) -> CycleTelemetry:
        telemetry = CycleTelemetry(
            step=self.steps,
            time=self.steps / self.config.control_rate_hz,
            target=target.copy(),
            yaw=frame.yaw,
            pitch=frame.pitch,
            outcome=outcome,
            torques=self.tau_prev.copy()
        )
        if result is not None:
            if np.all(np.isfinite(result.x)):
                telemetry.task_losses = {
                    block.name: block.residual(result.x) for block in blocks
                }
            telemetry.objective = result.objective
            telemetry.constraint_residual = result.constraint_residual
            telemetry.solver_status = result.status.value
            telemetry.iterations = result.iterations
            telemetry.solve_time_ms = result.solve_time_ms
        return telemetry

    def _emit(self, telemetry: CycleTelemetry):
        outcome = telemetry.outcome
        if outcome == CycleOutcome.FATAL:
            logger.warning(f"Step {telemetry.step}: non-finite solution, holding previous torque")
        elif outcome == CycleOutcome.HELD:
            logger.warning(f"Step {telemetry.step}: rank-deficient dynamics constraint, holding previous torque")
        elif outcome == CycleOutcome.DEGRADED:
            logger.warning(
                f"Step {telemetry.step}: equality residual "
                f"{telemetry.constraint_residual:.3e} above tolerance"
            )

        if self.config.log_interval > 0 and telemetry.step % self.config.log_interval == 0:
            logger.debug(telemetry.summary())

        if self.telemetry_sink is not None:
            self.telemetry_sink(telemetry)

    def step(self, provider: DynamicsProvider, target_position: np.ndarray) -> WBCResult:
        """
        Read the state, run one cycle and command the actuators

        Args:
            provider: Dynamics provider and actuation interface
            target_position: Hand target

        Returns:
            WBCResult
        """
        state = provider.read_state()
        result = self.update(state, target_position)
        provider.apply_torques(self.layout.actuated, result.joint_torques)
        return result

    def get_statistics(self) -> Dict:
        """Get solver statistics"""
        return {
            'steps': self.steps,
            'solve_count': self.solve_count,
            'total_solve_time_ms': self.total_solve_time,
            'avg_solve_time_ms': (
                self.total_solve_time / self.solve_count
                if self.solve_count > 0 else 0.0
            ),
            'outcomes': {k.value: v for k, v in self.outcome_counts.items()}
        }
