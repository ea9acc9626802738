#!/usr/bin/env python3
"""
Equality-constrained least-squares solver for the whole-body QP

    min_x  0.5 * ||P x - b||^2
    s.t.   A_eq x = b_eq

Solved with SciPy SLSQP (default) or OSQP, warm-started from the previous
cycle's solution.
"""

import numpy as np
import osqp
from scipy import sparse
from scipy.optimize import minimize
from dataclasses import dataclass
from enum import Enum
from typing import Optional
import logging
import time

from .constraints import EqualityConstraint

logger = logging.getLogger(__name__)


class SolverBackend(Enum):
    SLSQP = "slsqp"
    OSQP = "osqp"


class SolveStatus(Enum):
    """Solver termination status"""
    CONVERGED = "converged"   # Step tolerance met with feasible iterate
    MAX_ITER = "max_iter"     # Iteration limit or inaccurate solution
    DEADLINE = "deadline"     # Wall-clock deadline exceeded
    FAILED = "failed"         # Solver reported an error


@dataclass
class QPSolverConfig:
    """QP solver configuration"""
    backend: str = "slsqp"
    xtol_rel: float = 1e-3         # Relative step tolerance
    ftol: float = 1e-9             # SLSQP objective/feasibility accuracy
    constraint_tol: float = 1e-3   # Accepted equality residual
    max_iter: int = 100
    max_solve_time: Optional[float] = None  # Seconds, None disables

    # OSQP only
    eps_abs: float = 1e-6
    eps_rel: float = 1e-6
    osqp_max_iter: int = 4000

    def __post_init__(self):
        # Raises ValueError on unknown backends
        SolverBackend(self.backend)
        if self.max_solve_time is not None and self.max_solve_time <= 0.0:
            raise ValueError("max_solve_time must be positive or None")
        if self.max_iter <= 0:
            raise ValueError("max_iter must be positive")


@dataclass
class QPResult:
    """QP solution"""
    x: np.ndarray
    objective: float
    status: SolveStatus
    iterations: int
    solve_time_ms: float
    constraint_residual: float


class _Halt(Exception):
    """Stops SLSQP from inside its iteration callback"""

    def __init__(self, status: SolveStatus):
        super().__init__(status.value)
        self.status = status


class QPSolver:
    """
    Warm-started solver for the stacked task objective

    The objective gradient P'(P x - b) and the constant constraint Jacobian
    A_eq are supplied analytically. Non-convergence is not an error: the
    last iterate is always returned together with its status.
    """

    def __init__(self, n_vars: int, config: QPSolverConfig = None):
        """
        Initialize solver

        Args:
            n_vars: Dimension of the optimization variable
            config: Solver configuration
        """
        self.n_vars = n_vars
        self.config = config or QPSolverConfig()
        self.backend = SolverBackend(self.config.backend)

    def solve(
        self,
        P: np.ndarray,
        b: np.ndarray,
        constraint: EqualityConstraint,
        x0: np.ndarray
    ) -> QPResult:
        """
        Solve the equality-constrained least-squares problem

        Args:
            P: Stacked task matrix (rows x n_vars)
            b: Stacked task vector (rows)
            constraint: Equality constraint A_eq x = b_eq
            x0: Initial iterate (previous solution)

        Returns:
            QPResult
        """
        if P.shape[1] != self.n_vars or constraint.A.shape[1] != self.n_vars:
            raise ValueError(
                f"Objective and constraint must have {self.n_vars} columns"
            )

        start_time = time.perf_counter()

        if self.backend == SolverBackend.OSQP:
            x, status, iterations = self._solve_osqp(P, b, constraint, x0)
        else:
            x, status, iterations = self._solve_slsqp(
                P, b, constraint, x0, start_time
            )

        solve_time = (time.perf_counter() - start_time) * 1000

        r = P @ x - b
        return QPResult(
            x=x,
            objective=0.5 * float(r @ r),
            status=status,
            iterations=iterations,
            solve_time_ms=solve_time,
            constraint_residual=constraint.residual(x)
        )

    def _solve_slsqp(
        self,
        P: np.ndarray,
        b: np.ndarray,
        constraint: EqualityConstraint,
        x0: np.ndarray,
        start_time: float
    ):
        """Solve with SciPy's sequential least-squares programming"""
        cfg = self.config
        deadline = (
            start_time + cfg.max_solve_time
            if cfg.max_solve_time is not None else None
        )
        last = {'x': np.array(x0, dtype=float), 'iterations': 0}

        def objective(x):
            r = P @ x - b
            return 0.5 * (r @ r), P.T @ r

        def callback(xk):
            step = np.linalg.norm(xk - last['x'])
            last['x'] = np.array(xk, dtype=float)
            last['iterations'] += 1

            if deadline is not None and time.perf_counter() > deadline:
                raise _Halt(SolveStatus.DEADLINE)
            if (step <= cfg.xtol_rel * np.linalg.norm(xk)
                    and constraint.residual(xk) <= cfg.constraint_tol):
                raise _Halt(SolveStatus.CONVERGED)

        eq = {
            'type': 'eq',
            'fun': lambda x: constraint.A @ x - constraint.b,
            'jac': lambda x: constraint.A
        }

        try:
            result = minimize(
                objective,
                last['x'],
                jac=True,
                method='SLSQP',
                constraints=[eq],
                callback=callback,
                options={'maxiter': cfg.max_iter, 'ftol': cfg.ftol}
            )
        except _Halt as halt:
            return last['x'], halt.status, last['iterations']

        if result.success:
            status = SolveStatus.CONVERGED
        elif result.status == 9:
            status = SolveStatus.MAX_ITER
        else:
            logger.debug(f"SLSQP exited with mode {result.status}: {result.message}")
            status = SolveStatus.FAILED

        return np.asarray(result.x, dtype=float), status, int(result.nit)

    def _solve_osqp(
        self,
        P: np.ndarray,
        b: np.ndarray,
        constraint: EqualityConstraint,
        x0: np.ndarray
    ):
        """Solve with OSQP (l = u = b_eq)"""
        cfg = self.config

        H = sparse.triu(P.T @ P, format='csc')
        q = -P.T @ b
        A = sparse.csc_matrix(constraint.A)

        settings = {
            'verbose': False,
            'eps_abs': cfg.eps_abs,
            'eps_rel': cfg.eps_rel,
            'max_iter': cfg.osqp_max_iter
        }
        if cfg.max_solve_time is not None:
            settings['time_limit'] = cfg.max_solve_time

        solver = osqp.OSQP()
        solver.setup(P=H, q=q, A=A, l=constraint.b, u=constraint.b, **settings)
        solver.warm_start(x=np.asarray(x0, dtype=float))

        result = solver.solve()
        status_name = str(result.info.status)
        iterations = int(result.info.iter)

        if status_name == 'solved':
            status = SolveStatus.CONVERGED
        elif status_name in ('solved inaccurate', 'maximum iterations reached'):
            status = SolveStatus.MAX_ITER
        elif status_name == 'run time limit reached':
            status = SolveStatus.DEADLINE
        else:
            logger.debug(f"OSQP exited with status '{status_name}'")
            status = SolveStatus.FAILED

        if status == SolveStatus.FAILED or result.x is None:
            return np.full(self.n_vars, np.nan), SolveStatus.FAILED, iterations

        return np.asarray(result.x, dtype=float), status, iterations
