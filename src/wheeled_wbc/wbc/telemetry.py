#!/usr/bin/env python3
"""
Per-cycle controller telemetry
"""

import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict


class CycleOutcome(Enum):
    """Classification of a control cycle"""
    NOMINAL = "nominal"          # Converged, constraint satisfied
    RECOVERABLE = "recoverable"  # Not converged or deadline hit, iterate used
    DEGRADED = "degraded"        # Equality residual above tolerance, used
    FATAL = "fatal"              # Non-finite solution, previous torque held
    HELD = "held"                # Rank-deficient constraint, solve skipped


@dataclass
class CycleTelemetry:
    """Structured diagnostics emitted once per control cycle"""
    step: int
    time: float
    target: np.ndarray
    yaw: float
    pitch: float
    task_losses: Dict[str, float] = field(default_factory=dict)
    objective: float = 0.0
    constraint_residual: float = 0.0
    solver_status: str = ""
    iterations: int = 0
    solve_time_ms: float = 0.0
    outcome: CycleOutcome = CycleOutcome.NOMINAL
    torques: np.ndarray = None

    def summary(self) -> str:
        """One-line human-readable summary"""
        losses = ", ".join(f"{k}={v:.3e}" for k, v in self.task_losses.items())
        return (
            f"step {self.step} [{self.outcome.value}/{self.solver_status}] "
            f"iter={self.iterations} t={self.solve_time_ms:.2f}ms "
            f"eq={self.constraint_residual:.2e} | {losses}"
        )


TelemetrySink = Callable[[CycleTelemetry], None]
