"""
Tests for the whole-body controller session.
Run with: pytest tests/ -v
"""

import dataclasses
import logging
import numpy as np
import pytest
from pathlib import Path

from wheeled_wbc.utils.layout import KRANG_LAYOUT
from wheeled_wbc.utils.robot_model import DynamicsProvider
from wheeled_wbc.wbc import (
    WholeBodyController, WBCConfig, CycleOutcome, QPResult, QPSolverConfig,
    SolveStatus
)

from conftest import make_state

CONFIG_PATH = Path(__file__).parent.parent / "config" / "wbc.yaml"

HAND = np.array([0.4, 0.0, 0.8])


def with_mass_matrix(state, M):
    return dataclasses.replace(state, mass_matrix=M)


def fake_result(x, status, residual):
    return QPResult(
        x=x,
        objective=0.0,
        status=status,
        iterations=1,
        solve_time_ms=0.0,
        constraint_residual=residual
    )


class FakeProvider(DynamicsProvider):
    """Returns a fixed state and records commanded torques"""

    def __init__(self, state):
        self.state = state
        self.commands = []

    def read_state(self):
        return self.state

    def apply_torques(self, indices, torques):
        self.commands.append((np.array(indices), np.array(torques)))


class TestConstruction:
    """Test controller setup and validation."""

    def test_requires_initial_state(self):
        with pytest.raises(ValueError):
            WholeBodyController(None)

    def test_rejects_malformed_state(self, rest_state):
        bad = dataclasses.replace(rest_state, q=np.zeros(10))
        with pytest.raises(ValueError):
            WholeBodyController(bad)

    def test_records_references(self):
        state = make_state(com_offset=0.02)
        wbc = WholeBodyController(state)
        assert np.array_equal(wbc.q_init, state.q)
        assert wbc.height_reference == pytest.approx(0.6)
        assert np.array_equal(wbc.tasks['posture'].target_position, state.q)

    def test_task_order(self, rest_state):
        wbc = WholeBodyController(rest_state)
        assert list(wbc.tasks) == list(WholeBodyController.TASK_ORDER)

    def test_set_task_weight(self, rest_state):
        wbc = WholeBodyController(rest_state)
        wbc.set_task_weight('posture', 0.5)
        assert wbc.tasks['posture'].weight == 0.5
        with pytest.raises(ValueError):
            wbc.set_task_weight('swing', 1.0)
        with pytest.raises(ValueError):
            wbc.set_task_weight('posture', -1.0)


class TestControlCycle:
    """Test end-to-end control cycles."""

    def test_at_rest_needs_no_torque(self, rest_state):
        wbc = WholeBodyController(rest_state)
        result = wbc.update(rest_state, HAND)

        assert result.outcome in (CycleOutcome.NOMINAL, CycleOutcome.RECOVERABLE)
        assert result.joint_torques.shape == (19,)
        assert np.allclose(result.joint_torques, np.zeros(19), atol=1e-8)

    def test_forward_lean_drives_wheels(self):
        results = {}
        for offset in (0.05, -0.05):
            state = make_state(com_offset=offset)
            wbc = WholeBodyController(state)
            results[offset] = wbc.update(state, HAND)

        lean = results[0.05]
        tau = lean.joint_torques
        assert lean.telemetry.task_losses['balance'] < 37.5 ** 2
        assert np.all(np.abs(tau[:2]) > 1e-6)
        assert np.allclose(tau, -results[-0.05].joint_torques, rtol=1e-6, atol=1e-8)

    def test_equality_residual_within_tolerance(self, loaded_state):
        wbc = WholeBodyController(loaded_state)
        for _ in range(5):
            result = wbc.update(loaded_state, [0.5, 0.1, 0.9])
            assert result.telemetry.constraint_residual <= 1e-3
            assert result.outcome in (CycleOutcome.NOMINAL, CycleOutcome.RECOVERABLE)
            assert np.all(np.isfinite(result.joint_torques))

    def test_deterministic(self, loaded_state):
        runs = []
        for _ in range(2):
            wbc = WholeBodyController(loaded_state)
            runs.append([
                wbc.update(loaded_state, [0.5, 0.1, 0.9]).joint_torques
                for _ in range(3)
            ])
        for a, b in zip(*runs):
            assert np.array_equal(a, b)

    def test_heading_invariance(self):
        torques = []
        for heading in (0.0, 1.2):
            state = make_state(heading=heading, gravity=True, moving=True)
            wbc = WholeBodyController(state)
            torques.append(wbc.update(state, [0.5, -0.1, 0.7]).joint_torques)
        assert np.allclose(torques[0], torques[1], atol=1e-6)

    def test_velocities_filtered(self, loaded_state):
        wbc = WholeBodyController(loaded_state)
        wbc.update(loaded_state, HAND)
        wbc.update(loaded_state, HAND)
        assert len(wbc.velocity_filter.history) == 2
        assert np.allclose(wbc.velocity_filter.average, loaded_state.dq)

    def test_rejects_bad_target(self, rest_state):
        wbc = WholeBodyController(rest_state)
        with pytest.raises(ValueError):
            wbc.update(rest_state, [0.1, np.nan, 0.2])
        with pytest.raises(ValueError):
            wbc.update(rest_state, [0.1, 0.2])

    def test_rejects_non_finite_state(self, rest_state):
        wbc = WholeBodyController(rest_state)
        dq = rest_state.dq.copy()
        dq[3] = np.inf
        with pytest.raises(ValueError):
            wbc.update(dataclasses.replace(rest_state, dq=dq), HAND)


class TestCycleOutcomes:
    """Test failure classification and torque holding."""

    def test_rank_deficient_holds_torque(self, loaded_state, caplog):
        wbc = WholeBodyController(loaded_state)
        first = wbc.update(loaded_state, HAND)

        M = loaded_state.mass_matrix.copy()
        M[:6, :] = 0.0
        M[:, :6] = 0.0
        with caplog.at_level(logging.WARNING, logger="wheeled_wbc"):
            held = wbc.update(with_mass_matrix(loaded_state, M), HAND)

        assert held.outcome == CycleOutcome.HELD
        assert held.solver_status is None
        assert np.array_equal(held.joint_torques, first.joint_torques)
        assert wbc.solve_count == 1
        assert "rank-deficient" in caplog.text

    def test_non_finite_solution_is_fatal(self, loaded_state, monkeypatch):
        wbc = WholeBodyController(loaded_state)
        first = wbc.update(loaded_state, HAND)
        x_before = wbc.x_prev.copy()

        monkeypatch.setattr(
            wbc.solver, 'solve',
            lambda *args: fake_result(np.full(30, np.nan), SolveStatus.FAILED, np.nan)
        )
        result = wbc.update(loaded_state, HAND)

        assert result.outcome == CycleOutcome.FATAL
        assert np.array_equal(result.joint_torques, first.joint_torques)
        assert np.array_equal(wbc.x_prev, x_before)
        assert result.telemetry.task_losses == {}

    def test_residual_above_tolerance_is_degraded(self, rest_state, monkeypatch):
        wbc = WholeBodyController(rest_state)
        monkeypatch.setattr(
            wbc.solver, 'solve',
            lambda *args: fake_result(np.ones(30), SolveStatus.CONVERGED, 5.0)
        )
        result = wbc.update(rest_state, HAND)

        assert result.outcome == CycleOutcome.DEGRADED
        assert np.array_equal(wbc.x_prev, np.ones(30))
        assert not np.allclose(result.joint_torques, 0.0)

    def test_unconverged_is_recoverable(self, rest_state, monkeypatch):
        wbc = WholeBodyController(rest_state)
        monkeypatch.setattr(
            wbc.solver, 'solve',
            lambda *args: fake_result(np.zeros(30), SolveStatus.MAX_ITER, 0.0)
        )
        result = wbc.update(rest_state, HAND)
        assert result.outcome == CycleOutcome.RECOVERABLE
        assert result.solver_status == SolveStatus.MAX_ITER

    def test_deadline_uses_iterate(self, loaded_state):
        config = WBCConfig(solver=QPSolverConfig(max_solve_time=1e-9))
        wbc = WholeBodyController(loaded_state, config)
        result = wbc.update(loaded_state, [0.5, 0.1, 0.9])

        assert result.solver_status == SolveStatus.DEADLINE
        assert result.outcome in (CycleOutcome.RECOVERABLE, CycleOutcome.DEGRADED)
        assert np.all(np.isfinite(result.joint_torques))


class TestTelemetry:
    """Test per-cycle diagnostics."""

    def test_sink_receives_every_cycle(self, loaded_state):
        received = []
        wbc = WholeBodyController(loaded_state, telemetry_sink=received.append)
        for _ in range(3):
            wbc.update(loaded_state, HAND)

        assert [t.step for t in received] == [1, 2, 3]
        assert list(received[-1].task_losses) == list(WholeBodyController.TASK_ORDER)
        assert received[-1].time == pytest.approx(0.003)
        assert received[-1].outcome in (CycleOutcome.NOMINAL, CycleOutcome.RECOVERABLE)
        assert "step 3" in received[-1].summary()

    def test_statistics(self, loaded_state):
        wbc = WholeBodyController(loaded_state)
        wbc.update(loaded_state, HAND)
        wbc.update(loaded_state, HAND)
        stats = wbc.get_statistics()

        assert stats['steps'] == 2
        assert stats['solve_count'] == 2
        assert sum(stats['outcomes'].values()) == 2

    def test_reset(self, loaded_state):
        wbc = WholeBodyController(loaded_state)
        wbc.update(loaded_state, HAND)
        wbc.reset()

        assert wbc.steps == 0
        assert np.array_equal(wbc.tau_prev, np.zeros(19))
        assert np.array_equal(wbc.x_prev, np.zeros(30))
        assert len(wbc.velocity_filter.history) == 0


class TestProviderStep:
    """Test the read-solve-actuate cycle."""

    def test_step_applies_torques(self, loaded_state):
        provider = FakeProvider(loaded_state)
        wbc = WholeBodyController(loaded_state)
        result = wbc.step(provider, HAND)

        assert len(provider.commands) == 1
        indices, torques = provider.commands[0]
        assert np.array_equal(indices, KRANG_LAYOUT.actuated)
        assert np.array_equal(torques, result.joint_torques)


class TestConfiguration:
    """Test configuration loading."""

    def test_config_file_matches_defaults(self):
        config = WBCConfig.from_yaml(str(CONFIG_PATH))
        defaults = WBCConfig()

        assert config.default_weights == defaults.default_weights
        assert config.balance_axis_weights == defaults.balance_axis_weights
        assert np.array_equal(config.limb_gains.kp, defaults.limb_gains.kp)
        assert np.array_equal(config.balance_gains.kd, defaults.balance_gains.kd)
        assert config.solver == defaults.solver
        assert config.robot == defaults.robot

    def test_overrides(self, tmp_path):
        path = tmp_path / "wbc.yaml"
        path.write_text(
            "tasks:\n"
            "  weights:\n"
            "    posture: 0.5\n"
            "solver:\n"
            "  backend: osqp\n"
            "  max_solve_time: 0.002\n"
            "robot:\n"
            "  wheel_radius: 0.3\n"
        )
        config = WBCConfig.from_yaml(str(path))

        assert config.default_weights['posture'] == 0.5
        assert config.default_weights['balance'] == 1.0
        assert config.solver.backend == "osqp"
        assert config.solver.max_solve_time == 0.002
        assert config.robot.wheel_radius == 0.3

    @pytest.mark.parametrize("text", [
        "tasks:\n  weights:\n    swing: 1.0\n",
        "solver:\n  tolerance: 1.0\n",
        "tasks:\n  weights:\n    balance: -1.0\n",
    ])
    def test_invalid(self, tmp_path, text):
        path = tmp_path / "wbc.yaml"
        path.write_text(text)
        with pytest.raises(ValueError):
            WBCConfig.from_yaml(str(path))

    def test_osqp_backend_cycle(self, loaded_state):
        config = WBCConfig(solver=QPSolverConfig(backend="osqp"))
        wbc = WholeBodyController(loaded_state, config)
        result = wbc.update(loaded_state, [0.5, 0.1, 0.9])

        assert result.outcome in (CycleOutcome.NOMINAL, CycleOutcome.RECOVERABLE)
        assert np.all(np.isfinite(result.joint_torques))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
