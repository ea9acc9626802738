#!/usr/bin/env python3
"""
Generalized-coordinate layout
Named joint groups and their index ranges in q, dq and the QP variable
"""

import numpy as np
from dataclasses import dataclass, field
from typing import Dict, Tuple


@dataclass(frozen=True)
class CoordinateLayout:
    """
    Generalized-coordinate layout of a wheeled humanoid

    Every component (tasks, constraints, torque extraction) indexes q, dq,
    M and h through the named groups below instead of raw offsets.

    The QP variable is x = [ddq (n_dof), lambda (n_constraints)].
    """
    groups: Dict[str, Tuple[int, int]] = field(default_factory=lambda: {
        'base_rotation': (0, 3),
        'base_translation': (3, 6),
        'wheels': (6, 8),
        'waist': (8, 9),
        'torso': (9, 10),
        'head': (10, 11),
        'left_arm': (11, 18),
        'right_arm': (18, 25),
    })
    n_constraints: int = 5

    # Index of the base rotation coordinate that carries the body pitch
    base_pitch_index: int = 0

    @property
    def n_dof(self) -> int:
        """Number of generalized coordinates"""
        return max(stop for _, stop in self.groups.values())

    @property
    def n_vars(self) -> int:
        """Dimension of the QP variable"""
        return self.n_dof + self.n_constraints

    @property
    def base(self) -> np.ndarray:
        """Unactuated floating-base coordinates"""
        return self.indices('base_rotation', 'base_translation')

    @property
    def actuated(self) -> np.ndarray:
        """All non-base coordinates (wheels, waist, torso, head, arms)"""
        base = set(self.base.tolist())
        return np.array([i for i in range(self.n_dof) if i not in base])

    @property
    def upper_body(self) -> np.ndarray:
        """Actuated coordinates above the wheels"""
        return self.indices('waist', 'torso', 'head', 'left_arm', 'right_arm')

    @property
    def multipliers(self) -> slice:
        """Slice of the constraint-force multipliers in the QP variable"""
        return slice(self.n_dof, self.n_vars)

    def indices(self, *names: str) -> np.ndarray:
        """Sorted coordinate indices covered by the given groups"""
        idx = []
        for name in names:
            if name not in self.groups:
                raise ValueError(f"Unknown joint group: {name}")
            start, stop = self.groups[name]
            idx.extend(range(start, stop))
        return np.array(sorted(set(idx)), dtype=int)

    def column_mask(self, *names: str, base_pitch: bool = False) -> np.ndarray:
        """
        Boolean mask over the n_dof columns

        Args:
            names: Joint groups to keep
            base_pitch: Also keep the base pitch column

        Returns:
            Mask of shape (n_dof,)
        """
        mask = np.zeros(self.n_dof, dtype=bool)
        if names:
            mask[self.indices(*names)] = True
        if base_pitch:
            mask[self.base_pitch_index] = True
        return mask

    def pad(self, matrix: np.ndarray) -> np.ndarray:
        """Append zero multiplier columns to an (m x n_dof) matrix"""
        matrix = np.atleast_2d(matrix)
        if matrix.shape[1] != self.n_dof:
            raise ValueError(
                f"Expected {self.n_dof} columns, got {matrix.shape[1]}"
            )
        return np.hstack([matrix, np.zeros((matrix.shape[0], self.n_constraints))])

    def group_weights(self, weights: Dict[str, float]) -> np.ndarray:
        """
        Expand per-group weights into a diagonal over the QP variable

        Groups not listed (and all multipliers) get zero weight. The key
        'base_pitch' addresses the single base pitch coordinate.
        """
        w = np.zeros(self.n_vars)
        for name, value in weights.items():
            if value < 0.0:
                raise ValueError(f"Weight for '{name}' must be non-negative")
            if name == 'base_pitch':
                w[self.base_pitch_index] = value
            else:
                w[self.indices(name)] = value
        return w


KRANG_LAYOUT = CoordinateLayout()
