#!/usr/bin/env python3
"""
Moving-average velocity filter
Smooths measured generalized velocities before they enter the controller
"""

import numpy as np
from collections import deque


class VelocityFilter:
    """
    Moving average over the most recent velocity samples

    Jacobian-derivative products and derivative gains amplify encoder
    noise, so the controller works with the window mean.
    """

    def __init__(
        self,
        dim: int,
        window_size: int = 100,
        rate_hz: float = 1000.0
    ):
        """
        Initialize filter

        Args:
            dim: Sample dimension
            window_size: Number of samples kept
            rate_hz: Rate at which samples arrive
        """
        if dim <= 0:
            raise ValueError("Filter dimension must be positive")
        if window_size <= 0:
            raise ValueError("Filter window must hold at least one sample")
        if rate_hz <= 0.0:
            raise ValueError("Sample rate must be positive")

        self.dim = dim
        self.window_size = window_size
        self.rate_hz = rate_hz

        self.history = deque(maxlen=window_size)
        self.average = np.zeros(dim)

    @property
    def window_duration(self) -> float:
        """Time span covered by a full window (seconds)"""
        return self.window_size / self.rate_hz

    @property
    def is_full(self) -> bool:
        return len(self.history) == self.window_size

    def add_sample(self, sample: np.ndarray) -> np.ndarray:
        """
        Append a sample and refresh the average

        Args:
            sample: Velocity sample of shape (dim,)

        Returns:
            Updated average
        """
        sample = np.asarray(sample, dtype=float)
        if sample.shape != (self.dim,):
            raise ValueError(
                f"Expected sample of shape ({self.dim},), got {sample.shape}"
            )

        self.history.append(sample.copy())
        self.average = np.mean(self.history, axis=0)

        return self.average

    def reset(self):
        """Clear sample history"""
        self.history.clear()
        self.average = np.zeros(self.dim)
