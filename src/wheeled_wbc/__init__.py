"""
Wheeled Humanoid Whole-Body Control
===================================

Per-cycle whole-body torque control for a two-wheeled, floating-base
humanoid: balance on the wheels while tracking a hand target.
"""

__version__ = "0.1.0"
