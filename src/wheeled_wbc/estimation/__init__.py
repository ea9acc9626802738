"""
State filtering modules
"""

from .velocity_filter import VelocityFilter

__all__ = ['VelocityFilter']
