"""
Core middleware exports.

This module provides centralized access to all middleware components.
"""

from .timing import TimingMiddleware

__all__ = ["TimingMiddleware"]
