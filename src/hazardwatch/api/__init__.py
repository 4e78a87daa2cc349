"""
Health endpoints served alongside the worker.
"""

from .server import HealthResponse, create_app, overall_status

__all__ = ["HealthResponse", "create_app", "overall_status"]
