"""
Web package for the POS printer agent (health endpoint only).
"""

from .health import health_bp, start_health_server

__all__ = ["health_bp", "start_health_server"]
