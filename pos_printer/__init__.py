"""
POS printer agent package

Background worker that prints receipt jobs from a Supabase ledger on a USB
ESC/POS thermal printer. The agent itself lives in pos_printer.agent; this
module provides the small Flask application factory behind the optional
health endpoint.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from flask import Flask

__version__ = "1.0.0"


def create_app(agent: Optional[Any] = None, config_overrides: Optional[dict] = None) -> Flask:
    """
    Application factory for the health endpoint.

    Parameters:
    - agent: the running PrinterAgent (anything exposing status() works)
    - config_overrides: values to inject into app.config after defaults

    Returns:
    - Flask app instance
    """
    from pos_printer.web.health import health_bp

    app = Flask("pos_printer")
    app.config["POSPRINTER_AGENT"] = agent
    app.url_map.strict_slashes = False
    app.register_blueprint(health_bp)

    # Make Flask's app logger propagate to root (avoid double formatting)
    flask_logger = logging.getLogger("flask.app")
    flask_logger.handlers = []
    flask_logger.propagate = True

    if config_overrides:
        app.config.update(config_overrides)
    return app


__all__ = ["__version__", "create_app"]
