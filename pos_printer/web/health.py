"""
Health endpoint for the POS printer agent.

This blueprint exposes `/healthz`, reporting:
- Overall status ("ok" or "degraded") and a short reason code
- Printer connection state and counters
- Queue size and in-flight jobs
- Realtime subscription state and retry counter

The agent runs on its own asyncio loop; the blueprint only reads the status
snapshot the agent assembles.
"""

from __future__ import annotations

import threading
from typing import Any

from flask import Blueprint, current_app

health_bp = Blueprint("health", __name__)


@health_bp.get("/healthz")
def healthz():
    agent = current_app.config.get("POSPRINTER_AGENT")
    if agent is None:
        return {"status": "degraded", "reason": "agent_not_running"}, 503
    try:
        status = agent.status()
    except Exception as e:
        return {"status": "degraded", "reason": f"status_failed: {type(e).__name__}"}, 500
    return status, 200


def start_health_server(agent: Any, host: str, port: int):
    """
    Serve the health app from a daemon thread. Returns the werkzeug server;
    call .shutdown() to stop it.
    """
    from werkzeug.serving import make_server

    from pos_printer import create_app

    app = create_app(agent)
    server = make_server(host, port, app)
    thread = threading.Thread(target=server.serve_forever, daemon=True, name="pos-printer-health")
    thread.start()
    app.logger.info(f"Health endpoint listening on http://{host}:{port}/healthz")
    return server
