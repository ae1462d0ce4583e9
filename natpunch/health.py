"""
Liveness endpoint for deployment health checks.

Plain-text "OK" on a TCP port of its own, served from a daemon thread.
It reads no broker state.
"""

import logging
import threading
from typing import Optional

from flask import Flask, Response

logger = logging.getLogger("natpunch.health")

HEALTH_BODY = "OK"


def create_app() -> Flask:
    """Build the health check app."""
    app = Flask("natpunch.health")

    @app.route("/")
    @app.route("/health")
    def health():
        """Health check endpoint."""
        return Response(HEALTH_BODY, status=200, mimetype="text/plain")

    return app


def run_health_server(host: str, port: int, app: Optional[Flask] = None) -> bool:
    """
    Run the Flask health server (blocks).

    Returns False if the listener could not be started. The broker keeps
    running without it.
    """
    app = app or create_app()
    logger.info(f"[HEALTH] Starting health endpoint on http://{host}:{port}/health")
    try:
        app.run(host=host, port=port, threaded=True, use_reloader=False)
    except (OSError, SystemExit) as e:
        # werkzeug exits instead of raising when the port is taken
        logger.error(f"[HEALTH] Health server on {host}:{port} failed: {e}")
        return False
    return True


def start_health_server(host: str, port: int) -> threading.Thread:
    """Start the health server in a background thread."""
    thread = threading.Thread(
        target=run_health_server,
        args=(host, port),
        name="natpunch-health",
        daemon=True,
    )
    thread.start()
    return thread
