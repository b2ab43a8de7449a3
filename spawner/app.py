"""Flask application that reports launch progress of the agent spawner."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from flask import Flask, jsonify
from werkzeug.serving import BaseWSGIServer, make_server

from .scheduler import LaunchScheduler

LOGGER = logging.getLogger(__name__)


# Application factory -------------------------------------------------------

def create_app(scheduler: LaunchScheduler) -> Flask:
    app = Flask(__name__)
    app.extensions["launch_scheduler"] = scheduler

    def runtime() -> LaunchScheduler:
        return app.extensions["launch_scheduler"]

    @app.route("/")
    def index():
        snap = runtime().snapshot()
        body = f"spawner running. launched={snap.launched}, alive={snap.alive}, finished={snap.finished}"
        return body, 200, {"Content-Type": "text/plain; charset=utf-8"}

    @app.route("/status")
    def status():
        return jsonify(runtime().snapshot().as_dict())

    @app.route("/agents")
    def agents():
        return jsonify(runtime().agents())

    return app


class StatusServer:
    """Serves the status app from a background thread."""

    def __init__(self, app: Flask, host: str = "0.0.0.0", port: int = 3000) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._server: Optional[BaseWSGIServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._server = make_server(self.host, self.port, self.app, threaded=True)
        self.port = self._server.server_port
        self._thread = threading.Thread(target=self._server.serve_forever, name="status-server", daemon=True)
        self._thread.start()
        LOGGER.info("Health server on http://%s:%s", self.host, self.port)

    def shutdown(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None


__all__ = ["StatusServer", "create_app"]
