"""Launcher that spawns the agents described in launcher.ini and serves their status."""

from __future__ import annotations

import logging
import signal
import time
from pathlib import Path

from spawner.app import StatusServer, create_app
from spawner.proc import process_handle_factory
from spawner.scheduler import LaunchScheduler
from spawner.utils import ConfigError, LauncherConfig, load_launcher_config

LOGGER = logging.getLogger("launcher")


def build_scheduler(config: LauncherConfig) -> LaunchScheduler:
    return LaunchScheduler(
        total=config.total,
        concurrency_limit=config.max_concurrent,
        stagger_interval=config.stagger_seconds,
        settle_delay=config.settle_seconds,
        spawn=process_handle_factory(config.agent_target, config.agent_params),
    )


def _interrupt(signum, frame) -> None:
    raise KeyboardInterrupt


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    path = Path("config/launcher.ini")
    if not path.exists():
        raise SystemExit("launcher.ini not found in config directory")
    try:
        config = load_launcher_config(path)
    except ConfigError as exc:
        raise SystemExit(f"Invalid launcher.ini: {exc}") from exc

    scheduler = build_scheduler(config)
    server = StatusServer(create_app(scheduler), host=config.host, port=config.port)
    server.start()
    signal.signal(signal.SIGTERM, _interrupt)
    scheduler.serve_in_thread()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        LOGGER.info("Shutting down")
        scheduler.shutdown()
        server.shutdown()


if __name__ == "__main__":
    main()
