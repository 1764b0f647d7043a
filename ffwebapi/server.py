"""Command entry point: load settings, start the workers and serve the API."""

from __future__ import annotations

import argparse
import logging
import signal
import threading

from werkzeug.serving import make_server

from . import config
from .api import create_app
from .config import ConfigError
from .manager import Manager
from .runner import Runner, RunnerError

log = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Run the service until SIGINT or SIGTERM; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="ffwebapi",
        description="HTTP API for queueing and running ffmpeg jobs.",
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    try:
        cfg = config.load()
    except (ConfigError, OSError) as exc:
        log.error("Failed to load configuration: %s", exc)
        return 1

    try:
        runner = Runner(cfg)
    except RunnerError as exc:
        log.error("Failed to initialize ffmpeg runner: %s", exc)
        return 1

    manager = Manager(cfg, runner)
    app = create_app(manager, cfg)
    try:
        server = make_server("0.0.0.0", int(cfg.port), app, threaded=True)
    except (OSError, ValueError) as exc:
        log.error("listen: %s", exc)
        return 1

    stop = threading.Event()
    previous: dict[int, object] = {}

    def restore_handlers() -> None:
        for sig, handler in previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)

    def request_stop(signum, frame) -> None:
        stop.set()
        restore_handlers()

    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, request_stop)

    manager.start()
    serving = threading.Thread(target=server.serve_forever, daemon=True)
    log.info("Server starting on port %s", cfg.port)
    serving.start()

    try:
        while not stop.wait(0.5):
            pass
    finally:
        restore_handlers()

    log.info("Shutting down gracefully, press Ctrl+C again to force")
    server.shutdown()
    serving.join(timeout=5)
    server.server_close()
    manager.stop()
    log.info("Server exiting")
    return 0