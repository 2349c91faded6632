"""Flask application exposing the test runner over HTTP."""
from __future__ import annotations

import atexit
import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify

from runner_mvp.orchestrator import RunOrchestrator
from runner_mvp.settings import RunnerSettings
from runner_mvp.store import JsonRunStore

from .routes.runs_api import runs_api_bp
from .utils.serializers import create_success_response


def setup_logging(debug: bool = False, log_dir: Path = Path("log")) -> None:
    """Console logging plus a daily rotated file under ``log_dir``."""
    log_dir.mkdir(exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level)

    file_handler = TimedRotatingFileHandler(
        log_dir / "runner-web.log",
        when="midnight",
        encoding="utf-8",
        backupCount=7,
    )
    file_handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
    logging.getLogger().addHandler(file_handler)


def create_app(
    orchestrator: Optional[RunOrchestrator] = None,
    authorize_subscriber: Optional[Callable[[Optional[str], str], bool]] = None,
    debug: bool = False,
    log_dir: Optional[Path] = Path("log"),
) -> Flask:
    """Create the Flask app.

    ``authorize_subscriber(token, run_id)`` guards the event stream; when omitted
    every subscriber is allowed. Pass ``log_dir=None`` to skip file logging.
    """
    app = Flask(__name__)
    app.config["DEBUG"] = debug

    if log_dir is not None:
        setup_logging(debug, log_dir)

    if orchestrator is None:
        settings = RunnerSettings.from_env()
        orchestrator = RunOrchestrator(store=JsonRunStore(settings.output_root), settings=settings)
    app.config["RUNNER_ORCHESTRATOR"] = orchestrator
    app.config["RUNNER_AUTHORIZE_SUBSCRIBER"] = authorize_subscriber

    app.register_blueprint(runs_api_bp, url_prefix="/api")

    @app.route("/health")
    def health():
        return jsonify(create_success_response({"status": "ok"}))

    return app


def main() -> None:
    load_dotenv()
    debug = "--debug" in sys.argv
    app = create_app(debug=debug)
    atexit.register(app.config["RUNNER_ORCHESTRATOR"].shutdown, False)

    port = 5120
    if "--port" in sys.argv:
        port_index = sys.argv.index("--port")
        if port_index + 1 < len(sys.argv):
            port = int(sys.argv[port_index + 1])

    print(f"Test runner API: http://localhost:{port}")
    print("Press Ctrl+C to stop")

    app.run(host="0.0.0.0", port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
