"""REST and Server-Sent Events routes for test runs."""
from __future__ import annotations

import logging
from typing import Optional

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context
from jsonschema import ValidationError

from runner_mvp.loader import parse_suite
from runner_mvp.models import Run

from ..utils.serializers import (
    create_error_response,
    create_run_response,
    create_snapshot_response,
    create_success_response,
    format_sse,
)

LOGGER = logging.getLogger("runner.api")

KEEPALIVE_SECONDS = 15.0

runs_api_bp = Blueprint("runs_api", __name__)


def get_orchestrator():
    return current_app.config["RUNNER_ORCHESTRATOR"]


def _subscriber_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.args.get("token")


@runs_api_bp.route("/runs", methods=["POST"])
def start_run():
    """Create a run from a suite payload and start it."""
    try:
        data = request.get_json(silent=True)
        if not data:
            return jsonify(create_error_response("INVALID_REQUEST", "Request body must be a JSON object")), 400

        suite = parse_suite(data)
        cases = suite.test_cases
        case_ids = data.get("caseIds")
        if case_ids:
            wanted = {str(case_id) for case_id in case_ids}
            cases = [case for case in cases if case.id in wanted]
            if len(cases) != len(wanted):
                return jsonify(create_error_response("UNKNOWN_TEST_CASE", "caseIds references unknown test cases")), 400

        run = Run.create(suite.project, cases, suite.config)
        LOGGER.info("Starting run %s for project %s with %d cases", run.id, run.project_ref, len(cases))
        orchestrator = get_orchestrator()
        orchestrator.start_run(run)
        snapshot = orchestrator.get_run(run.id) or run
        return jsonify(create_run_response(snapshot)), 202

    except ValidationError as exc:
        LOGGER.warning("Rejected suite: %s", exc.message)
        return jsonify(create_error_response("INVALID_SUITE", exc.message)), 400
    except ValueError as exc:
        LOGGER.warning("Rejected run config: %s", exc)
        return jsonify(create_error_response("INVALID_CONFIG", str(exc))), 400
    except Exception as exc:
        LOGGER.error("Failed to start run: %s", exc)
        return jsonify(create_error_response("INTERNAL_ERROR", "Internal server error")), 500


@runs_api_bp.route("/runs/<run_id>", methods=["GET"])
def get_run(run_id: str):
    try:
        snapshot = get_orchestrator().get_run_snapshot(run_id)
        if snapshot is None:
            return jsonify(create_error_response("RUN_NOT_FOUND", f"Run not found: {run_id}")), 404
        return jsonify(create_snapshot_response(snapshot))

    except Exception as exc:
        LOGGER.error("Failed to read run %s: %s", run_id, exc)
        return jsonify(create_error_response("INTERNAL_ERROR", "Internal server error")), 500


@runs_api_bp.route("/runs/<run_id>/cancel", methods=["POST"])
def cancel_run(run_id: str):
    try:
        orchestrator = get_orchestrator()
        if orchestrator.cancel_run(run_id):
            return jsonify(create_success_response({"runId": run_id, "cancelled": True}))

        snapshot = orchestrator.get_run_snapshot(run_id)
        if snapshot is None:
            return jsonify(create_error_response("RUN_NOT_FOUND", f"Run not found: {run_id}")), 404
        return jsonify(
            create_error_response("RUN_NOT_CANCELLABLE", f"Run {run_id} is already {snapshot['status']}")
        ), 409

    except Exception as exc:
        LOGGER.error("Failed to cancel run %s: %s", run_id, exc)
        return jsonify(create_error_response("INTERNAL_ERROR", "Internal server error")), 500


@runs_api_bp.route("/runs/<run_id>/stream", methods=["GET"])
def stream_run(run_id: str):
    """Stream run events as Server-Sent Events until the run reaches a terminal state."""
    authorize = current_app.config.get("RUNNER_AUTHORIZE_SUBSCRIBER")
    if authorize is not None and not authorize(_subscriber_token(), run_id):
        return jsonify(create_error_response("FORBIDDEN", "Not allowed to observe this run")), 403

    try:
        subscription = get_orchestrator().subscribe(run_id)
    except KeyError:
        return jsonify(create_error_response("RUN_NOT_FOUND", f"Run not found: {run_id}")), 404

    LOGGER.info("Subscriber attached to run %s", run_id)

    def generate():
        try:
            while True:
                event = subscription.get(timeout=KEEPALIVE_SECONDS)
                if event is None:
                    if subscription.closed:
                        break
                    yield ": keep-alive\n\n"
                    continue
                yield format_sse(event)
        finally:
            subscription.close()
            LOGGER.info("Subscriber detached from run %s", run_id)

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
