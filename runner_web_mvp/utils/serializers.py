"""Response envelope and event framing helpers for the runner HTTP API."""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from runner_mvp.events import RunEvent
from runner_mvp.models import Run, RunStatus


def create_success_response(data: Any = None, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build a success envelope."""
    response = {
        "success": True,
        "data": data,
        "error": None,
        "meta": meta or {},
    }
    return response


def create_error_response(code: str, message: str, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Build an error envelope."""
    response = {
        "success": False,
        "data": None,
        "error": {
            "code": code,
            "message": message,
        },
        "meta": meta or {},
    }
    return response


def create_run_response(run: Run) -> Dict[str, Any]:
    return create_snapshot_response(run.to_dict())


def create_snapshot_response(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    return create_success_response(snapshot, meta={"terminal": RunStatus(snapshot["status"]).is_terminal})


def format_sse(event: RunEvent) -> str:
    """One Server-Sent Events frame carrying the event as JSON."""
    return f"event: {event.type}\ndata: {json.dumps(event.to_dict(), ensure_ascii=False)}\n\n"
