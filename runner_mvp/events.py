"""Progress events broadcast while a run executes.

Events are transient notifications, never persisted. Their ``to_dict`` output is
the JSON shape subscribers receive on the wire.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Optional

from .models import CaseResult, CaseStatus


@dataclass(frozen=True)
class RunEvent:
    """Base class of the event union."""

    run_id: str
    type: ClassVar[str] = ""
    terminal: ClassVar[bool] = False

    def to_dict(self) -> Dict[str, Any]:
        payload = {"type": self.type, "runId": self.run_id}
        payload.update(self._payload())
        return payload

    def _payload(self) -> Dict[str, Any]:
        return {}


@dataclass(frozen=True)
class StartedEvent(RunEvent):
    run: Dict[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "started"

    def _payload(self) -> Dict[str, Any]:
        return {"testRun": self.run}


@dataclass(frozen=True)
class ProgressEvent(RunEvent):
    completed: int = 0
    total: int = 0
    type: ClassVar[str] = "progress"

    def _payload(self) -> Dict[str, Any]:
        return {"completed": self.completed, "total": self.total}


@dataclass(frozen=True)
class CaseCompletedEvent(RunEvent):
    case_id: str = ""
    title: str = ""
    result: Optional[CaseResult] = None
    type: ClassVar[str] = "test_completed"

    def _payload(self) -> Dict[str, Any]:
        result = self.result
        return {
            "caseId": self.case_id,
            "result": {
                "title": self.title,
                "status": "PASSED" if result and result.status == CaseStatus.PASS else "FAILED",
                "duration": result.duration_ms if result else 0,
                "message": result.message if result else None,
                "error": result.error if result else None,
            },
        }


@dataclass(frozen=True)
class CompletedEvent(RunEvent):
    run: Dict[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "completed"
    terminal: ClassVar[bool] = True

    def _payload(self) -> Dict[str, Any]:
        return {"testRun": self.run}


@dataclass(frozen=True)
class CancelledEvent(RunEvent):
    run: Dict[str, Any] = field(default_factory=dict)
    type: ClassVar[str] = "cancelled"
    terminal: ClassVar[bool] = True

    def _payload(self) -> Dict[str, Any]:
        return {"testRun": self.run}


@dataclass(frozen=True)
class ErrorEvent(RunEvent):
    message: str = ""
    type: ClassVar[str] = "error"
    terminal: ClassVar[bool] = True

    def _payload(self) -> Dict[str, Any]:
        return {"message": self.message}
