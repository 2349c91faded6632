"""Data models for the natural-language test runner."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

MAX_CONCURRENCY = 20


class ActionType(str, Enum):
    """Executable action a free-text step is classified into."""

    NAVIGATE = "navigate"
    CLICK = "click"
    TYPE = "type"
    SELECT = "select"
    SCROLL = "scroll"
    HOVER = "hover"
    WAIT = "wait"
    ASSERT = "assert"


@dataclass(frozen=True)
class ParsedStep:
    """Typed form of a single free-text instruction."""

    action: ActionType
    original_text: str
    target: Optional[str] = None
    value: Optional[str] = None
    timeout_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "target": self.target,
            "value": self.value,
            "timeout": self.timeout_ms,
            "originalStep": self.original_text,
        }


@dataclass(frozen=True)
class TestCase:
    """A test case as handed over by the owning collaborator. Read-only."""

    __test__ = False

    id: str
    title: str
    steps: List[str] = field(default_factory=list)
    expected_result: str = ""
    description: str = ""


class CaseStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"


@dataclass(frozen=True)
class CaseResult:
    """Outcome of exactly one test case execution."""

    status: CaseStatus
    message: str
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    logs: List[str] = field(default_factory=list)
    error: Optional[str] = None
    screenshot: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == CaseStatus.PASS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "duration": self.duration_ms,
            "message": self.message,
            "error": self.error,
            "screenshot": self.screenshot,
            "logs": list(self.logs),
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat(),
        }


@dataclass(frozen=True)
# pylint: disable=too-many-instance-attributes
class RunConfig:
    """Validated run configuration.

    ``concurrency`` below 1 is rejected; values above ``MAX_CONCURRENCY`` are clamped.
    """

    concurrency: int = 4
    environment: str = "staging"
    timeout_ms: int = 300_000
    ai_optimization: bool = False
    base_url: Optional[str] = None
    suite: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.concurrency, bool) or not isinstance(self.concurrency, int):
            raise ValueError(f"concurrency must be an integer, got {self.concurrency!r}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.concurrency > MAX_CONCURRENCY:
            object.__setattr__(self, "concurrency", MAX_CONCURRENCY)
        if not isinstance(self.timeout_ms, int) or self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be a positive integer, got {self.timeout_ms!r}")
        if not self.environment:
            raise ValueError("environment must not be empty")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parallel": self.concurrency,
            "environment": self.environment,
            "aiOptimization": self.ai_optimization,
            "baseUrl": self.base_url,
            "suite": self.suite,
            "timeout": self.timeout_ms,
        }


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


@dataclass
class RunResults:
    """Running aggregate of a run. ``passed + failed + pending == total`` at all times."""

    total: int
    passed: int = 0
    failed: int = 0
    pending: int = 0
    duration_ms: int = 0

    @property
    def completed(self) -> int:
        return self.passed + self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "pending": self.pending,
            "duration": self.duration_ms,
        }


@dataclass
# pylint: disable=too-many-instance-attributes
class Run:
    """Aggregate root for one execution batch. Mutated only by the orchestrator."""

    id: str
    project_ref: str
    test_cases: List[TestCase]
    config: RunConfig
    status: RunStatus = RunStatus.PENDING
    results: RunResults = field(default=None)  # type: ignore[assignment]
    case_results: Dict[str, Optional[CaseResult]] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        case_ids = [case.id for case in self.test_cases]
        if len(set(case_ids)) != len(case_ids):
            raise ValueError("Test case ids must be unique within a run")
        if self.results is None:
            self.results = RunResults(total=len(self.test_cases), pending=len(self.test_cases))
        if not self.case_results:
            self.case_results = {case_id: None for case_id in case_ids}

    @classmethod
    def create(cls, project_ref: str, test_cases: List[TestCase], config: Optional[RunConfig] = None) -> "Run":
        return cls(
            id=cls._build_run_id(),
            project_ref=project_ref,
            test_cases=list(test_cases),
            config=config or RunConfig(),
        )

    def find_case(self, case_id: str) -> Optional[TestCase]:
        for case in self.test_cases:
            if case.id == case_id:
                return case
        return None

    def to_dict(self) -> Dict[str, Any]:
        test_results = []
        for case in self.test_cases:
            result = self.case_results.get(case.id)
            entry: Dict[str, Any] = {"testCaseId": case.id, "title": case.title}
            if result is None:
                entry.update({"status": "pending", "duration": 0})
            else:
                entry.update(result.to_dict())
            test_results.append(entry)

        return {
            "id": self.id,
            "project": self.project_ref,
            "status": self.status.value,
            "config": self.config.to_dict(),
            "results": self.results.to_dict(),
            "testResults": test_results,
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }

    @staticmethod
    def _build_run_id() -> str:
        timestamp = datetime.utcnow().strftime("%Y%m%dT%H%M%SZ")
        return f"{timestamp}_{uuid.uuid4().hex[:8]}"
