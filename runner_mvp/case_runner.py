"""Runs a single test case and produces one CaseResult.

Execution is delegated to a strategy: ``BrowserStrategy`` drives a real
browser session, ``SimulatedStrategy`` handles cases that never touch a page.
"""
from __future__ import annotations

import base64
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from playwright.sync_api import Error as PlaywrightError

from .browser import BrowserLauncher
from .executor import ErrorKind, ExecutionError, StepExecutor
from .models import CaseResult, CaseStatus, TestCase
from .settings import RunnerSettings
from .step_parser import parse_step

SIMULATED_MESSAGE = "Test case validated without browser automation"

_BROWSER_KEYWORDS = re.compile(
    r"\b(?:navigate|go\s+to|open|visit|click|press|tap|type|enter|input|fill|select|choose|hover|scroll)"
    r"(?:s|es|ed|ing)?\b|http",
    re.IGNORECASE,
)


def needs_browser(test_case: TestCase) -> bool:
    """True when any step navigates or interacts with the page."""
    return any(_BROWSER_KEYWORDS.search(step or "") for step in test_case.steps)


class CaseLog:
    """Ordered, timestamped log lines collected for one case."""

    def __init__(self, case_id: str) -> None:
        self.entries: List[str] = []
        self._logger = logging.getLogger("runner_mvp.case")
        self._case_id = case_id

    def __call__(self, message: str) -> None:
        self.entries.append(f"[{datetime.utcnow().isoformat()}Z] {message}")
        self._logger.debug("[%s] %s", self._case_id, message)


@dataclass(frozen=True)
class CaseOutcome:
    """Verdict of a strategy; timing and logs are added by the runner."""

    status: CaseStatus
    message: str
    error: Optional[ErrorKind] = None
    screenshot: Optional[str] = None


class SimulatedStrategy:
    """Parses and logs every step, then passes. Deterministic."""

    name = "simulated"

    # pylint: disable=unused-argument
    def execute(
        self,
        test_case: TestCase,
        cancel_event: threading.Event,
        base_url: Optional[str],
        log: CaseLog,
    ) -> CaseOutcome:
        for index, text in enumerate(test_case.steps, start=1):
            step = parse_step(text)
            log(f"Step {index}: {text} -> {step.action.value}")
        log(SIMULATED_MESSAGE)
        return CaseOutcome(CaseStatus.PASS, SIMULATED_MESSAGE)


class BrowserStrategy:
    """Runs the steps in one browser session, failing fast on the first error."""

    name = "browser"

    def __init__(self, launcher: Optional[BrowserLauncher] = None, settings: Optional[RunnerSettings] = None):
        self.settings = settings or RunnerSettings()
        self.launcher = launcher or BrowserLauncher(self.settings)
        self.logger = logging.getLogger("runner_mvp.case_runner")

    def execute(
        self,
        test_case: TestCase,
        cancel_event: threading.Event,
        base_url: Optional[str],
        log: CaseLog,
    ) -> CaseOutcome:
        # BrowserProvisionError from the launcher is a run-level fault and propagates.
        with self.launcher.session(log) as page:
            executor = StepExecutor(page, self.settings, log, base_url=base_url)
            try:
                for index, text in enumerate(test_case.steps, start=1):
                    if cancel_event.is_set():
                        raise ExecutionError(ErrorKind.CANCELLED, f"Test case cancelled before step {index}")
                    step = parse_step(text)
                    log(f"Step {index}: {text} -> {step.action.value} {step.target or ''}".rstrip())
                    executor.execute(step)
                executor.validate_expected(test_case.expected_result)
            except ExecutionError as exc:
                log(f"{exc.kind.value}: {exc.message}")
                screenshot = None if exc.kind == ErrorKind.CANCELLED else self._capture_screenshot(page, log)
                return CaseOutcome(CaseStatus.FAIL, exc.message, exc.kind, screenshot)
            except Exception as exc:  # pylint: disable=broad-except
                self.logger.exception("Unexpected error in test case %s", test_case.id)
                log(f"Unexpected error: {exc}")
                screenshot = self._capture_screenshot(page, log)
                return CaseOutcome(CaseStatus.FAIL, f"Unexpected error: {exc}", ErrorKind.EXECUTION_ERROR, screenshot)

        message = f"All {len(test_case.steps)} steps passed"
        log(message)
        return CaseOutcome(CaseStatus.PASS, message)

    def _capture_screenshot(self, page, log: CaseLog) -> Optional[str]:
        try:
            png = page.screenshot(full_page=True)
        except PlaywrightError as exc:
            self.logger.error("Screenshot capture failed: %s", exc)
            log(f"Screenshot capture failed: {exc}")
            return None
        log("Failure screenshot captured")
        return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


class CaseRunner:
    """Executes a test case end to end.

    ``requires_browser`` picks the strategy per case: matching cases go to
    ``browser_strategy``, the rest to ``null_strategy``.
    """

    # pylint: disable=too-many-arguments,too-many-positional-arguments
    def __init__(
        self,
        launcher: Optional[BrowserLauncher] = None,
        settings: Optional[RunnerSettings] = None,
        browser_strategy=None,
        null_strategy=None,
        requires_browser: Callable[[TestCase], bool] = needs_browser,
    ) -> None:
        self.settings = settings or RunnerSettings()
        self.browser_strategy = browser_strategy or BrowserStrategy(launcher, self.settings)
        self.null_strategy = null_strategy or SimulatedStrategy()
        self.requires_browser = requires_browser
        self.logger = logging.getLogger("runner_mvp.case_runner")

    def select_strategy(self, test_case: TestCase):
        return self.browser_strategy if self.requires_browser(test_case) else self.null_strategy

    def run(
        self,
        test_case: TestCase,
        cancel_event: Optional[threading.Event] = None,
        base_url: Optional[str] = None,
    ) -> CaseResult:
        cancel_event = cancel_event or threading.Event()
        log = CaseLog(test_case.id)
        started_at = datetime.utcnow()
        log(f"Starting test case {test_case.id}: {test_case.title}")

        if cancel_event.is_set():
            log("Run cancelled before the case started")
            outcome = CaseOutcome(CaseStatus.FAIL, "Test case cancelled", ErrorKind.CANCELLED)
        else:
            strategy = self.select_strategy(test_case)
            self.logger.debug("Case %s uses the %s strategy", test_case.id, getattr(strategy, "name", strategy))
            outcome = strategy.execute(test_case, cancel_event, base_url, log)
        return self._result(started_at, log, outcome)

    @staticmethod
    def _result(started_at: datetime, log: CaseLog, outcome: CaseOutcome) -> CaseResult:
        completed_at = datetime.utcnow()
        return CaseResult(
            status=outcome.status,
            message=outcome.message,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=int((completed_at - started_at).total_seconds() * 1000),
            logs=list(log.entries),
            error=outcome.error.value if outcome.error is not None else None,
            screenshot=outcome.screenshot,
        )
