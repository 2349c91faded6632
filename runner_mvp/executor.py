"""Step execution against a Playwright page."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional, Tuple
from urllib.parse import urljoin

from playwright.sync_api import Error as PlaywrightError

from .locators import resolve_locators
from .models import ActionType, ParsedStep
from .settings import RunnerSettings

PAGE_EXCERPT_CHARS = 500

SCROLL_SCRIPTS = {
    "top": "window.scrollTo(0, 0)",
    "bottom": "window.scrollTo(0, document.body.scrollHeight)",
    "up": "window.scrollBy(0, -window.innerHeight)",
    "down": "window.scrollBy(0, window.innerHeight)",
}


class ErrorKind(str, Enum):
    TARGET_NOT_FOUND = "TargetNotFound"
    ASSERTION_FAILED = "AssertionFailed"
    NAVIGATION_FAILED = "NavigationFailed"
    INTERACTION_FAILED = "InteractionFailed"
    INVALID_STEP = "InvalidStep"
    CANCELLED = "Cancelled"
    EXECUTION_ERROR = "ExecutionError"


class ExecutionError(RuntimeError):
    """Step-level failure; ``kind`` becomes the case result's error."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class StepExecutor:
    """Performs parsed steps on one page, trying locator candidates in order."""

    def __init__(
        self,
        page,
        settings: Optional[RunnerSettings] = None,
        log: Optional[Callable[[str], None]] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self.page = page
        self.settings = settings or RunnerSettings()
        self.base_url = base_url if base_url is not None else self.settings.base_url
        self.logger = logging.getLogger("runner_mvp.executor")
        self._log = log or self.logger.info

    def execute(self, step: ParsedStep) -> None:
        handlers = {
            ActionType.NAVIGATE: self._handle_navigate,
            ActionType.CLICK: self._handle_click,
            ActionType.TYPE: self._handle_type,
            ActionType.SELECT: self._handle_select,
            ActionType.HOVER: self._handle_hover,
            ActionType.WAIT: self._handle_wait,
            ActionType.SCROLL: self._handle_scroll,
            ActionType.ASSERT: self._handle_assert,
        }
        handler = handlers.get(step.action)
        if handler is None:
            raise ExecutionError(ErrorKind.INVALID_STEP, f"Unsupported action: {step.action}")
        handler(step)

    # ------------------------------------------------------------------ navigation

    def resolve_url(self, target: str) -> str:
        target = target.strip()
        if target.startswith("http://") or target.startswith("https://"):
            return target
        if target.startswith("/"):
            if not self.base_url:
                raise ExecutionError(ErrorKind.INVALID_STEP, f"Relative URL {target} requires a base URL")
            return urljoin(self.base_url.rstrip("/") + "/", target.lstrip("/"))
        return f"https://{target}"

    def _handle_navigate(self, step: ParsedStep) -> None:
        if not step.target or not step.target.strip():
            raise ExecutionError(ErrorKind.INVALID_STEP, "Navigate step has no URL")
        url = self.resolve_url(step.target)
        self._log(f"Navigating to {url}")
        try:
            self.page.goto(url, wait_until="domcontentloaded", timeout=self.settings.navigation_timeout_ms)
            try:
                self.page.wait_for_load_state("load", timeout=self.settings.ready_state_timeout_ms)
            except PlaywrightError:
                self._log("Page did not reach load state, continuing")
        except PlaywrightError as first_exc:
            self._log(f"Navigation failed ({first_exc}), retrying with load state")
            try:
                self.page.goto(url, wait_until="load", timeout=self.settings.navigation_retry_timeout_ms)
            except PlaywrightError as exc:
                raise ExecutionError(ErrorKind.NAVIGATION_FAILED, f"Failed to navigate to {url}: {exc}") from exc
        self._log(f"Navigated to {url}")

    # ---------------------------------------------------------------- interactions

    def _find_target(self, target: Optional[str], state: str, timeout_ms: int) -> Optional[Tuple[str, object]]:
        """Return the first candidate that reaches ``state`` within its own wait."""
        for candidate in resolve_locators(target or ""):
            locator = self.page.locator(candidate).first
            try:
                locator.wait_for(state=state, timeout=timeout_ms)
            except PlaywrightError:
                self.logger.debug("Candidate %s not %s", candidate, state)
                continue
            return candidate, locator
        return None

    def _require_target(self, step: ParsedStep) -> Tuple[str, object]:
        if not step.target:
            raise ExecutionError(ErrorKind.INVALID_STEP, f"{step.action.value} step has no target")
        found = self._find_target(step.target, "visible", self.settings.interaction_timeout_ms)
        if found is None:
            raise ExecutionError(ErrorKind.TARGET_NOT_FOUND, f"Could not find element: {step.target}")
        self._log(f"Found element for '{step.target}' using {found[0]}")
        return found

    def _interact(self, step: ParsedStep, action: Callable[[object], None]) -> None:
        candidate, locator = self._require_target(step)
        try:
            action(locator)
        except PlaywrightError as exc:
            raise ExecutionError(
                ErrorKind.INTERACTION_FAILED, f"{step.action.value} on {candidate} failed: {exc}"
            ) from exc

    def _handle_click(self, step: ParsedStep) -> None:
        timeout = self.settings.interaction_timeout_ms

        def click(locator) -> None:
            locator.click(timeout=timeout)
            self.page.wait_for_timeout(self.settings.click_settle_ms)

        self._interact(step, click)
        self._log(f"Clicked {step.target}")

    def _handle_type(self, step: ParsedStep) -> None:
        if step.value is None:
            raise ExecutionError(ErrorKind.INVALID_STEP, "Type step has no value")
        timeout = self.settings.interaction_timeout_ms

        def type_text(locator) -> None:
            locator.focus(timeout=timeout)
            locator.fill("", timeout=timeout)
            locator.press_sequentially(step.value, timeout=timeout)

        self._interact(step, type_text)
        self._log(f"Typed '{step.value}' into {step.target}")

    def _handle_select(self, step: ParsedStep) -> None:
        if step.value is None:
            raise ExecutionError(ErrorKind.INVALID_STEP, "Select step has no value")
        timeout = self.settings.interaction_timeout_ms
        self._interact(step, lambda locator: locator.select_option(step.value, timeout=timeout))
        self._log(f"Selected '{step.value}' in {step.target}")

    def _handle_hover(self, step: ParsedStep) -> None:
        timeout = self.settings.interaction_timeout_ms
        self._interact(step, lambda locator: locator.hover(timeout=timeout))
        self._log(f"Hovered {step.target}")

    def _handle_wait(self, step: ParsedStep) -> None:
        duration = step.timeout_ms if step.timeout_ms is not None else 0
        self._log(f"Waiting {duration}ms")
        self.page.wait_for_timeout(duration)

    def _handle_scroll(self, step: ParsedStep) -> None:
        direction = step.target if step.target in SCROLL_SCRIPTS else "down"
        try:
            self.page.evaluate(SCROLL_SCRIPTS[direction])
        except PlaywrightError as exc:
            raise ExecutionError(ErrorKind.INTERACTION_FAILED, f"Scroll {direction} failed: {exc}") from exc
        self._log(f"Scrolled {direction}")

    # ------------------------------------------------------------------ assertions

    def _page_texts(self) -> Tuple[str, str]:
        inner = content = ""
        try:
            inner = self.page.inner_text("body") or ""
        except PlaywrightError as exc:
            self.logger.debug("Failed to read body inner text: %s", exc)
        try:
            content = self.page.text_content("body") or ""
        except PlaywrightError as exc:
            self.logger.debug("Failed to read body text content: %s", exc)
        return inner, content

    def _handle_assert(self, step: ParsedStep) -> None:
        if not step.target:
            raise ExecutionError(ErrorKind.INVALID_STEP, "Assert step has no target")
        expected = step.target.lower()
        inner, content = self._page_texts()
        if expected in inner.lower():
            self._log(f"Assertion passed: '{step.target}' found in page text")
            return
        if expected in content.lower():
            self._log(f"Assertion passed: '{step.target}' found in page content")
            return
        found = self._find_target(step.target, "attached", self.settings.assertion_timeout_ms)
        if found is not None:
            self._log(f"Assertion passed: element found using {found[0]}")
            return
        raise ExecutionError(ErrorKind.ASSERTION_FAILED, f"Assertion failed: '{step.target}' not found on page")

    def validate_expected(self, expected: Optional[str]) -> None:
        """Check the case's expected outcome against the final page state."""
        if not expected or not expected.strip():
            return
        needle = expected.strip().lower()
        inner, content = self._page_texts()
        if needle in inner.lower():
            self._log("Expected result found in page text")
            return
        if needle in content.lower():
            self._log("Expected result found in page content")
            return

        current_url = ""
        if "://" in needle or needle.startswith("/"):
            try:
                current_url = self.page.url or ""
            except PlaywrightError as exc:
                self.logger.debug("Failed to read page url: %s", exc)
            if needle in current_url.lower():
                self._log(f"Expected result matched current URL {current_url}")
                return

        excerpt = (inner or content)[:PAGE_EXCERPT_CHARS]
        raise ExecutionError(
            ErrorKind.ASSERTION_FAILED,
            f"Expected result not found: '{expected.strip()}'. Page text: {excerpt}",
        )
