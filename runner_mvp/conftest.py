"""Fake Playwright objects so runner tests never launch a browser."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError


class FakeElement:
    def __init__(self, visible: bool = True, fail_on: Optional[set] = None) -> None:
        self.visible = visible
        self.fail_on = fail_on or set()


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str) -> None:
        self.page = page
        self.selector = selector

    @property
    def first(self) -> "FakeLocator":
        return self

    def _element(self) -> Optional[FakeElement]:
        return self.page.elements.get(self.selector)

    def wait_for(self, state: str = "visible", timeout: Optional[int] = None) -> None:
        self.page.waits.append((self.selector, state, timeout))
        element = self._element()
        if element is None or (state == "visible" and not element.visible):
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms waiting for {self.selector}")

    def _act(self, name: str, *args) -> None:
        element = self._element()
        if element is not None and name in element.fail_on:
            raise PlaywrightError(f"{name} failed on {self.selector}")
        self.page.actions.append((name, self.selector) + args)

    def click(self, timeout: Optional[int] = None) -> None:
        self._act("click")

    def focus(self, timeout: Optional[int] = None) -> None:
        self._act("focus")

    def fill(self, value: str, timeout: Optional[int] = None) -> None:
        self._act("fill", value)

    def press_sequentially(self, value: str, timeout: Optional[int] = None) -> None:
        self._act("press_sequentially", value)

    def select_option(self, value: str, timeout: Optional[int] = None) -> None:
        self._act("select_option", value)

    def hover(self, timeout: Optional[int] = None) -> None:
        self._act("hover")


class FakePage:
    """Minimal stand-in for ``playwright.sync_api.Page``."""

    def __init__(
        self,
        body_text: str = "",
        elements: Optional[Dict[str, FakeElement]] = None,
        goto_failures: int = 0,
        screenshot_fails: bool = False,
        on_goto: Optional[Callable[["FakePage", str], None]] = None,
    ) -> None:
        self.body_text = body_text
        self.elements = elements or {}
        self.goto_failures = goto_failures
        self.screenshot_fails = screenshot_fails
        self.on_goto = on_goto
        self.url = "about:blank"
        self.locator_calls: List[str] = []
        self.waits: List[tuple] = []
        self.actions: List[tuple] = []
        self.gotos: List[tuple] = []
        self.timeouts: List[int] = []
        self.scripts: List[str] = []
        self.handlers: Dict[str, Callable] = {}

    def locator(self, selector: str) -> FakeLocator:
        self.locator_calls.append(selector)
        return FakeLocator(self, selector)

    def goto(self, url: str, wait_until: str = "load", timeout: Optional[int] = None) -> None:
        self.gotos.append((url, wait_until, timeout))
        if self.goto_failures > 0:
            self.goto_failures -= 1
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms navigating to {url}")
        self.url = url
        if self.on_goto is not None:
            self.on_goto(self, url)

    def wait_for_load_state(self, state: str = "load", timeout: Optional[int] = None) -> None:
        self.waits.append(("<page>", state, timeout))

    def wait_for_timeout(self, timeout: int) -> None:
        self.timeouts.append(timeout)

    def inner_text(self, selector: str) -> str:
        return self.body_text

    def text_content(self, selector: str) -> str:
        return self.body_text

    def evaluate(self, script: str) -> None:
        self.scripts.append(script)

    def screenshot(self, full_page: bool = False) -> bytes:
        if self.screenshot_fails:
            raise PlaywrightError("screenshot failed")
        return b"\x89PNG fake"

    def on(self, event: str, handler: Callable) -> None:
        self.handlers[event] = handler


class FakeLauncher:
    """Hands out fake pages and counts open sessions."""

    def __init__(self, page_factory: Optional[Callable[[], FakePage]] = None, error: Optional[Exception] = None):
        self.page_factory = page_factory or FakePage
        self.error = error
        self.pages: List[FakePage] = []
        self.opened = 0
        self.closed = 0
        self._lock = threading.Lock()

    @contextmanager
    def session(self, log=None):
        if self.error is not None:
            raise self.error
        page = self.page_factory()
        with self._lock:
            self.pages.append(page)
            self.opened += 1
        try:
            yield page
        finally:
            with self._lock:
                self.closed += 1


@pytest.fixture
def fake_element():
    return FakeElement


@pytest.fixture
def fake_page():
    return FakePage


@pytest.fixture
def fake_launcher():
    return FakeLauncher
