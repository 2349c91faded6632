"""Browser session provisioning on top of the Playwright sync API."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from .settings import RunnerSettings


class BrowserProvisionError(RuntimeError):
    """Raised when a browser session cannot be launched."""


class BrowserLauncher:
    """Opens one isolated Chromium session per test case.

    The sync API binds Playwright to the calling thread, so each worker thread
    starts its own driver instead of sharing a browser.
    """

    def __init__(self, settings: Optional[RunnerSettings] = None) -> None:
        self.settings = settings or RunnerSettings()
        self.logger = logging.getLogger("runner_mvp.browser")

    @contextmanager
    def session(self, log: Optional[Callable[[str], None]] = None) -> Iterator[object]:
        """Yield a fresh page; the context and browser close on every exit path."""
        try:
            playwright_manager = sync_playwright()
            playwright = playwright_manager.start()
        except PlaywrightError as exc:
            raise BrowserProvisionError(f"Failed to start Playwright: {exc}") from exc

        browser = None
        context = None
        try:
            try:
                browser = playwright.chromium.launch(
                    headless=self.settings.headless,
                    args=["--no-sandbox", "--disable-dev-shm-usage"],
                )
                width, height = self.settings.viewport
                context = browser.new_context(viewport={"width": width, "height": height})
                page = context.new_page()
            except PlaywrightError as exc:
                raise BrowserProvisionError(f"Failed to launch browser: {exc}") from exc

            if log is not None:
                page.on("console", lambda message: log(f"Console {message.type}: {message.text}"))
                page.on("pageerror", lambda error: log(f"Page error: {error}"))
            yield page
        finally:
            for resource in (context, browser):
                if resource is None:
                    continue
                try:
                    resource.close()
                except PlaywrightError as exc:  # pragma: no cover - best effort
                    self.logger.debug("Failed to close browser resource: %s", exc)
            playwright.stop()
