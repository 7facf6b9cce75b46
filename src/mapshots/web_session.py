"""Browser session lifecycle and navigation for one worker process."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from mapshots.config import WorkerConfig
from mapshots.web_common import settle

logger = logging.getLogger(__name__)


@dataclass
class BrowserPage:
    browser: Any
    context: Any
    page: Any


def launch_browser(playwright_obj: Any, *, headless: bool = True) -> Any:
    kwargs: dict[str, Any] = {"headless": headless}
    try:
        return playwright_obj.chromium.launch(channel="chrome", **kwargs)
    except PlaywrightError:
        return playwright_obj.chromium.launch(**kwargs)


def open_page(playwright_obj: Any, config: WorkerConfig) -> BrowserPage:
    browser = launch_browser(playwright_obj, headless=config.headless)
    context = browser.new_context(viewport=dict(config.viewport))
    page = context.new_page()
    page.set_default_timeout(config.element_timeout_ms)
    page.set_default_navigation_timeout(config.navigation_timeout_ms)
    return BrowserPage(browser=browser, context=context, page=page)


def navigate(page: Any, url: str, config: WorkerConfig) -> None:
    logger.info("Navigating to %s", url)
    page.goto(url, wait_until="networkidle", timeout=config.navigation_timeout_ms)
    settle(page, config.delays.after_navigation_ms)


@contextmanager
def browser_session(config: WorkerConfig) -> Iterator[BrowserPage]:
    """One browser and page per worker process, closed on exit."""
    with sync_playwright() as playwright_obj:
        setup = open_page(playwright_obj, config)
        try:
            yield setup
        finally:
            try:
                setup.browser.close()
            except PlaywrightError as exc:
                logger.warning("Browser did not close cleanly: %s", exc)
