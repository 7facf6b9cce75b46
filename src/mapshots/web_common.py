"""Shared helpers for driving the live page."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

from playwright.sync_api import Error as PlaywrightError

# Presence in the DOM is not enough: the widget keeps empty, unrendered
# elements around, so the computed style and the layout box must agree.
VISIBILITY_CHECK_JS = """
(el) => {
  if (!el || !el.isConnected) return false;
  const style = window.getComputedStyle(el);
  if (!style || style.display === 'none' || style.visibility === 'hidden') return false;
  const r = el.getBoundingClientRect();
  return r.width > 0 && r.height > 0;
}
"""

SCROLL_INTO_CENTER_JS = "(el) => el.scrollIntoView({behavior: 'smooth', block: 'center'})"


def is_valid_url(text: str) -> bool:
    try:
        parsed = urlparse(text)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def settle(page: Any, delay_ms: int) -> None:
    if delay_ms > 0:
        page.wait_for_timeout(int(delay_ms))


def element_is_visible(element: Any) -> bool:
    try:
        return bool(element.evaluate(VISIBILITY_CHECK_JS))
    except PlaywrightError:
        return False


def first_visible(page: Any, selector: str) -> Any | None:
    for element in page.query_selector_all(selector):
        if element_is_visible(element):
            return element
    return None


def wait_for_visible(page: Any, selector: str, *, timeout_ms: int, poll_ms: int) -> Any | None:
    """Poll until an element matching `selector` is strictly visible.

    The wait is bounded by a poll budget rather than wall-clock time so it
    stays deterministic under the page's own timer.
    """
    poll_ms = max(1, int(poll_ms))
    polls = max(1, int(timeout_ms) // poll_ms + 1)
    for attempt in range(polls):
        element = first_visible(page, selector)
        if element is not None:
            return element
        if attempt + 1 < polls:
            page.wait_for_timeout(poll_ms)
    return None


def scroll_into_center(element: Any) -> None:
    try:
        element.evaluate(SCROLL_INTO_CENTER_JS)
    except PlaywrightError:
        try:
            element.scroll_into_view_if_needed()
        except PlaywrightError:
            return
