"""Capture the active rendering surface as raw pixels.

Before the screenshot every element except the surface, its ancestors and
the still-interactive trigger elements is made invisible, so the image holds
only the widget's content. Each altered element remembers its previous
inline visibility and is restored after the capture, whether it succeeded or
not.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Sequence

from playwright.sync_api import Error as PlaywrightError

from mapshots.config import SettleDelays
from mapshots.constants import EMPTY_STYLE_MARKER, PREV_VISIBILITY_ATTR
from mapshots.errors import ActivationFailed, SurfaceNotActive, SurfaceNotFound
from mapshots.web_common import first_visible, settle
from mapshots.web_interaction import InteractionEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawCapture:
    """Unnormalized pixels of one surface; ordinal 0 is the street view."""

    ordinal: int
    content: bytes = field(repr=False)


HIDE_SURROUNDINGS_JS = """
([surfaceSelector, keepSelectors, attr, emptyMarker]) => {
  const keep = (el) => (
    el.matches(surfaceSelector) ||
    !!el.querySelector(surfaceSelector) ||
    keepSelectors.some((sel) => el.matches(sel))
  );
  let hidden = 0;
  for (const el of Array.from(document.body.getElementsByTagName('*'))) {
    if (keep(el) || el.hasAttribute(attr)) continue;
    el.setAttribute(attr, el.style.visibility || emptyMarker);
    el.style.visibility = 'hidden';
    hidden += 1;
  }
  return hidden;
}
"""

RESTORE_SURROUNDINGS_JS = """
([attr, emptyMarker]) => {
  let restored = 0;
  for (const el of Array.from(document.querySelectorAll(`[${attr}]`))) {
    const prev = el.getAttribute(attr);
    el.style.visibility = prev === emptyMarker ? '' : prev;
    el.removeAttribute(attr);
    restored += 1;
  }
  return restored;
}
"""


def hide_surroundings(page: Any, surface_selector: str, keep_selectors: Sequence[str]) -> int:
    hidden = page.evaluate(
        HIDE_SURROUNDINGS_JS,
        [surface_selector, list(keep_selectors), PREV_VISIBILITY_ATTR, EMPTY_STYLE_MARKER],
    )
    return int(hidden or 0)


def restore_surroundings(page: Any) -> int:
    try:
        restored = page.evaluate(
            RESTORE_SURROUNDINGS_JS, [PREV_VISIBILITY_ATTR, EMPTY_STYLE_MARKER]
        )
    except PlaywrightError as exc:
        logger.warning("Could not restore page visibility: %s", exc)
        return 0
    return int(restored or 0)


@contextmanager
def isolated_surface(
    page: Any,
    surface_selector: str,
    keep_selectors: Sequence[str] = (),
    *,
    settle_ms: int = 0,
) -> Iterator[None]:
    try:
        hidden = hide_surroundings(page, surface_selector, keep_selectors)
        logger.debug("Hid %d element(s) around %s", hidden, surface_selector)
        settle(page, settle_ms)
        yield
    finally:
        restore_surroundings(page)


class CapturePipeline:
    def __init__(
        self,
        engine: InteractionEngine,
        *,
        keep_selectors: Sequence[str] = (),
        delays: SettleDelays | None = None,
    ) -> None:
        self.engine = engine
        self.keep_selectors = tuple(keep_selectors)
        self.delays = delays or engine.delays

    @property
    def surface_selector(self) -> str:
        return self.engine.surface_selector

    def capture(self, page: Any, target: Any) -> bytes:
        try:
            active = self.engine.activate(page, target)
        except ActivationFailed as exc:
            raise SurfaceNotActive(str(exc)) from exc
        if not active:
            raise SurfaceNotActive(f"surface {self.surface_selector} never became visible")
        return self.capture_active_surface(page)

    def capture_active_surface(self, page: Any) -> bytes:
        surface = first_visible(page, self.surface_selector)
        if surface is None:
            raise SurfaceNotFound(f"no visible element matches {self.surface_selector}")
        with isolated_surface(
            page,
            self.surface_selector,
            self.keep_selectors,
            settle_ms=self.delays.after_visibility_ms,
        ):
            return surface.screenshot(type="png")
