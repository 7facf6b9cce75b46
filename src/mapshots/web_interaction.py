"""Cascading trigger strategies for activating the map widget's surface.

The engine tries each strategy in order and stops at the first one after
which the surface is strictly visible:

1. ``dispatch_pointer_sequence`` fires synthetic mousedown/click/mouseup
   events directly on the element, bypassing layout and occlusion.
2. ``native_click`` clicks the element at its current layout position.
3. ``center_click`` clicks the raw pointer at the center of the element's
   bounding box, for targets whose native click is intercepted by an overlay.

An exception inside a strategy counts as a failed strategy, except in the
last one, where it surfaces as :class:`ActivationFailed`. After the cascade
the engine waits, bounded, for the surface to exist and be visible.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable

from playwright.sync_api import Error as PlaywrightError

from mapshots.config import SettleDelays
from mapshots.errors import ActivationFailed
from mapshots.web_common import first_visible, scroll_into_center, settle, wait_for_visible

logger = logging.getLogger(__name__)

POINTER_SEQUENCE_JS = """
(el) => {
  for (const type of ['mousedown', 'click', 'mouseup']) {
    el.dispatchEvent(new MouseEvent(type, {
      view: window,
      bubbles: true,
      cancelable: true,
      buttons: 1,
    }));
  }
}
"""

NATIVE_CLICK_HOLD_MS = 100


@dataclass(frozen=True)
class SurfaceCheck:
    selector: str
    settle_ms: int

    def visible(self, page: Any) -> bool:
        return first_visible(page, self.selector) is not None


@dataclass(frozen=True)
class TriggerStrategy:
    name: str
    run: Callable[[Any, Any], bool]


def dispatch_pointer_sequence(page: Any, target: Any, check: SurfaceCheck) -> bool:
    target.evaluate(POINTER_SEQUENCE_JS)
    settle(page, check.settle_ms)
    return check.visible(page)


def native_click(page: Any, target: Any, check: SurfaceCheck) -> bool:
    target.click(delay=NATIVE_CLICK_HOLD_MS)
    settle(page, check.settle_ms)
    return check.visible(page)


def center_click(page: Any, target: Any, check: SurfaceCheck) -> bool:
    box = target.bounding_box()
    if not box:
        raise ActivationFailed("target has no bounding box")
    page.mouse.click(box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)
    settle(page, check.settle_ms)
    return check.visible(page)


class InteractionEngine:
    """States: Idle -> Triggering (1..3) -> Verifying -> Active | Failed."""

    def __init__(
        self,
        surface_selector: str,
        *,
        delays: SettleDelays | None = None,
        surface_timeout_ms: int = 10000,
        surface_poll_ms: int = 250,
    ) -> None:
        self.surface_selector = surface_selector
        self.delays = delays or SettleDelays()
        self.surface_timeout_ms = surface_timeout_ms
        self.surface_poll_ms = surface_poll_ms
        check = SurfaceCheck(selector=surface_selector, settle_ms=self.delays.after_click_ms)
        self.strategies: tuple[TriggerStrategy, ...] = tuple(
            TriggerStrategy(name=fn.__name__, run=functools.partial(fn, check=check))
            for fn in (dispatch_pointer_sequence, native_click, center_click)
        )

    def activate(self, page: Any, target: Any) -> bool:
        scroll_into_center(target)
        settle(page, self.delays.after_scroll_ms)

        last_index = len(self.strategies) - 1
        for index, strategy in enumerate(self.strategies):
            try:
                triggered = strategy.run(page, target)
            except (PlaywrightError, ActivationFailed) as exc:
                if index == last_index:
                    raise ActivationFailed(
                        f"all trigger strategies failed; {strategy.name}: {exc}"
                    ) from exc
                logger.debug("Strategy %s raised, trying next: %s", strategy.name, exc)
                continue
            if triggered:
                logger.debug("Strategy %s produced the surface", strategy.name)
                break
            logger.debug("Strategy %s did not produce the surface", strategy.name)

        settle(page, self.delays.after_activation_ms)
        return self.wait_for_surface(page)

    def wait_for_surface(self, page: Any) -> bool:
        surface = wait_for_visible(
            page,
            self.surface_selector,
            timeout_ms=self.surface_timeout_ms,
            poll_ms=self.surface_poll_ms,
        )
        return surface is not None
