"""A scripted stand-in for the map page, speaking Playwright's sync API subset."""

from __future__ import annotations

from io import BytesIO
from typing import Any, Sequence

from PIL import Image
from playwright.sync_api import Error as PlaywrightError

from mapshots.constants import (
    DEFAULT_GALLERY_ITEM_SELECTOR,
    DEFAULT_PRIMARY_TRIGGER_SELECTOR,
    DEFAULT_SURFACE_SELECTOR,
)

OPENER = DEFAULT_PRIMARY_TRIGGER_SELECTOR
THUMB = DEFAULT_GALLERY_ITEM_SELECTOR
SURFACE = DEFAULT_SURFACE_SELECTOR


def make_png(seed: int = 0, *, width: int = 64, height: int = 48, border: int = 4) -> bytes:
    """White-bordered gradient; the inner block never comes close to white."""
    image = Image.new("RGB", (width, height), (255, 255, 255))
    for x in range(width - 2 * border):
        for y in range(height - 2 * border):
            image.putpixel(
                (border + x, border + y),
                (min(255, x * 4 + seed * 5), min(255, y * 6), 0),
            )
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


class FakeMouse:
    def __init__(self, page: "FakeMapPage") -> None:
        self.page = page
        self.clicks: list[tuple[float, float]] = []

    def click(self, x: float, y: float, **_kwargs: Any) -> None:
        self.clicks.append((x, y))
        self.page._pointer_click(x, y)


class FakeElement:
    def __init__(self, page: "FakeMapPage", name: str, *, box: dict[str, float] | None = None) -> None:
        self.page = page
        self.name = name
        self.box = box
        self.stale = False

    def _check(self) -> None:
        if self.stale:
            raise PlaywrightError(f"Element is not attached to the DOM: {self.name}")

    def is_visible_now(self) -> bool:
        return True

    def evaluate(self, script: str, arg: Any = None) -> Any:
        self._check()
        if "getComputedStyle" in script:
            return self.is_visible_now()
        if "scrollIntoView" in script:
            self.page.scrolled.append(self.name)
            return None
        if "dispatchEvent" in script:
            self.page._trigger(self, "dispatch")
            return None
        return None

    def scroll_into_view_if_needed(self) -> None:
        self._check()

    def click(self, **_kwargs: Any) -> None:
        self._check()
        self.page._trigger(self, "native")

    def bounding_box(self) -> dict[str, float] | None:
        self._check()
        return dict(self.box) if self.box else None

    def screenshot(self, **_kwargs: Any) -> bytes:
        self._check()
        return self.page._screenshot(self)


class FakeSurface(FakeElement):
    def is_visible_now(self) -> bool:
        return self.page.active is not None


class FakeThumbnail(FakeElement):
    def __init__(self, page: "FakeMapPage", index: int, mode: str | None) -> None:
        super().__init__(
            page,
            f"thumb-{index}",
            box={"x": 100.0 + index * 120, "y": 800.0, "width": 100.0, "height": 80.0},
        )
        self.index = index
        self.mode = mode


class FakeMapPage:
    """Map page with an opener button, a thumbnail gallery and a canvas surface.

    `thumbnails` lists, per thumbnail, the only trigger that makes the surface
    render: "dispatch", "native", "center" or None. A "center" thumbnail has
    its native click intercepted by an overlay. Every trigger on a thumbnail
    first resets the surface, as the real viewer reloads its canvas.
    """

    def __init__(
        self,
        *,
        thumbnails: Sequence[str | None] = (),
        has_opener: bool = True,
        opener_mode: str | None = None,
        surface_on_open: bool = False,
        surface_hidden_in_dom: bool = False,
        rerender_on_trigger: bool = False,
        shrink_on_trigger: bool = False,
        failing_screenshots: Sequence[int] = (),
        failing_urls: Sequence[str] = (),
    ) -> None:
        self.modes = list(thumbnails)
        self.has_opener = has_opener
        self.opener_mode = opener_mode
        self.surface_on_open = surface_on_open
        self.surface_hidden_in_dom = surface_hidden_in_dom
        self.rerender_on_trigger = rerender_on_trigger
        self.shrink_on_trigger = shrink_on_trigger
        self.failing_screenshots = set(failing_screenshots)
        self.failing_urls = set(failing_urls)

        self.mouse = FakeMouse(self)
        self.opener = FakeElement(
            self, "opener", box={"x": 20.0, "y": 20.0, "width": 400.0, "height": 240.0}
        )
        self.surface = FakeSurface(
            self, "surface", box={"x": 0.0, "y": 0.0, "width": 1920.0, "height": 1080.0}
        )
        self.url: str | None = None
        self.visited: list[str] = []
        self.waited_ms = 0
        self.scrolled: list[str] = []
        self.trigger_log: list[tuple[str, str]] = []
        self.screenshots: list[tuple[int | None, bool]] = []
        self.isolations = 0
        self.restores = 0
        self.hidden = False
        self.renders = 0
        self._reset()

    def _reset(self) -> None:
        self.gallery_open = False
        self.active: int | None = None
        self.hidden = False
        self._thumbs = self._render(len(self.modes))

    def _render(self, count: int) -> list[FakeThumbnail]:
        self.renders += 1
        return [FakeThumbnail(self, i, self.modes[i]) for i in range(count)]

    # Playwright Page API subset

    def goto(self, url: str, **_kwargs: Any) -> None:
        if url in self.failing_urls:
            raise PlaywrightError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.url = url
        self.visited.append(url)
        self._reset()

    def wait_for_timeout(self, ms: int) -> None:
        self.waited_ms += int(ms)

    def query_selector_all(self, selector: str) -> list[FakeElement]:
        if selector == OPENER:
            return [self.opener] if self.has_opener else []
        if selector == THUMB:
            return list(self._thumbs) if self.gallery_open else []
        if selector == SURFACE:
            if self.active is not None or self.surface_hidden_in_dom:
                return [self.surface]
            return []
        return []

    def query_selector(self, selector: str) -> FakeElement | None:
        found = self.query_selector_all(selector)
        return found[0] if found else None

    def evaluate(self, script: str, arg: Any = None) -> Any:
        if "getElementsByTagName" in script:
            self.isolations += 1
            self.hidden = True
            return 57
        if "removeAttribute" in script:
            self.restores += 1
            restored = 57 if self.hidden else 0
            self.hidden = False
            return restored
        return None

    # scripted behavior

    def _trigger(self, element: FakeElement, strategy: str) -> None:
        if element is self.opener:
            self.trigger_log.append(("opener", strategy))
            if strategy == "native" and self.modes:
                self.gallery_open = True
            if strategy == "native" and self.surface_on_open:
                self.active = 0
            if strategy == self.opener_mode:
                self.active = 0
            return
        if not isinstance(element, FakeThumbnail):
            return
        self.trigger_log.append((element.name, strategy))
        self.active = None
        if element.mode == "center" and strategy == "native":
            raise PlaywrightError("<div class=overlay> intercepts pointer events")
        if element.mode == strategy:
            self.active = element.index + 1
        if self.shrink_on_trigger and self.modes:
            self.modes.pop()
            self._detach_and_render()
        elif self.rerender_on_trigger:
            self._detach_and_render()

    def _detach_and_render(self) -> None:
        for handle in self._thumbs:
            handle.stale = True
        self._thumbs = self._render(len(self.modes))

    def _pointer_click(self, x: float, y: float) -> None:
        for element in [self.opener, *self._thumbs]:
            box = element.box
            if box and box["x"] <= x <= box["x"] + box["width"] and box["y"] <= y <= box["y"] + box["height"]:
                if isinstance(element, FakeThumbnail) and not self.gallery_open:
                    continue
                self._trigger(element, "center")
                return

    def _screenshot(self, element: FakeElement) -> bytes:
        self.screenshots.append((self.active, self.hidden))
        if self.active in self.failing_screenshots:
            raise PlaywrightError("Target closed while taking screenshot")
        return make_png(seed=self.active or 0)
