import unittest
from io import BytesIO

from fake_dom import SURFACE, THUMB, FakeElement, FakeMapPage
from PIL import Image
from playwright.sync_api import Error as PlaywrightError

from mapshots.config import SettleDelays
from mapshots.errors import ActivationFailed, SurfaceNotActive, SurfaceNotFound
from mapshots.web_capture import CapturePipeline, isolated_surface, restore_surroundings
from mapshots.web_interaction import InteractionEngine


def _pipeline() -> CapturePipeline:
    engine = InteractionEngine(SURFACE, delays=SettleDelays(), surface_timeout_ms=500, surface_poll_ms=250)
    return CapturePipeline(engine, keep_selectors=(".OKAoZd",))


class _AlwaysActiveEngine:
    surface_selector = SURFACE
    delays = SettleDelays()

    def activate(self, _page, _target) -> bool:
        return True


class _HiddenCanvas(FakeElement):
    def is_visible_now(self) -> bool:
        return False

    def screenshot(self, **_kwargs) -> bytes:
        raise PlaywrightError("Element is not visible")


class _TwoCanvasPage(FakeMapPage):
    """Street-view layer keeps a hidden canvas in front of the rendered one."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.hidden_canvas = _HiddenCanvas(self, "stale-canvas")

    def query_selector_all(self, selector: str):
        found = super().query_selector_all(selector)
        if selector == SURFACE:
            return [self.hidden_canvas, *found]
        return found


class CapturePipelineTests(unittest.TestCase):
    def test_capture_isolates_surface_and_restores_page(self) -> None:
        page = FakeMapPage(thumbnails=["native"])
        page.opener.click()
        (thumb,) = page.query_selector_all(THUMB)

        content = _pipeline().capture(page, thumb)

        self.assertEqual(Image.open(BytesIO(content)).format, "PNG")
        self.assertEqual(page.screenshots, [(1, True)])
        self.assertFalse(page.hidden)
        self.assertEqual(page.isolations, 1)
        self.assertEqual(page.restores, 1)

    def test_page_is_restored_when_screenshot_fails(self) -> None:
        page = FakeMapPage(thumbnails=["native"], failing_screenshots=[1])
        page.opener.click()
        (thumb,) = page.query_selector_all(THUMB)

        with self.assertRaises(PlaywrightError):
            _pipeline().capture(page, thumb)

        self.assertFalse(page.hidden)
        self.assertEqual(page.restores, 1)

    def test_inactive_surface_raises_surface_not_active(self) -> None:
        page = FakeMapPage(thumbnails=[None])
        page.opener.click()
        (thumb,) = page.query_selector_all(THUMB)

        with self.assertRaises(SurfaceNotActive):
            _pipeline().capture(page, thumb)
        self.assertEqual(page.screenshots, [])

    def test_exhausted_strategies_surface_as_surface_not_active(self) -> None:
        page = FakeMapPage(thumbnails=["native"])
        page.opener.click()
        (thumb,) = page.query_selector_all(THUMB)
        thumb.stale = True

        with self.assertRaises(SurfaceNotActive) as ctx:
            _pipeline().capture(page, thumb)
        self.assertIsInstance(ctx.exception, ActivationFailed)
        self.assertIsInstance(ctx.exception.__cause__, ActivationFailed)

    def test_missing_surface_raises_surface_not_found(self) -> None:
        page = FakeMapPage()
        pipeline = CapturePipeline(_AlwaysActiveEngine())

        with self.assertRaises(SurfaceNotFound):
            pipeline.capture(page, page.opener)
        self.assertEqual(page.isolations, 0)

    def test_hidden_surface_ahead_of_the_visible_one_is_skipped(self) -> None:
        page = _TwoCanvasPage()
        page.active = 0

        content = CapturePipeline(_AlwaysActiveEngine()).capture(page, page.opener)

        self.assertEqual(Image.open(BytesIO(content)).format, "PNG")
        self.assertEqual(page.screenshots, [(0, True)])
        self.assertFalse(page.hidden)

    def test_surface_present_but_hidden_raises_surface_not_found(self) -> None:
        page = FakeMapPage(surface_hidden_in_dom=True)

        with self.assertRaises(SurfaceNotFound):
            CapturePipeline(_AlwaysActiveEngine()).capture(page, page.opener)
        self.assertEqual(page.screenshots, [])
        self.assertEqual(page.isolations, 0)


class IsolationTests(unittest.TestCase):
    def test_isolated_surface_restores_when_body_raises(self) -> None:
        page = FakeMapPage()

        with self.assertRaises(RuntimeError):
            with isolated_surface(page, SURFACE, settle_ms=1000):
                self.assertTrue(page.hidden)
                raise RuntimeError("boom")

        self.assertFalse(page.hidden)
        self.assertEqual(page.waited_ms, 1000)

    def test_restore_surroundings_tolerates_closed_page(self) -> None:
        class _ClosedPage:
            def evaluate(self, _script, _arg=None):
                raise PlaywrightError("Target page, context or browser has been closed")

        self.assertEqual(restore_surroundings(_ClosedPage()), 0)


if __name__ == "__main__":
    unittest.main()
