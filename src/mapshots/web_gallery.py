"""Walk the photo gallery thumbnails and capture each one."""

from __future__ import annotations

import logging
from typing import Any

from playwright.sync_api import Error as PlaywrightError

from mapshots.errors import MapShotsError
from mapshots.web_capture import CapturePipeline, RawCapture, restore_surroundings
from mapshots.web_common import settle

logger = logging.getLogger(__name__)


class GalleryWalker:
    def __init__(self, pipeline: CapturePipeline, item_selector: str) -> None:
        self.pipeline = pipeline
        self.item_selector = item_selector

    def discover(self, page: Any) -> list[Any]:
        return list(page.query_selector_all(self.item_selector))

    def walk(self, page: Any, max_items: int) -> list[RawCapture]:
        """Capture up to `max_items` thumbnails in discovery order.

        Triggering one thumbnail re-renders the gallery, so the collection is
        looked up again on every pass and no handle outlives its iteration.
        Item failures are logged and skipped; an empty list means nothing
        could be captured.
        """
        discovered = len(self.discover(page))
        limit = min(discovered, max(0, int(max_items)))
        logger.info("Found %d gallery item(s), walking %d", discovered, limit)
        delays = self.pipeline.delays

        shots: list[RawCapture] = []
        for index in range(limit):
            ordinal = index + 1
            restore_surroundings(page)
            settle(page, delays.between_items_ms)

            items = self.discover(page)
            if index >= len(items):
                logger.warning(
                    "Gallery shrank to %d item(s); stopping before item %d", len(items), ordinal
                )
                break
            try:
                content = self.pipeline.capture(page, items[index])
            except (MapShotsError, PlaywrightError) as exc:
                logger.warning("Skipping gallery item %d: %s", ordinal, exc)
                continue
            shots.append(RawCapture(ordinal=ordinal, content=content))
            logger.info("Captured gallery item %d (%d bytes)", ordinal, len(content))
        return shots
