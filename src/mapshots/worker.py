"""The worker control loop: lease tasks, capture, store, resolve."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Sequence

from mapshots.config import WorkerConfig, get_database_url
from mapshots.constants import STREET_VIEW_ORDINAL
from mapshots.db import create_ledger_engine, create_session_factory
from mapshots.errors import LedgerUnavailable, SurfaceNotFound, UnsupportedImage, describe_error
from mapshots.lease import SqlTaskLedger, TaskLeaseManager
from mapshots.models import Artifact, Failure, NoResult, Outcome, Success, Task
from mapshots.normalize import ImageNormalizer
from mapshots.storage import create_store
from mapshots.web_capture import CapturePipeline, RawCapture
from mapshots.web_common import first_visible, settle, wait_for_visible
from mapshots.web_gallery import GalleryWalker
from mapshots.web_interaction import NATIVE_CLICK_HOLD_MS, InteractionEngine
from mapshots.web_session import browser_session, navigate

logger = logging.getLogger(__name__)


@dataclass
class WorkerContext:
    config: WorkerConfig
    leases: TaskLeaseManager | None
    store: Any
    page: Any
    pipeline: CapturePipeline
    walker: GalleryWalker
    normalizer: ImageNormalizer


def build_context(
    config: WorkerConfig,
    *,
    leases: TaskLeaseManager | None,
    store: Any,
    page: Any,
) -> WorkerContext:
    engine = InteractionEngine(
        config.selectors.surface,
        delays=config.delays,
        surface_timeout_ms=config.surface_timeout_ms,
        surface_poll_ms=config.surface_poll_ms,
    )
    pipeline = CapturePipeline(
        engine,
        keep_selectors=config.selectors.keep_visible,
        delays=config.delays,
    )
    return WorkerContext(
        config=config,
        leases=leases,
        store=store,
        page=page,
        pipeline=pipeline,
        walker=GalleryWalker(pipeline, config.selectors.gallery_item),
        normalizer=ImageNormalizer(
            quality=config.normalize.quality,
            trim_threshold=config.normalize.trim_threshold,
        ),
    )


@contextmanager
def open_worker_context(config: WorkerConfig) -> Iterator[WorkerContext]:
    """Build the process-wide collaborators once and close them on exit."""
    engine = create_ledger_engine(get_database_url(config))
    store = create_store(config.storage)
    try:
        with browser_session(config) as session:
            leases = TaskLeaseManager(SqlTaskLedger(create_session_factory(engine)))
            yield build_context(config, leases=leases, store=store, page=session.page)
    finally:
        close = getattr(store, "close", None)
        if callable(close):
            close()
        engine.dispose()


def collect_captures(ctx: WorkerContext, source_url: str) -> list[RawCapture]:
    """Open the page's photo viewer and capture its gallery or street view."""
    page = ctx.page
    cfg = ctx.config
    selectors = cfg.selectors
    navigate(page, source_url, cfg)

    opener = wait_for_visible(
        page,
        selectors.primary_trigger,
        timeout_ms=cfg.element_timeout_ms,
        poll_ms=cfg.surface_poll_ms,
    )
    if opener is None:
        raise SurfaceNotFound(f"primary trigger {selectors.primary_trigger} not found")
    opener.click(delay=NATIVE_CLICK_HOLD_MS)
    settle(page, cfg.delays.after_click_ms)

    gallery = wait_for_visible(
        page,
        selectors.gallery_item,
        timeout_ms=cfg.element_timeout_ms,
        poll_ms=cfg.surface_poll_ms,
    )
    if gallery is not None:
        settle(page, cfg.delays.after_visibility_ms)
        return ctx.walker.walk(page, cfg.max_gallery_items)

    logger.info("No gallery on %s; capturing the street-view surface", source_url)
    if first_visible(page, selectors.surface) is not None:
        content = ctx.pipeline.capture_active_surface(page)
    else:
        trigger = page.query_selector(selectors.primary_trigger)
        if trigger is None:
            raise SurfaceNotFound(f"no gallery and no {selectors.primary_trigger} to activate")
        content = ctx.pipeline.capture(page, trigger)
    return [RawCapture(ordinal=STREET_VIEW_ORDINAL, content=content)]


def store_captures(ctx: WorkerContext, task_id: int | str, captures: Sequence[RawCapture]) -> list[str]:
    refs: list[str] = []
    for capture in captures:
        try:
            content = ctx.normalizer.normalize(capture.content)
        except UnsupportedImage as exc:
            logger.warning("Skipping artifact %d of task %s: %s", capture.ordinal, task_id, exc)
            continue
        artifact = Artifact(task_id=task_id, ordinal=capture.ordinal, content=content)
        # StorageWriteFailed fails the whole task and drops refs already
        # written; keys are deterministic, so the retry overwrites them.
        refs.append(ctx.store.put(artifact))
    return refs


def process_task(ctx: WorkerContext, task: Task) -> Outcome:
    captures = collect_captures(ctx, task.source_url)
    refs = store_captures(ctx, task.id, captures)
    if not refs:
        return NoResult()
    return Success(refs)


def run_task(ctx: WorkerContext, task: Task) -> Outcome:
    """Process one task and write its outcome back; never raises."""
    try:
        outcome = process_task(ctx, task)
    except Exception as exc:  # pylint: disable=broad-except
        logger.exception("Task %s failed", task.id)
        outcome = Failure(describe_error(exc))
    if ctx.leases is None:
        return outcome
    try:
        ctx.leases.resolve(task.id, outcome)
    except LedgerUnavailable as exc:
        logger.error("Could not resolve task %s, lease will expire: %s", task.id, exc)
    return outcome


def run_worker(
    ctx: WorkerContext,
    *,
    max_batches: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Lease and process batches until `max_batches` is reached (forever if None).

    Returns the number of tasks processed.
    """
    if ctx.leases is None:
        raise RuntimeError("run_worker needs a lease manager")
    cfg = ctx.config
    batches = 0
    processed = 0
    while max_batches is None or batches < max_batches:
        batches += 1
        last_batch = max_batches is not None and batches >= max_batches
        try:
            tasks = ctx.leases.claim_batch(cfg.worker_id, cfg.batch_size, cfg.staleness_threshold)
        except LedgerUnavailable as exc:
            logger.warning("Ledger unavailable; backing off %.1fs: %s", cfg.ledger_backoff_seconds, exc)
            if not last_batch:
                sleep(cfg.ledger_backoff_seconds)
            continue
        if not tasks:
            logger.info("No eligible tasks; pausing %.1fs", cfg.idle_pause_seconds)
            if not last_batch:
                sleep(cfg.idle_pause_seconds)
            continue
        for task in tasks:
            outcome = run_task(ctx, task)
            processed += 1
            logger.info("Task %s finished: %s", task.id, type(outcome).__name__)
    return processed
