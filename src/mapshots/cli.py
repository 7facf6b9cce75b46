"""CLI entrypoint for mapshots workers and ledger maintenance."""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from mapshots.config import WorkerConfig, get_database_url, load_worker_config
from mapshots.constants import TASK_STATUSES
from mapshots.db import create_ledger_engine, create_schema, create_session_factory
from mapshots.lease import SqlTaskLedger
from mapshots.storage import LocalArtifactStore
from mapshots.web_common import is_valid_url
from mapshots.web_session import browser_session
from mapshots.worker import (
    build_context,
    collect_captures,
    open_worker_context,
    run_worker,
    store_captures,
)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    configure_logging(os.getenv("MAPSHOTS_LOG_LEVEL", "INFO"))
    config = load_worker_config()

    if args.command == "worker":
        worker_command(config, once=args.once, max_batches=args.max_batches)
        return
    if args.command == "enqueue":
        enqueue_command(config, args.urls)
        return
    if args.command == "status":
        status_command(config)
        return
    if args.command == "init-db":
        init_db_command(config)
        return
    if args.command == "capture":
        capture_command(config, args.url, output=Path(args.output), max_items=args.max_items)
        return

    parser.print_help()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mapshots",
        description="Capture map-widget photos for leased tasks into object storage.",
    )
    subparsers = parser.add_subparsers(dest="command")

    worker_parser = subparsers.add_parser("worker", help="Run the lease/capture worker loop")
    worker_parser.add_argument(
        "--once",
        action="store_true",
        help="Claim and process a single batch, then exit.",
    )
    worker_parser.add_argument("--max-batches", type=int, default=None)

    enqueue_parser = subparsers.add_parser("enqueue", help="Add pending tasks for page URLs")
    enqueue_parser.add_argument("urls", nargs="+")

    subparsers.add_parser("status", help="Show task counts per status")
    subparsers.add_parser("init-db", help="Create the task ledger table")

    capture_parser = subparsers.add_parser(
        "capture",
        help="Capture one page into a local directory without the ledger",
    )
    capture_parser.add_argument("url", type=str)
    capture_parser.add_argument("--output", default="print")
    capture_parser.add_argument("--max-items", type=int, default=None)
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )


def worker_command(config: WorkerConfig, *, once: bool, max_batches: int | None) -> None:
    if once:
        max_batches = 1
    if max_batches is not None and max_batches < 1:
        raise SystemExit("--max-batches must be >= 1")
    logger.info(
        "Worker %s starting (batch_size=%d, max_gallery_items=%d, staleness=%s)",
        config.worker_id,
        config.batch_size,
        config.max_gallery_items,
        config.staleness_threshold,
    )
    try:
        with open_worker_context(config) as ctx:
            processed = run_worker(ctx, max_batches=max_batches)
    except KeyboardInterrupt:
        logger.info("Worker %s interrupted", config.worker_id)
        return
    logger.info("Worker %s processed %d task(s)", config.worker_id, processed)


def enqueue_command(config: WorkerConfig, urls: list[str]) -> None:
    invalid = [url for url in urls if not is_valid_url(url)]
    if invalid:
        raise SystemExit(f"Invalid URL(s), expected http/https: {', '.join(invalid)}")
    engine = create_ledger_engine(get_database_url(config))
    try:
        ids = SqlTaskLedger(create_session_factory(engine)).add_tasks(urls)
    finally:
        engine.dispose()
    print(json.dumps({"enqueued": ids}, indent=2))


def status_command(config: WorkerConfig) -> None:
    engine = create_ledger_engine(get_database_url(config))
    try:
        counts = SqlTaskLedger(create_session_factory(engine)).status_counts()
    finally:
        engine.dispose()
    payload = {status: counts.get(status, 0) for status in TASK_STATUSES}
    payload["total"] = sum(counts.values())
    print(json.dumps(payload, indent=2))


def init_db_command(config: WorkerConfig) -> None:
    engine = create_ledger_engine(get_database_url(config))
    try:
        create_schema(engine)
    finally:
        engine.dispose()
    print("Ledger schema ready.")


def capture_command(
    config: WorkerConfig,
    url: str,
    *,
    output: Path,
    max_items: int | None = None,
) -> list[str]:
    if not is_valid_url(url):
        raise SystemExit(f"Invalid URL, expected http/https: {url}")
    if max_items is not None:
        config = replace(config, max_gallery_items=max(1, max_items))
    run_id = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    store = LocalArtifactStore(output, prefix="")
    with browser_session(config) as session:
        ctx = build_context(config, leases=None, store=store, page=session.page)
        refs = store_captures(ctx, run_id, collect_captures(ctx, url))
    print(json.dumps({"url": url, "artifacts": refs}, indent=2))
    return refs

