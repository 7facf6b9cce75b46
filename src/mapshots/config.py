"""Process-level configuration loaded from the environment."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from datetime import timedelta

from dotenv import load_dotenv

from mapshots.constants import (
    DEFAULT_GALLERY_ITEM_SELECTOR,
    DEFAULT_KEEP_VISIBLE_SELECTORS,
    DEFAULT_PRIMARY_TRIGGER_SELECTOR,
    DEFAULT_STORAGE_PREFIX,
    DEFAULT_SURFACE_SELECTOR,
    DEFAULT_VIEWPORT,
)


@dataclass(frozen=True)
class SettleDelays:
    """Fixed waits after DOM-mutating actions.

    The map widget exposes no completion event, so these delays are the only
    way to let its own asynchronous rendering settle.
    """

    after_navigation_ms: int = 2000
    after_click_ms: int = 1000
    after_scroll_ms: int = 1000
    after_visibility_ms: int = 1000
    after_activation_ms: int = 2000
    between_items_ms: int = 2000


@dataclass(frozen=True)
class TargetSelectors:
    primary_trigger: str = DEFAULT_PRIMARY_TRIGGER_SELECTOR
    gallery_item: str = DEFAULT_GALLERY_ITEM_SELECTOR
    surface: str = DEFAULT_SURFACE_SELECTOR
    keep_visible: tuple[str, ...] = DEFAULT_KEEP_VISIBLE_SELECTORS


@dataclass(frozen=True)
class StorageConfig:
    backend: str = "gcs"
    bucket: str = ""
    prefix: str = DEFAULT_STORAGE_PREFIX
    local_dir: str = "runs/artifacts"


@dataclass(frozen=True)
class NormalizeConfig:
    quality: int = 60
    trim_threshold: int = 10


@dataclass(frozen=True)
class WorkerConfig:
    database_url: str = ""
    worker_id: str = ""
    batch_size: int = 5
    max_gallery_items: int = 10
    staleness_threshold: timedelta = timedelta(minutes=5)
    idle_pause_seconds: float = 30.0
    ledger_backoff_seconds: float = 15.0
    navigation_timeout_ms: int = 60000
    element_timeout_ms: int = 10000
    surface_timeout_ms: int = 10000
    surface_poll_ms: int = 250
    headless: bool = True
    viewport: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_VIEWPORT))
    delays: SettleDelays = field(default_factory=SettleDelays)
    selectors: TargetSelectors = field(default_factory=TargetSelectors)
    storage: StorageConfig = field(default_factory=StorageConfig)
    normalize: NormalizeConfig = field(default_factory=NormalizeConfig)


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def get_database_url(config: WorkerConfig) -> str:
    if not config.database_url:
        raise RuntimeError("MAPSHOTS_DATABASE_URL (or DATABASE_URL) is not set")
    return config.database_url


def load_worker_config() -> WorkerConfig:
    load_dotenv()
    delays = SettleDelays(
        after_navigation_ms=_env_ms("MAPSHOTS_SETTLE_NAVIGATION_MS", 2000),
        after_click_ms=_env_ms("MAPSHOTS_SETTLE_CLICK_MS", 1000),
        after_scroll_ms=_env_ms("MAPSHOTS_SETTLE_SCROLL_MS", 1000),
        after_visibility_ms=_env_ms("MAPSHOTS_SETTLE_VISIBILITY_MS", 1000),
        after_activation_ms=_env_ms("MAPSHOTS_SETTLE_ACTIVATION_MS", 2000),
        between_items_ms=_env_ms("MAPSHOTS_SETTLE_BETWEEN_ITEMS_MS", 2000),
    )
    keep_raw = os.getenv("MAPSHOTS_KEEP_VISIBLE_SELECTORS", "")
    keep_visible = tuple(s.strip() for s in keep_raw.split(",") if s.strip())
    selectors = TargetSelectors(
        primary_trigger=os.getenv("MAPSHOTS_PRIMARY_TRIGGER_SELECTOR") or DEFAULT_PRIMARY_TRIGGER_SELECTOR,
        gallery_item=os.getenv("MAPSHOTS_GALLERY_ITEM_SELECTOR") or DEFAULT_GALLERY_ITEM_SELECTOR,
        surface=os.getenv("MAPSHOTS_SURFACE_SELECTOR") or DEFAULT_SURFACE_SELECTOR,
        keep_visible=keep_visible or DEFAULT_KEEP_VISIBLE_SELECTORS,
    )
    storage = StorageConfig(
        backend=(os.getenv("MAPSHOTS_STORAGE_BACKEND", "gcs") or "gcs").strip().lower(),
        bucket=os.getenv("MAPSHOTS_GCS_BUCKET", ""),
        prefix=(os.getenv("MAPSHOTS_STORAGE_PREFIX", DEFAULT_STORAGE_PREFIX) or DEFAULT_STORAGE_PREFIX).strip("/"),
        local_dir=os.getenv("MAPSHOTS_LOCAL_STORAGE_DIR", "runs/artifacts") or "runs/artifacts",
    )
    normalize = NormalizeConfig(
        quality=_env_int("MAPSHOTS_JPEG_QUALITY", 60, low=60, high=70),
        trim_threshold=_env_int("MAPSHOTS_TRIM_THRESHOLD", 10, low=0, high=255),
    )
    staleness_minutes = _env_float("MAPSHOTS_STALENESS_MINUTES", 5.0, low=0.1, high=24 * 60.0)
    return WorkerConfig(
        database_url=os.getenv("MAPSHOTS_DATABASE_URL") or os.getenv("DATABASE_URL", ""),
        worker_id=os.getenv("MAPSHOTS_WORKER_ID") or default_worker_id(),
        batch_size=_env_int("MAPSHOTS_BATCH_SIZE", 5, low=1, high=100),
        max_gallery_items=_env_int("MAPSHOTS_MAX_GALLERY_ITEMS", 10, low=1, high=100),
        staleness_threshold=timedelta(minutes=staleness_minutes),
        idle_pause_seconds=_env_float("MAPSHOTS_IDLE_PAUSE_SECONDS", 30.0, low=0.0, high=3600.0),
        ledger_backoff_seconds=_env_float("MAPSHOTS_LEDGER_BACKOFF_SECONDS", 15.0, low=0.0, high=3600.0),
        navigation_timeout_ms=_env_int("MAPSHOTS_NAVIGATION_TIMEOUT_MS", 60000, low=1000, high=300000),
        element_timeout_ms=_env_int("MAPSHOTS_ELEMENT_TIMEOUT_MS", 10000, low=500, high=120000),
        surface_timeout_ms=_env_int("MAPSHOTS_SURFACE_TIMEOUT_MS", 10000, low=500, high=120000),
        surface_poll_ms=_env_int("MAPSHOTS_SURFACE_POLL_MS", 250, low=50, high=5000),
        headless=_env_flag("MAPSHOTS_HEADLESS", True),
        viewport={
            "width": _env_int("MAPSHOTS_VIEWPORT_WIDTH", DEFAULT_VIEWPORT["width"], low=320, high=7680),
            "height": _env_int("MAPSHOTS_VIEWPORT_HEIGHT", DEFAULT_VIEWPORT["height"], low=240, high=4320),
        },
        delays=delays,
        selectors=selectors,
        storage=storage,
        normalize=normalize,
    )


def _env_int(name: str, default: int, *, low: int, high: int) -> int:
    raw = os.getenv(name, "")
    try:
        value = int(float(raw)) if raw.strip() else default
    except ValueError:
        value = default
    return max(low, min(high, value))


def _env_float(name: str, default: float, *, low: float, high: float) -> float:
    raw = os.getenv(name, "")
    try:
        value = float(raw) if raw.strip() else default
    except ValueError:
        value = default
    return max(low, min(high, value))


def _env_ms(name: str, default: int) -> int:
    return _env_int(name, default, low=0, high=30000)


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}
