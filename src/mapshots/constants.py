"""Shared constants for the task ledger, target site and artifact layout."""

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TASK_STATUSES = (
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_COMPLETED,
    STATUS_FAILED,
)

# Selectors of the fixed target surface (the embedded map widget).
DEFAULT_PRIMARY_TRIGGER_SELECTOR = ".aoRNLd.kn2E5e.NMjTrf"
DEFAULT_GALLERY_ITEM_SELECTOR = "a.OKAoZd"
DEFAULT_SURFACE_SELECTOR = "canvas.widget-scene-canvas"
DEFAULT_KEEP_VISIBLE_SELECTORS = (".OKAoZd",)

STREET_VIEW_LABEL = "street_view"
STREET_VIEW_ORDINAL = 0
ARTIFACT_EXTENSION = "jpg"
ARTIFACT_CONTENT_TYPE = "image/jpeg"
DEFAULT_STORAGE_PREFIX = "places"

DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}

# Attribute used to remember inline visibility while the surface is isolated.
PREV_VISIBILITY_ATTR = "data-mapshots-prev-visibility"
EMPTY_STYLE_MARKER = "__EMPTY__"
