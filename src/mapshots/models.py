"""Data models for ledger tasks, lease outcomes and captured artifacts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Union

from mapshots.constants import (
    ARTIFACT_EXTENSION,
    STATUS_PROCESSING,
    STREET_VIEW_LABEL,
    STREET_VIEW_ORDINAL,
    TASK_STATUSES,
)


@dataclass(frozen=True)
class Task:
    id: int
    source_url: str
    status: str
    assigned_worker: str | None = None
    lease_started_at: datetime | None = None
    last_processed_at: datetime | None = None
    artifact_refs: tuple[str, ...] = ()
    error: str | None = None
    attempts: int = 0

    @property
    def leased(self) -> bool:
        return self.status == STATUS_PROCESSING

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Task":
        status = str(row["status"])
        if status not in TASK_STATUSES:
            raise ValueError(f"Invalid task status '{status}' for task {row['id']}")
        refs = row.get("artifact_refs") or []
        if isinstance(refs, str):
            refs = [part for part in refs.split(",") if part]
        return cls(
            id=int(row["id"]),
            source_url=str(row["source_url"]),
            status=status,
            assigned_worker=row.get("assigned_worker"),
            lease_started_at=_as_utc(row.get("lease_started_at")),
            last_processed_at=_as_utc(row.get("last_processed_at")),
            artifact_refs=tuple(str(ref) for ref in refs),
            error=row.get("error"),
            attempts=int(row.get("attempts") or 0),
        )


@dataclass(frozen=True)
class Success:
    artifact_refs: tuple[str, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "artifact_refs", tuple(self.artifact_refs))


@dataclass(frozen=True)
class Failure:
    message: str


@dataclass(frozen=True)
class NoResult:
    """The task ran cleanly but produced no artifacts."""


Outcome = Union[Success, Failure, NoResult]


@dataclass
class Artifact:
    task_id: int | str
    ordinal: int
    content: bytes = field(repr=False)
    ref: str | None = None

    @property
    def label(self) -> str:
        return artifact_label(self.ordinal)

    @property
    def filename(self) -> str:
        return f"{self.label}.{ARTIFACT_EXTENSION}"


def artifact_label(ordinal: int) -> str:
    """Ordinal 0 is the street-view surface, 1..K are gallery items."""
    if ordinal < 0:
        raise ValueError(f"Artifact ordinal must be >= 0, got {ordinal}")
    if ordinal == STREET_VIEW_ORDINAL:
        return STREET_VIEW_LABEL
    return f"image_{ordinal}"


def _as_utc(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
