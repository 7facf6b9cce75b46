"""Task leasing against the shared ledger.

Workers pull work by claiming a bounded batch of tasks in one atomic
statement. A claim stamps the task with the worker identity and the lease
start time; a lease older than the staleness threshold can be claimed again
by any worker, so a crashed or hung worker never loses a task for good.

Resolution is last-writer-wins: a late worker whose lease was already
reclaimed still overwrites the task's terminal state.

Claims take never-processed tasks first, then the least recently processed,
so a task that keeps coming back without a result goes behind the rest of
the queue.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from mapshots.constants import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
)
from mapshots.db import CaptureTask
from mapshots.errors import LedgerUnavailable
from mapshots.models import Failure, NoResult, Outcome, Success, Task

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_tasks = CaptureTask.__table__


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _claim_order(task: Task) -> tuple[bool, datetime, int]:
    processed_at = task.last_processed_at or datetime.min.replace(tzinfo=timezone.utc)
    return (task.last_processed_at is not None, processed_at, task.id)


class SqlTaskLedger:
    """The `capture_tasks` table accessed through SQLAlchemy sessions."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._sessions = session_factory

    def claim(
        self,
        worker_id: str,
        batch_size: int,
        stale_before: datetime,
        now: datetime,
    ) -> list[Task]:
        eligible = or_(
            _tasks.c.status == STATUS_PENDING,
            and_(
                _tasks.c.status == STATUS_PROCESSING,
                or_(
                    _tasks.c.lease_started_at.is_(None),
                    _tasks.c.lease_started_at < stale_before,
                ),
            ),
        )
        candidates = (
            select(_tasks.c.id)
            .where(eligible)
            .order_by(_tasks.c.last_processed_at.asc().nulls_first(), _tasks.c.id)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        # The outer predicate is re-checked against rows a concurrent claim
        # committed while this statement waited.
        stmt = (
            update(_tasks)
            .where(_tasks.c.id.in_(candidates))
            .where(eligible)
            .values(
                status=STATUS_PROCESSING,
                assigned_worker=worker_id,
                lease_started_at=now,
                attempts=_tasks.c.attempts + 1,
                updated_at=now,
            )
            .returning(*_tasks.c)
        )
        # Rows are converted inside the transaction so an unreadable row rolls
        # the whole claim back instead of stranding leased tasks.
        try:
            with self._sessions() as session, session.begin():
                tasks = [Task.from_row(row) for row in session.execute(stmt).mappings().all()]
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"claim failed: {exc}") from exc
        except ValueError as exc:
            raise LedgerUnavailable(f"claim returned an unreadable task row: {exc}") from exc
        return sorted(tasks, key=_claim_order)

    def apply(self, task_id: int, values: dict[str, Any]) -> bool:
        stmt = update(_tasks).where(_tasks.c.id == task_id).values(**values)
        try:
            with self._sessions() as session, session.begin():
                matched = session.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"resolve failed for task {task_id}: {exc}") from exc
        return bool(matched)

    def add_tasks(self, source_urls: Iterable[str]) -> list[int]:
        records = [
            CaptureTask(source_url=url, status=STATUS_PENDING, artifact_refs=[])
            for url in source_urls
        ]
        try:
            with self._sessions() as session, session.begin():
                session.add_all(records)
                session.flush()
                return [int(record.id) for record in records]
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"enqueue failed: {exc}") from exc

    def get(self, task_id: int) -> Task | None:
        try:
            with self._sessions() as session:
                row = session.execute(
                    select(_tasks).where(_tasks.c.id == task_id)
                ).mappings().first()
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"lookup failed for task {task_id}: {exc}") from exc
        return Task.from_row(row) if row is not None else None

    def status_counts(self) -> dict[str, int]:
        stmt = select(_tasks.c.status, func.count()).group_by(_tasks.c.status)
        try:
            with self._sessions() as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"status query failed: {exc}") from exc
        return {str(status): int(count) for status, count in rows}


def resolution_values(outcome: Outcome, now: datetime) -> dict[str, Any]:
    values: dict[str, Any] = {
        "assigned_worker": None,
        "lease_started_at": None,
        "updated_at": now,
    }
    if isinstance(outcome, Success):
        values.update(
            status=STATUS_COMPLETED,
            artifact_refs=list(outcome.artifact_refs),
            error=None,
            last_processed_at=now,
        )
    elif isinstance(outcome, Failure):
        values.update(
            status=STATUS_FAILED,
            error=outcome.message or "unknown failure",
            last_processed_at=now,
        )
    elif isinstance(outcome, NoResult):
        values.update(status=STATUS_PENDING, error=None, last_processed_at=now)
    else:
        raise TypeError(f"Unsupported outcome: {outcome!r}")
    return values


class TaskLeaseManager:
    def __init__(self, ledger: Any, *, clock: Clock = utc_now) -> None:
        self._ledger = ledger
        self._clock = clock

    def claim_batch(
        self,
        worker_id: str,
        batch_size: int,
        staleness_threshold: timedelta,
    ) -> list[Task]:
        if not worker_id:
            raise ValueError("worker_id must not be empty")
        if batch_size < 1:
            return []
        now = self._clock()
        tasks = self._ledger.claim(worker_id, batch_size, now - staleness_threshold, now)
        if tasks:
            logger.info(
                "Worker %s claimed %d task(s): %s",
                worker_id,
                len(tasks),
                ", ".join(str(task.id) for task in tasks),
            )
        return tasks

    def resolve(self, task_id: int, outcome: Outcome) -> None:
        values = resolution_values(outcome, self._clock())
        if not self._ledger.apply(task_id, values):
            logger.warning("Resolve for task %s matched no ledger row", task_id)
            return
        logger.info("Task %s resolved as %s", task_id, values["status"])
