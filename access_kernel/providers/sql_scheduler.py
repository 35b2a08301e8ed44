"""
SQL-backed reference scheduler provider.

Persists scheduler events in the ``scheduler_events`` table so timers
survive a restart of a single-node deployment.  A worker polls ``due()``
and feeds the results to ``SchedulerEventDispatcher``; firing cron events
is left to an external cron runner reading ``list_cron()``.

Writes flush into the caller's session; the caller commits.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from access_kernel.domain.providers import SchedulePatternType, SchedulerEvent
from access_kernel.logging_config import get_logger
from access_kernel.models.scheduler_event import SchedulerEventModel

logger = get_logger("providers.sql_scheduler")


class SqlSchedulerProvider:
    """SchedulerProvider storing events through SQLAlchemy."""

    def __init__(self, session: Session):
        self.session = session

    def _get_model(self, event_id: str) -> SchedulerEventModel | None:
        return self.session.execute(
            select(SchedulerEventModel).where(SchedulerEventModel.event_id == event_id)
        ).scalar_one_or_none()

    def create(self, event: SchedulerEvent) -> SchedulerEvent:
        if self._get_model(event.id) is not None:
            raise ValueError(f"Scheduler event already exists: {event.id}")
        self.session.add(SchedulerEventModel.from_dto(event))
        self.session.flush()
        logger.info("scheduler_event_created", extra={"event_id": event.id, "event_type": event.event_type})
        return event

    def get(self, event_id: str) -> SchedulerEvent | None:
        model = self._get_model(event_id)
        return model.to_dto() if model is not None else None

    def update(self, event: SchedulerEvent) -> SchedulerEvent:
        model = self._get_model(event.id)
        if model is None:
            raise KeyError(f"Scheduler event not found: {event.id}")
        model.apply(event)
        self.session.flush()
        logger.info("scheduler_event_updated", extra={"event_id": event.id})
        return event

    def delete(self, event_id: str) -> None:
        model = self._get_model(event_id)
        if model is None:
            return
        self.session.delete(model)
        self.session.flush()
        logger.info("scheduler_event_deleted", extra={"event_id": event_id})

    def due(self, now: datetime) -> list[SchedulerEvent]:
        """One-shot events whose fire time is at or before ``now``."""
        rows = self.session.execute(
            select(SchedulerEventModel)
            .where(
                SchedulerEventModel.schedule_type == SchedulePatternType.AT.value,
                SchedulerEventModel.fire_at <= now,
            )
            .order_by(SchedulerEventModel.fire_at)
        ).scalars()
        return [row.to_dto() for row in rows]

    def list_cron(self) -> list[SchedulerEvent]:
        rows = self.session.execute(
            select(SchedulerEventModel)
            .where(SchedulerEventModel.schedule_type == SchedulePatternType.CRON.value)
            .order_by(SchedulerEventModel.event_id)
        ).scalars()
        return [row.to_dto() for row in rows]
